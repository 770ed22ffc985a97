"""Signal validation rules."""
