"""AI payload records and normalization."""
