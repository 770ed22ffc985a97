"""Confidence scoring and justification text."""
