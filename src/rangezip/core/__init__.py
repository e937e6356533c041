"""Configuration, errors and small helpers shared across rangezip."""
