"""Core configuration, errors and process helpers."""
