"""Attempt limiting."""
