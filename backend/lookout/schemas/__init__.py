"""Pydantic schemas and evaluation types."""
