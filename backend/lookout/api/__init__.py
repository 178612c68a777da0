"""Lookout HTTP API."""
