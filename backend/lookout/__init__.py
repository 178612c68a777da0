"""Lookout: rule evaluation and event correlation for a SIEM backend."""

__version__ = "0.1.0"
