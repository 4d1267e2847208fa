"""Entitlement and abuse protection for the course membership portal."""

__version__ = "0.1.0"
