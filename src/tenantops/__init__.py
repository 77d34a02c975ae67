"""Declarative identity and access configuration deployment."""

__version__ = "0.1.0"
