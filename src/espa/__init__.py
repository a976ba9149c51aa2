"""ESPA TV access control and command dispatch service."""

__version__ = "0.1.0"
