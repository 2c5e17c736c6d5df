"""Dotfile backup and versioning with content-addressed storage."""

__version__ = "0.1.0"
