"""Rolodex: contact identity resolution and directory synchronization."""

__version__ = "0.1.0"
