"""Leadbook: bulk lead import with identity resolution and live progress."""

__version__ = "0.1.0"
