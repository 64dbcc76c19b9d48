"""Dependency-aware workflow task runner."""

__version__ = "0.1.0"
