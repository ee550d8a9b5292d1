"""Pipe network validation and model/store reconciliation."""

__version__ = "0.1.0"
