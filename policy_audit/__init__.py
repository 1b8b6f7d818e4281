"""Policy audit engine for multi-subscription Azure inventories."""

__version__ = "0.1.0"
