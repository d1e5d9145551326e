"""Dolibarr ERP to local catalog cache synchronization."""

__version__ = "1.0.0"
