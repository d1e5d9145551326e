"""Synchronization services."""
