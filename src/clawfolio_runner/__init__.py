"""Clawfolio Runner - bot fleet indexer and performance simulator."""

__version__ = "0.2.0"
