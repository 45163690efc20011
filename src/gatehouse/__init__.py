"""Gatehouse - access control and asset caching in front of a tunneling engine."""

__version__ = "0.1.0"
