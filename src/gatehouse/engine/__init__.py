"""Tunneling engine boundary and the HTTP relay implementation."""

from gatehouse.engine.base import NullTunnelEngine, TunnelEngine
from gatehouse.engine.http import HttpTunnelEngine

__all__ = [
    "HttpTunnelEngine",
    "NullTunnelEngine",
    "TunnelEngine",
]
