"""Swarm bootstrap and certificate lifecycle coordination."""

__version__ = "0.1.0"
