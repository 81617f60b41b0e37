"""Dockyard - zero-downtime Docker deployments on a single VPS."""

__version__ = "0.1.0"
