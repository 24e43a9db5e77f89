"""Command execution gateway and native process session manager."""

__version__ = "0.1.0"
