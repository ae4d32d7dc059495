"""Respawn Console - keeps CLI coding agents working across turns."""

__version__ = "0.1.0"
