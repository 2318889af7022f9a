"""Guided camera assessment engine: step orchestration over detection sources."""

__version__ = "0.1.0"
