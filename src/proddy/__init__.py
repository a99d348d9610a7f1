"""Proddy assistant core: intent routing, tool assembly, confirmation gate and audit."""

__version__ = "0.1.0"
