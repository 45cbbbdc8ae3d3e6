# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Core package for the layered dynamic scene graph."""

__all__ = ["__version__"]
__version__ = "0.0.1"
