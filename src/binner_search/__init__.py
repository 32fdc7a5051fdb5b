"""Binner Search - aggregate part searches across electronics distributors."""

__version__ = "0.1.0"
