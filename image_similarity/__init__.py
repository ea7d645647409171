"""Rank a fixed reference image set by similarity to a query photo."""

__version__ = "0.1.0"
