"""Proximity-based plant watering dispatch."""

__version__ = "0.1.0"
