"""Route group exports."""

from . import directory, distances, health, locations, slack, tasks

__all__ = ["directory", "distances", "health", "locations", "slack", "tasks"]
