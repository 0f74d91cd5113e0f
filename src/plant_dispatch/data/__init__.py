"""Supabase-backed repositories."""

from .distance_repository import DistanceRepository
from .location_repository import LocationRepository, load_locations_from_workbook
from .people_repository import PeopleRepository
from .task_repository import TaskAssignmentStore

__all__ = [
    "DistanceRepository",
    "LocationRepository",
    "PeopleRepository",
    "TaskAssignmentStore",
    "load_locations_from_workbook",
]
