"""Domain models for locations, people and watering tasks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class TaskStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    DONE = "done"
    EXPIRED = "expired"

    @classmethod
    def parse(cls, value: str | None) -> "TaskStatus":
        """Read a stored status; legacy ``completed`` rows count as done."""
        if value is None:
            return cls.PENDING
        normalized = value.strip().lower()
        if normalized == "completed":
            return cls.DONE
        return cls(normalized)


OPEN_STATUSES = (TaskStatus.PENDING, TaskStatus.ASSIGNED)


@dataclass(slots=True, frozen=True)
class Location:
    """A bookable spot on a floor with 2-D plan coordinates."""

    location_id: str
    name: str
    external_id: str
    x: float
    y: float
    floor: int


@dataclass(slots=True)
class Person:
    """Someone who can be asked to water a plant."""

    person_id: str
    first_name: str
    last_name: str
    email: str
    slack_id: Optional[str] = None
    employee_id: Optional[int] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email


@dataclass(slots=True)
class Booking:
    """Today's occupation of a location by a person (read-only, not persisted)."""

    location_id: str
    person: Person
    floor: int
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None


@dataclass(slots=True)
class DistancePair:
    """Straight-line distance between two locations on the same floor."""

    from_location: Location
    to_location: Location
    distance: Optional[float]
    floor: int
    from_person: Optional[Person] = None
    to_person: Optional[Person] = None

    @property
    def is_self_pair(self) -> bool:
        return self.from_location.external_id == self.to_location.external_id

    def to_record(self) -> dict:
        return {
            "from_id": self.from_location.external_id,
            "to_id": self.to_location.external_id,
            "from_label": self.from_location.name,
            "to_label": self.to_location.name,
            "distance": self.distance,
            "floor": self.floor,
        }


@dataclass(slots=True)
class WateringTask:
    """A single watering obligation for one plant, joined with its display data."""

    task_id: int
    plant_id: int
    status: TaskStatus
    candidate_ids: list[int] = field(default_factory=list)
    assigned_user_id: Optional[int] = None
    notified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    plant_name: Optional[str] = None
    location_name: Optional[str] = None
    external_location_id: Optional[str] = None
    floor: Optional[int] = None
    volume: Optional[float] = None
    method: Optional[str] = None
    image_url: Optional[str] = None
    interval_days: Optional[int] = None

    def summary(self) -> "TaskSummary":
        return TaskSummary(
            task_id=self.task_id,
            plant_name=self.plant_name,
            location_name=self.location_name or "Unknown",
            volume=self.volume,
            method=self.method,
            image_url=self.image_url,
        )


@dataclass(slots=True, frozen=True)
class TaskSummary:
    """What a person is told about a task."""

    task_id: int
    plant_name: Optional[str]
    location_name: str
    volume: Optional[float] = None
    method: Optional[str] = None
    image_url: Optional[str] = None


@dataclass(slots=True, frozen=True)
class DeliveryHandle:
    """Reference to a sent notification, used to update it later."""

    channel: str
    ts: str
    task_id: int
    recipient_id: Optional[int] = None
