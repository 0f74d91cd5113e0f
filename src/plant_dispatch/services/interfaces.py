"""Contracts for the external collaborators the engine talks to."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol

from ..models.domain import Booking, DeliveryHandle, TaskSummary


class PresenceResolver(Protocol):
    """Who occupies which location today."""

    def bookings_for_floor(self, floor_id: str) -> list[Booking]:
        ...


class NotificationGateway(ABC):
    """Contract for delivering task notifications and updating them afterwards."""

    @abstractmethod
    def send(self, handle: str, summary: TaskSummary, *, recipient_id: int | None = None) -> DeliveryHandle:
        """Deliver ``summary`` to the messaging ``handle`` and return a reference to the message."""
        raise NotImplementedError

    @abstractmethod
    def update(self, delivery: DeliveryHandle, text: str) -> None:
        """Replace the content of a delivered message (removes the confirm button)."""
        raise NotImplementedError
