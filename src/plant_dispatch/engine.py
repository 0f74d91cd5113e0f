"""Wiring of repositories, adapters and services into one engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from fastapi import HTTPException, status

from .data import DistanceRepository, LocationRepository, PeopleRepository, TaskAssignmentStore
from .db.supabase import get_supabase_client
from .services.distances.builder import DistanceMatrixBuilder
from .services.escalation.controller import EscalationController
from .services.escalation.scheduler import ThreadingTimeoutScheduler, TimeoutScheduler
from .services.locations.sync import LocationSync
from .services.notifications.slack_client import SlackGateway
from .services.presence.deskly_client import DesklyClient
from .services.workflow import AssignmentWorkflow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Engine:
    store: TaskAssignmentStore
    distances: DistanceRepository
    locations: LocationRepository
    people: PeopleRepository
    builder: DistanceMatrixBuilder
    deskly: DesklyClient
    slack: SlackGateway
    controller: EscalationController
    workflow: AssignmentWorkflow
    location_sync: LocationSync

    def close(self) -> None:
        self.controller.shutdown()
        self.deskly.close()
        self.slack.close()


def build_engine(
    client: Any,
    *,
    deskly: DesklyClient | None = None,
    slack: SlackGateway | None = None,
    scheduler: TimeoutScheduler | None = None,
) -> Engine:
    store = TaskAssignmentStore(client)
    distances = DistanceRepository(client)
    locations = LocationRepository(client)
    people = PeopleRepository(client)
    builder = DistanceMatrixBuilder(locations, distances)
    deskly = deskly or DesklyClient()
    slack = slack or SlackGateway()
    controller = EscalationController(store, people, slack, scheduler or ThreadingTimeoutScheduler())
    return Engine(
        store=store,
        distances=distances,
        locations=locations,
        people=people,
        builder=builder,
        deskly=deskly,
        slack=slack,
        controller=controller,
        workflow=AssignmentWorkflow(store, distances, people, deskly, controller),
        location_sync=LocationSync(deskly, locations, builder),
    )


@lru_cache()
def _cached_engine() -> Engine:
    client = get_supabase_client()
    if client is None:
        raise RuntimeError("Supabase not configured")
    logger.info("✅ Dispatch engine initialised")
    return build_engine(client)


def get_engine() -> Engine:
    """FastAPI dependency returning the process-wide engine."""
    try:
        return _cached_engine()
    except RuntimeError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Supabase not configured. Set PLANT_SUPABASE_URL and PLANT_SUPABASE_KEY environment variables.",
        ) from exc


def shutdown_engine() -> None:
    if _cached_engine.cache_info().currsize:
        _cached_engine().close()
        _cached_engine.cache_clear()
