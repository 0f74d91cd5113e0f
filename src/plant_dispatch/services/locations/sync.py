"""Synchronise bookable resources from Desk.ly into the location table."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from ...config import settings
from ...data.location_repository import LocationRepository
from ...errors import SourceUnavailable
from ...models.domain import Location
from ..distances.builder import DistanceBuildReport, DistanceMatrixBuilder
from ..geometry import vertices_centroid
from ..presence.deskly_client import DesklyClient

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LocationSyncReport:
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    failed_rooms: list[str] = field(default_factory=list)
    distances: DistanceBuildReport | None = None


def resources_to_locations(resources: Sequence[dict], floor: int) -> list[Location]:
    locations: list[Location] = []
    for resource in resources:
        centroid = vertices_centroid(resource.get("vertices") or [])
        if centroid is None:
            logger.debug(f"Resource {resource.get('name')} has no vertices, skipping")
            continue
        locations.append(
            Location(
                location_id=resource["id"],
                name=resource.get("name") or resource["id"],
                external_id=resource["id"],
                x=centroid[0],
                y=centroid[1],
                floor=floor,
            )
        )
    return locations


class LocationSync:
    """Pulls room resources per floor and rebuilds distances when anything changed."""

    def __init__(
        self,
        deskly: DesklyClient,
        locations: LocationRepository,
        builder: DistanceMatrixBuilder,
        floor_room_ids: Sequence[str] | None = None,
    ) -> None:
        self.deskly = deskly
        self.locations = locations
        self.builder = builder
        self.floor_room_ids = tuple(floor_room_ids) if floor_room_ids is not None else settings.deskly_floor_room_ids

    def run(self) -> LocationSyncReport:
        report = LocationSyncReport()
        fetched: list[Location] = []
        for index, room_id in enumerate(self.floor_room_ids, start=1):
            try:
                resources = self.deskly.room_resources(room_id)
            except SourceUnavailable as exc:
                logger.error(f"Fetching resources for room {room_id} failed: {exc}")
                report.failed_rooms.append(room_id)
                continue
            floor_locations = resources_to_locations(resources, floor=index)
            logger.info(f"Fetched {len(floor_locations)} resources for floor {index} (room {room_id})")
            fetched.extend(floor_locations)

        report.fetched = len(fetched)
        if not fetched:
            return report

        counts = self.locations.upsert_locations(fetched)
        report.inserted = counts["inserted"]
        report.updated = counts["updated"]
        report.unchanged = counts["unchanged"]
        if report.inserted or report.updated:
            report.distances = self.builder.rebuild()
        return report
