"""Precomputation of per-floor distance pairs between locations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from ...data.distance_repository import DistanceRepository
from ...data.location_repository import LocationRepository
from ...errors import PersistenceFailure, SourceUnavailable
from ...models.domain import DistancePair, Location
from ..geometry import pairwise_distances

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DistanceBuildReport:
    pairs_by_floor: dict[int, int] = field(default_factory=dict)
    failed_floors: dict[int, str] = field(default_factory=dict)
    discarded_locations: int = 0
    aborted: bool = False
    error: str | None = None

    @property
    def total_pairs(self) -> int:
        return sum(self.pairs_by_floor.values())


@dataclass(slots=True)
class FloorAnalysis:
    floor: int
    locations: int
    undirected_pairs: int
    self_pairs: int
    total_pairs: int


@dataclass(slots=True)
class DistanceAnalysis:
    floors: list[FloorAnalysis]
    total_locations: int
    total_pairs: int


def expected_pair_count(n: int) -> int:
    """Undirected pairs plus self-pairs for ``n`` locations: n(n+1)/2."""
    return n * (n + 1) // 2


def group_by_floor(locations: Sequence[Location]) -> dict[int, list[Location]]:
    """Group locations by floor, dropping those without an external id."""
    grouped: dict[int, list[Location]] = {}
    for location in locations:
        if not location.external_id or not location.external_id.strip():
            continue
        grouped.setdefault(location.floor, []).append(location)
    return grouped


def compute_floor_pairs(floor: int, locations: Sequence[Location]) -> list[DistancePair]:
    """All ``i < j`` pairs of one floor followed by one zero-distance self-pair per location."""
    if not locations:
        return []

    matrix = pairwise_distances([(location.x, location.y) for location in locations])
    pairs: list[DistancePair] = []
    count = len(locations)
    for i in range(count):
        for j in range(i + 1, count):
            pairs.append(
                DistancePair(
                    from_location=locations[i],
                    to_location=locations[j],
                    distance=float(matrix[i, j]),
                    floor=floor,
                )
            )
    for location in locations:
        pairs.append(DistancePair(from_location=location, to_location=location, distance=0.0, floor=floor))
    return pairs


class DistanceMatrixBuilder:
    """Recomputes and stores the distance pairs of every floor."""

    def __init__(self, locations: LocationRepository, distances: DistanceRepository) -> None:
        self.locations = locations
        self.distances = distances

    def rebuild(self) -> DistanceBuildReport:
        """Replace the stored pairs of every floor with freshly computed ones.

        A failure fetching locations aborts the whole run. A failure storing one
        floor is recorded and the remaining floors are still processed.
        """
        report = DistanceBuildReport()
        try:
            all_locations = self.locations.fetch_locations()
        except SourceUnavailable as exc:
            logger.error(f"Distance rebuild aborted: {exc}")
            report.aborted = True
            report.error = str(exc)
            return report

        if not all_locations:
            logger.info("No location data found.")
            return report

        grouped = group_by_floor(all_locations)
        report.discarded_locations = len(all_locations) - sum(len(items) for items in grouped.values())

        for floor, floor_locations in grouped.items():
            pairs = compute_floor_pairs(floor, floor_locations)
            try:
                stored = self.distances.replace_floor(floor, pairs)
            except PersistenceFailure as exc:
                logger.error(f"Storing distance pairs for floor {floor} failed: {exc}")
                report.failed_floors[floor] = str(exc)
                continue
            report.pairs_by_floor[floor] = stored
            logger.info(f"Floor {floor}: stored {stored} distance pairs for {len(floor_locations)} locations")

        logger.info(f"Distance pairs calculated and stored ({report.total_pairs} pairs, {len(report.failed_floors)} floors failed)")
        return report

    def analyze(self) -> DistanceAnalysis:
        """Report the expected pair counts per floor for the current locations."""
        grouped = group_by_floor(self.locations.fetch_locations())

        floors: list[FloorAnalysis] = []
        for floor in sorted(grouped):
            n = len(grouped[floor])
            undirected = n * (n - 1) // 2
            floors.append(
                FloorAnalysis(
                    floor=floor,
                    locations=n,
                    undirected_pairs=undirected,
                    self_pairs=n,
                    total_pairs=undirected + n,
                )
            )
            logger.info(f"Floor {floor}: {n} locations, {undirected} undirected pairs + {n} self-pairs = {undirected + n}")

        analysis = DistanceAnalysis(
            floors=floors,
            total_locations=sum(item.locations for item in floors),
            total_pairs=sum(item.total_pairs for item in floors),
        )
        logger.info(f"Total: {analysis.total_locations} locations, {analysis.total_pairs} pairs")
        return analysis
