"""Distance matrix and location sync schemas."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel


class DistanceRebuildResponse(BaseModel):
    pairs_by_floor: dict[int, int]
    failed_floors: dict[int, str]
    discarded_locations: int
    total_pairs: int
    aborted: bool
    error: str | None = None


class FloorAnalysisModel(BaseModel):
    floor: int
    locations: int
    undirected_pairs: int
    self_pairs: int
    total_pairs: int


class DistanceAnalysisResponse(BaseModel):
    floors: List[FloorAnalysisModel]
    total_locations: int
    total_pairs: int


class LocationSyncResponse(BaseModel):
    fetched: int
    inserted: int
    updated: int
    unchanged: int
    failed_rooms: List[str]
    distances: DistanceRebuildResponse | None = None


class DirectorySyncResponse(BaseModel):
    members: int
    inserted: int
