"""Distance matrix endpoints."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, status

from ...engine import Engine, get_engine
from ...errors import SourceUnavailable
from ...schemas.distances import DistanceAnalysisResponse, DistanceRebuildResponse, FloorAnalysisModel
from ...services.distances.builder import DistanceBuildReport

router = APIRouter(prefix="/distances", tags=["distances"])


def to_rebuild_response(report: DistanceBuildReport) -> DistanceRebuildResponse:
    return DistanceRebuildResponse(**asdict(report), total_pairs=report.total_pairs)


@router.post("/rebuild", response_model=DistanceRebuildResponse, status_code=status.HTTP_200_OK)
def rebuild_distances(engine: Engine = Depends(get_engine)) -> DistanceRebuildResponse:
    """Recompute the distance pairs of every floor from the current locations."""
    report = engine.builder.rebuild()
    if report.aborted:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=report.error)
    return to_rebuild_response(report)


@router.get("/analysis", response_model=DistanceAnalysisResponse, status_code=status.HTTP_200_OK)
def analyze_distances(engine: Engine = Depends(get_engine)) -> DistanceAnalysisResponse:
    try:
        analysis = engine.builder.analyze()
    except SourceUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return DistanceAnalysisResponse(
        floors=[FloorAnalysisModel(**asdict(item)) for item in analysis.floors],
        total_locations=analysis.total_locations,
        total_pairs=analysis.total_pairs,
    )
