"""Location synchronisation endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ...engine import Engine, get_engine
from ...errors import PersistenceFailure
from ...schemas.distances import LocationSyncResponse
from .distances import to_rebuild_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/locations", tags=["locations"])


@router.post("/sync", response_model=LocationSyncResponse, status_code=status.HTTP_200_OK)
def sync_locations(engine: Engine = Depends(get_engine)) -> LocationSyncResponse:
    """Pull room resources from Desk.ly and rebuild distances when locations changed."""
    try:
        report = engine.location_sync.run()
    except PersistenceFailure as exc:
        logger.exception("Location sync failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to sync locations: {exc}",
        ) from exc
    return LocationSyncResponse(
        fetched=report.fetched,
        inserted=report.inserted,
        updated=report.updated,
        unchanged=report.unchanged,
        failed_rooms=report.failed_rooms,
        distances=to_rebuild_response(report.distances) if report.distances else None,
    )
