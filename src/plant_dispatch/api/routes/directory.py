"""Employee directory endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...engine import Engine, get_engine
from ...errors import NotificationFailure, PersistenceFailure, SourceUnavailable
from ...schemas.distances import DirectorySyncResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/directory", tags=["directory"])


@router.post("/sync-slack", response_model=DirectorySyncResponse, status_code=status.HTTP_200_OK)
def sync_slack_users(
    mail_domain: str | None = Query(default=None, description="Domain used to build missing email addresses"),
    engine: Engine = Depends(get_engine),
) -> DirectorySyncResponse:
    """Insert Slack workspace members that are not in the employee table yet."""
    try:
        members = engine.slack.list_users()
        inserted = engine.people.sync_slack_users(members, mail_domain=mail_domain)
    except NotificationFailure as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except (SourceUnavailable, PersistenceFailure) as exc:
        logger.exception("Slack directory sync failed")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return DirectorySyncResponse(members=len(members), inserted=inserted)
