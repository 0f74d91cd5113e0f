"""Slack interactivity webhook."""

from __future__ import annotations

import json
import logging
from urllib.parse import parse_qs

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status

from ...engine import Engine, get_engine
from ...models.domain import DeliveryHandle
from ...services.notifications.slack_client import CONFIRM_ACTION_ID, decode_action_value

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/slack", tags=["slack"])


def _parse_payload(body: bytes) -> dict:
    try:
        form = parse_qs(body.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid interaction payload.") from exc
    raw = (form.get("payload") or [None])[0]
    if not raw:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing interaction payload.")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid interaction payload.") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid interaction payload.")
    return payload


@router.post("/actions", status_code=status.HTTP_200_OK)
async def handle_action(
    request: Request,
    background_tasks: BackgroundTasks,
    engine: Engine = Depends(get_engine),
) -> dict:
    """Acknowledge a signed button click and finalize the task in the background.

    Slack expects an answer within three seconds, so the confirmation runs after
    the response is sent.
    """
    body = await request.body()
    if not engine.slack.verify_request(
        body,
        request.headers.get("X-Slack-Request-Timestamp"),
        request.headers.get("X-Slack-Signature"),
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid Slack signature.")

    payload = _parse_payload(body)
    action = next(
        (item for item in payload.get("actions") or [] if item.get("action_id") == CONFIRM_ACTION_ID),
        None,
    )
    if action is None:
        logger.debug(f"Ignoring Slack interaction of type {payload.get('type')}")
        return {"status": "ignored"}

    try:
        task_id, recipient_id = decode_action_value(str(action.get("value", "")))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid task reference.") from exc

    container = payload.get("container") or {}
    channel = (payload.get("channel") or {}).get("id") or container.get("channel_id")
    ts = (payload.get("message") or {}).get("ts") or container.get("message_ts")
    delivery = None
    if channel and ts:
        delivery = DeliveryHandle(channel=channel, ts=ts, task_id=task_id, recipient_id=recipient_id)

    logger.info(f"Slack user {(payload.get('user') or {}).get('id')} confirmed task {task_id}")
    background_tasks.add_task(engine.controller.confirm, task_id, recipient_id, delivery)
    return {"status": "accepted", "task_id": task_id}
