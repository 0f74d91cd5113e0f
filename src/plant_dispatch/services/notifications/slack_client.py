"""Slack Web API gateway for watering task notifications."""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Any

import httpx

from ...config import settings
from ...errors import NotificationFailure
from ...models.domain import DeliveryHandle, TaskSummary
from ..interfaces import NotificationGateway

CONFIRM_ACTION_ID = "taken_care"
SIGNATURE_VERSION = "v0"

logger = logging.getLogger(__name__)


def encode_action_value(task_id: int, recipient_id: int | None) -> str:
    return f"{task_id}:{recipient_id}" if recipient_id is not None else str(task_id)


def decode_action_value(value: str) -> tuple[int, int | None]:
    """Inverse of :func:`encode_action_value`; raises ValueError on garbage."""
    task_part, _, recipient_part = value.partition(":")
    task_id = int(task_part)
    recipient_id = int(recipient_part) if recipient_part and recipient_part != "None" else None
    return task_id, recipient_id


def verify_request_signature(
    body: bytes,
    timestamp: str | None,
    signature: str | None,
    secret: str | None,
    *,
    max_age_seconds: float | None = None,
    now: float | None = None,
) -> bool:
    """Check the `X-Slack-Signature` of an incoming request.

    The signature is `v0=` plus the hex HMAC-SHA256 of `v0:{timestamp}:{body}`
    keyed with the app's signing secret. Requests older than `max_age_seconds`
    are refused.
    """
    if not secret or not timestamp or not signature:
        return False
    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    max_age = max_age_seconds if max_age_seconds is not None else settings.slack_signature_max_age_seconds
    current = now if now is not None else time.time()
    if abs(current - sent_at) > max_age:
        logger.warning(f"Rejecting Slack request with stale timestamp {timestamp}")
        return False

    base = f"{SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + body
    expected = f"{SIGNATURE_VERSION}=" + hmac.new(secret.encode("utf-8"), base, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def build_task_blocks(summary: TaskSummary, recipient_id: int | None = None) -> list[dict[str, Any]]:
    lines = [
        "*Watering task*",
        f"*Plant:* {summary.plant_name or 'Unknown'}",
        f"*Location:* {summary.location_name}",
    ]
    if summary.volume:
        lines.append(f"*Water volume:* {summary.volume:g} ml")
    if summary.method:
        lines.append(f"*Method:* {summary.method}")

    blocks: list[dict[str, Any]] = [
        {"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(lines)}},
    ]
    if summary.image_url:
        blocks.append({"type": "image", "image_url": summary.image_url, "alt_text": "Picture of the plant"})
    blocks.append(
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "Plant watered"},
                    "style": "primary",
                    "action_id": CONFIRM_ACTION_ID,
                    "value": encode_action_value(summary.task_id, recipient_id),
                }
            ],
        }
    )
    return blocks


class SlackGateway(NotificationGateway):
    """Posts task messages with a confirm button and rewrites them on state changes."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
        signing_secret: str | None = None,
    ) -> None:
        self.token = token if token is not None else settings.slack_bot_token
        self.signing_secret = signing_secret if signing_secret is not None else settings.slack_signing_secret
        self.base_url = (base_url or settings.slack_base_url).rstrip("/")
        self.max_retries = max_retries if max_retries is not None else settings.http_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.http_backoff_seconds
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout or settings.http_timeout_seconds, connect=10.0),
            headers={"Authorization": f"Bearer {self.token or ''}"},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def verify_request(self, body: bytes, timestamp: str | None, signature: str | None) -> bool:
        if not self.signing_secret:
            logger.error("Slack signing secret not configured, refusing interactivity request")
            return False
        return verify_request_signature(body, timestamp, signature, self.signing_secret)

    def _call(self, method: str, payload: dict[str, Any] | None = None, *, http_get: bool = False) -> dict:
        url = f"{self.base_url}/{method}"
        attempt = 0
        while True:
            try:
                if http_get:
                    response = self._client.get(url, params=payload)
                else:
                    response = self._client.post(url, json=payload or {})
                if response.status_code == 429:
                    # Slack rate limit: honour Retry-After
                    attempt += 1
                    if attempt > self.max_retries:
                        raise NotificationFailure(f"Slack {method} rate limited after {attempt} attempts")
                    time.sleep(float(response.headers.get("Retry-After", self.backoff_seconds)))
                    continue
                response.raise_for_status()
                data = response.json()
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                attempt += 1
                if attempt > self.max_retries:
                    raise NotificationFailure(f"Slack {method} unreachable: {e}") from e
                time.sleep(self.backoff_seconds * attempt)
                continue
            except httpx.HTTPStatusError as e:
                raise NotificationFailure(f"Slack {method} failed with status {e.response.status_code}") from e

            if not data.get("ok"):
                raise NotificationFailure(f"Slack {method} returned error '{data.get('error')}'")
            return data

    def send(self, handle: str, summary: TaskSummary, *, recipient_id: int | None = None) -> DeliveryHandle:
        data = self._call(
            "chat.postMessage",
            {
                "channel": handle,
                "text": "Please water the plant!",
                "blocks": build_task_blocks(summary, recipient_id),
            },
        )
        ts = data.get("ts")
        if not ts:
            raise NotificationFailure("No timestamp returned from chat.postMessage, message cannot be updated")
        return DeliveryHandle(channel=data.get("channel") or handle, ts=ts, task_id=summary.task_id, recipient_id=recipient_id)

    def update(self, delivery: DeliveryHandle, text: str) -> None:
        self._call(
            "chat.update",
            {
                "channel": delivery.channel,
                "ts": delivery.ts,
                "text": text,
                "blocks": [{"type": "section", "text": {"type": "mrkdwn", "text": text}}],
            },
        )

    def list_users(self) -> list[dict[str, Any]]:
        """All workspace members, following ``next_cursor`` pagination."""
        members: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            params: dict[str, Any] = {"limit": 200}
            if cursor:
                params["cursor"] = cursor
            data = self._call("users.list", params, http_get=True)
            members.extend(data.get("members") or [])
            cursor = (data.get("response_metadata") or {}).get("next_cursor") or None
            if not cursor:
                return members
