"""HTTP client for the Desk.ly booking system."""

from __future__ import annotations

import logging
import time
from datetime import date, datetime
from typing import Any

import httpx

from ...config import settings
from ...errors import SourceUnavailable
from ...models.domain import Booking, Person

logger = logging.getLogger(__name__)


def _parse_floor(raw: Any) -> int | None:
    """Floor number from a booking's ``floor`` field (object with a numeric name, or a plain value)."""
    if isinstance(raw, dict):
        raw = raw.get("name")
    if raw is None:
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def _parse_datetime(raw: Any) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None


class DesklyClient:
    """Reads today's bookings, user details and room resources from Desk.ly."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        location_id: str | None = None,
        page_limit: int | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.deskly_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.deskly_api_key
        self.location_id = location_id if location_id is not None else settings.deskly_location_id
        self.page_limit = page_limit or settings.deskly_page_limit
        self.max_retries = max_retries if max_retries is not None else settings.http_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.http_backoff_seconds
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout or settings.http_timeout_seconds, connect=10.0),
            headers={
                "accept": "application/json",
                "X-AUTH-MODE": "API-Key",
                "Authorization": self.api_key or "",
            },
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> dict:
        url = f"{self.base_url}/{path.lstrip('/')}"
        attempt = 0
        while True:
            try:
                response = self._client.get(url, params=params)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                # Client errors will not get better on retry
                if e.response.status_code < 500:
                    raise SourceUnavailable(f"Desk.ly request {path} failed with status {e.response.status_code}") from e
                attempt += 1
                if attempt > self.max_retries:
                    raise SourceUnavailable(f"Desk.ly request {path} failed after {attempt} attempts: {e}") from e
                time.sleep(self.backoff_seconds * attempt)
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                attempt += 1
                if attempt > self.max_retries:
                    logger.warning(f"Desk.ly request {path} failed after {self.max_retries} retries: {e}")
                    raise SourceUnavailable(f"Desk.ly unreachable: {e}") from e
                wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                logger.debug(f"Desk.ly request failed, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                time.sleep(wait_time)
            except ValueError as e:
                raise SourceUnavailable(f"Desk.ly returned invalid JSON for {path}") from e

    @staticmethod
    def _is_success(payload: dict) -> bool:
        status = payload.get("status")
        return isinstance(status, str) and status.lower() == "success"

    def fetch_user(self, user_id: str) -> Person | None:
        """Fetch one user's details; failures are logged and yield None."""
        try:
            payload = self._get_json(f"user/{user_id}")
        except SourceUnavailable as e:
            logger.error(f"Error fetching Desk.ly user {user_id}: {e}")
            return None
        data = payload.get("data")
        if not self._is_success(payload) or not isinstance(data, dict):
            logger.info(f"Failed to fetch details for user: {user_id}")
            return None
        return Person(
            person_id=str(data.get("id", user_id)),
            first_name=data.get("firstName") or "",
            last_name=data.get("lastName") or "",
            email=data.get("email") or "",
        )

    def bookings_for_floor(self, floor_id: str, day: date | None = None) -> list[Booking]:
        """Bookings of ``floor_id`` for ``day`` (default today) with their users resolved.

        Raises:
            SourceUnavailable: the booking listing could not be fetched.
        """
        day = day or date.today()
        params = {
            "page[limit]": self.page_limit,
            "page[offset]": 0,
            "date[]": day.isoformat(),
            "floor": floor_id,
        }
        if self.location_id:
            params["location"] = self.location_id

        payload = self._get_json("resourceBooking/list", params=params)
        if not self._is_success(payload):
            raise SourceUnavailable(f"Unexpected Desk.ly answer for floor {floor_id}, status was {payload.get('status')}")

        users: dict[str, Person | None] = {}
        bookings: list[Booking] = []
        for entry in payload.get("data") or []:
            user_id = (entry.get("user") or {}).get("id")
            resource_id = (entry.get("resource") or {}).get("id")
            floor = _parse_floor(entry.get("floor"))
            if not user_id or not resource_id or floor is None:
                logger.debug(f"Skipping incomplete booking on floor {floor_id}: {entry}")
                continue
            if user_id not in users:
                users[user_id] = self.fetch_user(str(user_id))
            person = users[user_id]
            if person is None:
                continue
            bookings.append(
                Booking(
                    location_id=str(resource_id),
                    person=person,
                    floor=floor,
                    starts_at=_parse_datetime(entry.get("bookingStartDateTime")),
                    ends_at=_parse_datetime(entry.get("bookingEndDateTime")),
                )
            )
        logger.info(f"Floor {floor_id}: {len(bookings)} bookings, {len(users)} users")
        return bookings

    def room_resources(self, room_id: str) -> list[dict[str, Any]]:
        """Resources of a room as ``{"id", "name", "vertices"}`` dicts."""
        payload = self._get_json(f"room/{room_id}")
        if not self._is_success(payload):
            raise SourceUnavailable(f"Unexpected Desk.ly answer for room {room_id}, status was {payload.get('status')}")
        data = payload.get("data") or {}
        return [
            {
                "id": str(resource.get("id")),
                "name": resource.get("name") or "",
                "vertices": [tuple(vertex) for vertex in resource.get("vertices") or []],
            }
            for resource in data.get("resources") or []
        ]
