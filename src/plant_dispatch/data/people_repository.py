"""Employee directory: maps booking users to internal ids and Slack handles."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Iterable, Sequence

from ..errors import PersistenceFailure, SourceUnavailable
from ..models.domain import Person

logger = logging.getLogger(__name__)

TABLE = "employee"


class PeopleRepository:
    """Reads and seeds the ``employee`` table."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def _fetch_employees(self, columns: str = "id, mail, slack_id, real_name") -> list[dict[str, Any]]:
        try:
            response = self.client.table(TABLE).select(columns).execute()
        except Exception as exc:
            raise SourceUnavailable(f"Failed to fetch employees: {exc}") from exc
        return list(response.data or [])

    def seed_from_bookings(self, persons: Iterable[Person]) -> int:
        """Insert persons whose email is not yet in the directory. Returns the number inserted."""
        unique: dict[str, Person] = {}
        for person in persons:
            if person.email and person.email.lower() not in unique:
                unique[person.email.lower()] = person
        if not unique:
            logger.info("No users with an email address found in bookings.")
            return 0

        existing = {(row.get("mail") or "").lower() for row in self._fetch_employees("mail")}
        to_insert = [
            {
                "mail": person.email,
                "real_name": person.display_name,
                "slack_id": person.slack_id,
            }
            for email, person in unique.items()
            if email not in existing
        ]
        if not to_insert:
            return 0
        try:
            self.client.table(TABLE).insert(to_insert).execute()
        except Exception as exc:
            raise PersistenceFailure(f"Failed to insert {len(to_insert)} employees from bookings: {exc}") from exc
        logger.info(f"Inserted {len(to_insert)} new employees from bookings")
        return len(to_insert)

    def resolve(self, persons: Sequence[Person]) -> list[Person]:
        """Attach ``employee_id`` and ``slack_id`` by case-insensitive email match.

        Query this again after :meth:`seed_from_bookings` so new rows resolve.
        """
        by_email: dict[str, dict[str, Any]] = {}
        for row in self._fetch_employees():
            mail = row.get("mail")
            if mail and row.get("id") is not None:
                by_email[mail.lower()] = row

        resolved: list[Person] = []
        for person in persons:
            row = by_email.get((person.email or "").lower())
            if row is None:
                resolved.append(person)
                continue
            resolved.append(
                replace(
                    person,
                    employee_id=int(row["id"]),
                    slack_id=row.get("slack_id") or person.slack_id,
                )
            )
        return resolved

    def get_person(self, employee_id: int) -> Person | None:
        try:
            response = (
                self.client.table(TABLE)
                .select("id, mail, slack_id, real_name")
                .eq("id", employee_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise SourceUnavailable(f"Failed to fetch employee {employee_id}: {exc}") from exc

        rows = response.data or []
        if not rows:
            return None
        row = rows[0]
        return Person(
            person_id=str(row["id"]),
            first_name=row.get("real_name") or "",
            last_name="",
            email=row.get("mail") or "",
            slack_id=row.get("slack_id") or None,
            employee_id=int(row["id"]),
        )

    def sync_slack_users(self, members: Sequence[dict[str, Any]], mail_domain: str | None = None) -> int:
        """Insert real Slack workspace members not yet known by ``(slack_id, real_name)``."""
        valid = [
            member
            for member in members
            if not member.get("deleted")
            and not member.get("is_bot")
            and member.get("id")
            and isinstance(member.get("real_name"), str)
            and member.get("real_name")
        ]
        existing = {
            f"{row.get('slack_id')}|{row.get('real_name')}" for row in self._fetch_employees("slack_id, real_name")
        }

        new_users: list[dict[str, Any]] = []
        for member in valid:
            if f"{member['id']}|{member['real_name']}" in existing:
                continue
            mail = (member.get("profile") or {}).get("email")
            if not mail and mail_domain and member.get("name"):
                mail = f"{member['name']}@{mail_domain}"
            new_users.append({"slack_id": member["id"], "real_name": member["real_name"], "mail": mail})

        if not new_users:
            logger.info("No new Slack users to insert.")
            return 0
        try:
            self.client.table(TABLE).insert(new_users).execute()
        except Exception as exc:
            raise PersistenceFailure(f"Failed to insert {len(new_users)} Slack users: {exc}") from exc
        logger.info(f"Inserted {len(new_users)} new Slack users into the directory")
        return len(new_users)
