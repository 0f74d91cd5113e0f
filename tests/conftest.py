from __future__ import annotations

import copy
import itertools
from dataclasses import dataclass
from typing import Any, Callable

import pytest

from plant_dispatch.errors import NotificationFailure
from plant_dispatch.models.domain import DeliveryHandle, TaskSummary
from plant_dispatch.services.escalation.scheduler import TimeoutScheduler
from plant_dispatch.services.interfaces import NotificationGateway


@dataclass
class FakeResponse:
    data: list[dict[str, Any]]
    count: int | None = None


class FakeQuery:
    """Just enough of the postgrest query builder for the repositories."""

    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload: Any = None
        self.filters: list[Callable[[dict[str, Any]], bool]] = []
        self.count_mode: str | None = None
        self.head = False
        self.window: tuple[int, int] | None = None
        self.max_rows: int | None = None

    def select(self, columns: str = "*", count: str | None = None, head: bool = False) -> "FakeQuery":
        self.op = "select"
        self.count_mode = count
        self.head = head
        return self

    def insert(self, rows: Any) -> "FakeQuery":
        self.op = "insert"
        self.payload = rows if isinstance(rows, list) else [rows]
        return self

    def update(self, values: dict[str, Any]) -> "FakeQuery":
        self.op = "update"
        self.payload = values
        return self

    def delete(self) -> "FakeQuery":
        self.op = "delete"
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column: str, values: list[Any]) -> "FakeQuery":
        allowed = list(values)
        self.filters.append(lambda row: row.get(column) in allowed)
        return self

    def lt(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) < value)
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self.window = (start, end)
        return self

    def limit(self, count: int) -> "FakeQuery":
        self.max_rows = count
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        return all(check(row) for check in self.filters)

    def execute(self) -> FakeResponse:
        self.db.check_failure(self.table_name, self.op)
        rows = self.db.tables.setdefault(self.table_name, [])

        if self.op == "insert":
            inserted = []
            for record in self.payload:
                row = dict(record)
                row.setdefault("id", next(self.db.ids))
                rows.append(row)
                inserted.append(copy.deepcopy(row))
            return FakeResponse(data=inserted)

        matched = [row for row in rows if self._matches(row)]
        if self.op == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return FakeResponse(data=copy.deepcopy(matched))
        if self.op == "delete":
            self.db.tables[self.table_name] = [row for row in rows if not self._matches(row)]
            return FakeResponse(data=copy.deepcopy(matched))

        count = len(matched) if self.count_mode else None
        if self.head:
            return FakeResponse(data=[], count=count)
        if self.window is not None:
            start, end = self.window
            matched = matched[start : end + 1]
        if self.max_rows is not None:
            matched = matched[: self.max_rows]
        return FakeResponse(data=copy.deepcopy(matched), count=count)


class FakeSupabase:
    """In-memory stand-in for the Supabase client."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.ids = itertools.count(1000)
        self.calls: dict[tuple[str, str], int] = {}
        self._failures: dict[tuple[str, str], tuple[int, int | None]] = {}

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def seed(self, table: str, rows: list[dict[str, Any]]) -> None:
        self.tables.setdefault(table, []).extend(copy.deepcopy(rows))

    def fail(self, table: str, op: str, *, after: int = 0, times: int | None = None) -> None:
        """Raise on ``op`` against ``table`` once ``after`` calls succeeded, ``times`` times (forever if None)."""
        self._failures[(table, op)] = (after, times)

    def check_failure(self, table: str, op: str) -> None:
        key = (table, op)
        call_index = self.calls.get(key, 0)
        self.calls[key] = call_index + 1
        if key not in self._failures:
            return
        after, times = self._failures[key]
        if call_index < after:
            return
        if times is not None and call_index >= after + times:
            return
        raise RuntimeError(f"simulated {op} failure on {table}")


class ManualScheduler(TimeoutScheduler):
    """Collects timeouts; tests fire them explicitly."""

    def __init__(self) -> None:
        self.scheduled: list[tuple[str, float, Callable[[], object]]] = []

    def schedule(self, name: str, delay_seconds: float, callback: Callable[[], object]) -> None:
        self.scheduled.append((name, delay_seconds, callback))

    def fire_next(self) -> object:
        _, _, callback = self.scheduled.pop(0)
        return callback()

    def fire_all(self) -> None:
        while self.scheduled:
            self.fire_next()


class RecordingGateway(NotificationGateway):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, TaskSummary, int | None]] = []
        self.updated: list[tuple[DeliveryHandle, str]] = []

    def send(self, handle: str, summary: TaskSummary, *, recipient_id: int | None = None) -> DeliveryHandle:
        if self.fail:
            raise NotificationFailure("channel down")
        self.sent.append((handle, summary, recipient_id))
        return DeliveryHandle(channel=handle, ts=f"{len(self.sent)}.0", task_id=summary.task_id, recipient_id=recipient_id)

    def update(self, delivery: DeliveryHandle, text: str) -> None:
        self.updated.append((delivery, text))


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def gateway() -> RecordingGateway:
    return RecordingGateway()
