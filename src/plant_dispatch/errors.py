"""Error taxonomy shared by the data adapters and the engine."""

from __future__ import annotations


class DispatchError(Exception):
    """Base class for dispatch engine failures."""


class SourceUnavailable(DispatchError):
    """An external source (locations, presence, directory) could not be read.

    The current run is aborted; the next scheduled cycle retries.
    """


class PersistenceFailure(DispatchError):
    """A write to the distance or task store failed; the operation was not applied."""


class NotificationFailure(DispatchError):
    """The messaging channel rejected or could not deliver a message."""


class StaleTransition(DispatchError):
    """A transition targeted a task that is no longer in the expected state."""

    def __init__(self, task_id: int, expected: str, actual: str | None) -> None:
        super().__init__(f"Task {task_id} is '{actual}', expected '{expected}'")
        self.task_id = task_id
        self.expected = expected
        self.actual = actual
