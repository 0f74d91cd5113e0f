"""Timers that fire escalation timeouts."""

from __future__ import annotations

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable

logger = logging.getLogger(__name__)


class TimeoutScheduler(ABC):
    """Contract for running a callback once after a delay."""

    @abstractmethod
    def schedule(self, name: str, delay_seconds: float, callback: Callable[[], object]) -> None:
        raise NotImplementedError

    def shutdown(self) -> None:
        """Drop timers that have not fired yet."""


class ThreadingTimeoutScheduler(TimeoutScheduler):
    """One daemon ``threading.Timer`` per scheduled timeout.

    Timers are independent; many can be live at once. They are not cancelled
    when a task finishes, the callback re-reads the task instead.
    """

    def __init__(self) -> None:
        self._timers: dict[int, threading.Timer] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def schedule(self, name: str, delay_seconds: float, callback: Callable[[], object]) -> None:
        timer_id = next(self._ids)
        timer = threading.Timer(delay_seconds, self._run, args=(timer_id, name, callback))
        timer.daemon = True
        timer.name = f"timeout-{name}-{timer_id}"
        with self._lock:
            self._timers[timer_id] = timer
        timer.start()
        logger.debug(f"Scheduled {name} in {delay_seconds:.0f}s")

    def _run(self, timer_id: int, name: str, callback: Callable[[], object]) -> None:
        with self._lock:
            self._timers.pop(timer_id, None)
        try:
            callback()
        except Exception:
            logger.exception(f"Timeout callback {name} failed")

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            logger.info(f"Cancelled {len(timers)} pending timeouts")
