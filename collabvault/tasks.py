"""In-process outbound task queue.

Side effects that must not hold up an HTTP response (integration
forwarding, lift-test recording, click recording) are enqueued here and
drained after the response is sent. Each attempt runs in its own session
and failed attempts are retried with exponential backoff; tasks that keep
failing are moved to ``dead_letter`` rather than dropped.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from tenacity import RetryError, Retrying, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from collabvault.db import Database
from collabvault.settings import settings

logger = logging.getLogger(__name__)

TaskFunc = Callable[..., Any]


@dataclass
class OutboundTask:
    name: str
    func: TaskFunc
    kwargs: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    last_error: str | None = None


class OutboundTaskQueue:
    def __init__(
        self,
        database: Database,
        max_attempts: int | None = None,
        wait: wait_base | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.database = database
        self.max_attempts = max_attempts or settings.OUTBOUND_TASK_MAX_ATTEMPTS
        self.wait = wait or wait_exponential(
            multiplier=settings.OUTBOUND_TASK_RETRY_BASE_SECONDS,
            max=settings.OUTBOUND_TASK_RETRY_MAX_SECONDS,
        )
        self._sleep = sleep
        self._pending: list[OutboundTask] = []
        self._lock = threading.Lock()
        self.dead_letter: list[OutboundTask] = []
        self.completed = 0
        self.failed_attempts = 0

    def enqueue(self, name: str, func: TaskFunc, **kwargs: Any) -> OutboundTask:
        """Queue ``func(session, **kwargs)``."""
        task = OutboundTask(name=name, func=func, kwargs=kwargs)
        with self._lock:
            self._pending.append(task)
        return task

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def _attempt(self, task: OutboundTask) -> None:
        task.attempts += 1
        with self.database.session_scope() as db:
            try:
                task.func(db, **task.kwargs)
            except Exception as exc:
                db.rollback()
                task.last_error = str(exc)
                self.failed_attempts += 1
                logger.exception(
                    "Outbound task %s failed (attempt %s/%s)",
                    task.name,
                    task.attempts,
                    self.max_attempts,
                )
                raise

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            sleep=self._sleep,
        )

    def drain(self) -> dict[str, int]:
        with self._lock:
            batch, self._pending = self._pending, []

        completed = 0
        dead = 0
        for task in batch:
            try:
                self._retrying()(self._attempt, task)
            except RetryError:
                dead += 1
                with self._lock:
                    self.dead_letter.append(task)
                logger.error(
                    "Outbound task %s moved to dead letter after %s attempts: %s",
                    task.name,
                    task.attempts,
                    task.last_error,
                )
            else:
                completed += 1

        with self._lock:
            self.completed += completed
        return {"completed": completed, "dead_lettered": dead}

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "pending": len(self._pending),
                "completed": self.completed,
                "failed": self.failed_attempts,
                "dead_lettered": len(self.dead_letter),
            }
