"""
Saving progress to the store: one save in flight, bounded retries, and a
durable queue for saves that could not be delivered.

Every save is a full overwrite of the user's state, so re-sending the same
payload is harmless and only the latest queued state matters.
"""
import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, TypeVar

from .client import ProgressStoreClient, ProgressStoreError, SaveResult
from .engine.quests import UserState

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PENDING_FILE = "~/.kappa_tracker/pending_save.json"


class SaveStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    COMMITTED = "committed"
    FAILED = "failed"
    QUEUED = "queued"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0

    def delay(self, attempt: int) -> float:
        """Wait after the given (0-based) failed attempt: 1s, 2s, 4s, ..."""
        return self.base_delay * self.factor ** attempt


def retry_with_backoff(
    func: Callable[[], T],
    policy: RetryPolicy = RetryPolicy(),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call func, retrying transient ProgressStoreErrors with exponential backoff.

    Non-retryable errors are raised immediately; the last transient error is
    raised once attempts run out.
    """
    for attempt in range(policy.max_attempts):
        try:
            return func()
        except ProgressStoreError as e:
            if not e.retryable or attempt == policy.max_attempts - 1:
                raise
            wait = policy.delay(attempt)
            logger.warning("Save attempt %d failed (%s), retrying in %.1fs", attempt + 1, e, wait)
            sleep(wait)
    raise ValueError("RetryPolicy.max_attempts must be at least 1")


class PendingSaveQueue:
    """Keeps the most recent undelivered state in a JSON file."""

    def __init__(self, path: str | Path | None = None):
        raw = path or os.environ.get("KAPPA_TRACKER_PENDING_FILE", DEFAULT_PENDING_FILE)
        self.path = Path(raw).expanduser()

    def push(self, state: UserState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "level": state.level,
            "completed_quests": list(state.completed_quest_ids),
            "queued_at": datetime.now(timezone.utc).isoformat(),
        }
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload))
        tmp.replace(self.path)

    def peek(self) -> UserState | None:
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text())
            return UserState(
                level=int(payload.get("level") or 1),
                completed_quest_ids=tuple(payload.get("completed_quests") or ()),
            )
        except (ValueError, TypeError, AttributeError) as e:
            logger.error("Discarding unreadable pending save %s: %s", self.path, e)
            self.clear()
            return None

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class ProgressSync:
    """
    Save state machine: idle -> pending -> committed, or pending -> failed ->
    queued when retries run out. A save requested while another is pending is
    coalesced: the latest such state is sent once the in-flight save settles.
    """

    def __init__(
        self,
        store: ProgressStoreClient,
        queue: PendingSaveQueue | None = None,
        policy: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.queue = queue or PendingSaveQueue()
        self.policy = policy
        self.sleep = sleep
        self.status = SaveStatus.IDLE
        self.last_error: ProgressStoreError | None = None
        self._lock = threading.Lock()
        self._next: UserState | None = None

    @property
    def has_pending(self) -> bool:
        return self.queue.peek() is not None

    def save(self, state: UserState) -> SaveResult | None:
        """
        Persist state. Returns the server's result for the last state sent, or
        None when the request was coalesced into a save already in flight.
        Raises ProgressStoreError when the save fails.
        """
        with self._lock:
            if self.status == SaveStatus.PENDING:
                self._next = state
                logger.info("Save already in flight, coalescing")
                return None
            self.status = SaveStatus.PENDING

        result = None
        while state is not None:
            try:
                result = retry_with_backoff(lambda: self.store.put_progress(state), self.policy, self.sleep)
            except ProgressStoreError as e:
                self._fail(state, e)
                raise

            with self._lock:
                state, self._next = self._next, None
                if state is None:
                    self.status = SaveStatus.COMMITTED
                    self.last_error = None

        self.queue.clear()
        return result

    def _fail(self, state: UserState, error: ProgressStoreError) -> None:
        with self._lock:
            latest = self._next or state
            self._next = None
            self.last_error = error
            self.status = SaveStatus.FAILED
            if error.retryable:
                self.queue.push(latest)
                self.status = SaveStatus.QUEUED
        if error.retryable:
            logger.warning("Save failed after %d attempts, queued for later: %s", self.policy.max_attempts, error)
        else:
            logger.error("Save rejected by progress store: %s", error)

    def flush_pending(self) -> SaveResult | None:
        """Re-send the queued state, if any."""
        state = self.queue.peek()
        if state is None:
            return None
        logger.info("Flushing queued save")
        return self.save(state)

    def resume(self) -> SaveResult | None:
        """Flush the queue after a successful health check."""
        if self.queue.peek() is None or not self.store.health():
            return None
        return self.flush_pending()
