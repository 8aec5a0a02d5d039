"""
HTTP client for the quest catalog and progress store.
"""
import logging
import os
from dataclasses import dataclass

import httpx

from .engine.catalog import decode_catalog
from .engine.quests import Quest, UserState

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 10.0


class ProgressStoreError(Exception):
    """Raised when a call to the progress store fails."""

    def __init__(self, message: str, retryable: bool = False, status_code: int | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


@dataclass(frozen=True)
class SaveResult:
    state: UserState
    completion_rate: float = 0.0
    total_completed: int = 0
    auto_completed: tuple[str, ...] = ()


def _is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


def _state_from_body(body) -> UserState:
    # a missing set must not be read as an empty one
    if not isinstance(body, dict):
        raise ProgressStoreError("Malformed progress response from store")
    completed = body.get("completed_quests")
    level = body.get("level")
    if not isinstance(completed, list) or not isinstance(level, int):
        raise ProgressStoreError("Malformed progress response from store")
    return UserState(level=max(level, 1), completed_quest_ids=tuple(str(q) for q in completed))


class ProgressStoreClient:
    def __init__(
        self,
        user_id: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.user_id = user_id
        self._http = httpx.Client(
            base_url=base_url or os.environ.get("KAPPA_TRACKER_URL", DEFAULT_BASE_URL),
            timeout=timeout or float(os.environ.get("KAPPA_TRACKER_TIMEOUT", DEFAULT_TIMEOUT)),
            headers={"Authorization": f"Bearer {user_id}"},
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            res = self._http.request(method, path, **kwargs)
        except httpx.TransportError as e:
            # covers timeouts and refused connections
            raise ProgressStoreError(f"{method} {path} failed: {e}", retryable=True) from e

        if res.status_code >= 400:
            raise ProgressStoreError(
                f"{method} {path} returned {res.status_code}",
                retryable=_is_retryable_status(res.status_code),
                status_code=res.status_code,
            )
        return res.json()

    def health(self) -> bool:
        try:
            return self._request("GET", "/health").get("status") == "ok"
        except ProgressStoreError as e:
            logger.warning("Health check failed: %s", e)
            return False

    def get_quests(self) -> list[Quest]:
        body = self._request("GET", "/api/quests")
        return decode_catalog(body.get("quests", []))

    def get_progress(self) -> UserState:
        return _state_from_body(self._request("GET", "/api/progress"))

    def put_progress(self, state: UserState) -> SaveResult:
        body = self._request("PUT", "/api/progress", json={
            "level": state.level,
            "completed_quests": list(state.completed_quest_ids),
        })
        return SaveResult(
            state=_state_from_body(body),
            completion_rate=body.get("completion_rate", 0.0),
            total_completed=body.get("total_completed", 0),
            auto_completed=tuple(body.get("auto_completed") or ()),
        )

    def reset_progress(self) -> UserState:
        self._request("POST", "/api/progress/reset")
        return UserState()
