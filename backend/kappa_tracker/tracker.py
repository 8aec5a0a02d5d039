"""
Client-side controller. Owns the catalog, the user's state and the view
settings, and sequences every change as: mutate locally, persist, reconcile.
The view is derived on demand and never stored.
"""
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable

from .client import ProgressStoreClient, ProgressStoreError, SaveResult
from .engine.progress import reconcile
from .engine.quests import Grouping, Quest, UserState, ViewMode
from .engine.view import QuestView, ViewConfig, build_view
from .sync import ProgressSync, retry_with_backoff

logger = logging.getLogger(__name__)

CONFIRM_WINDOW_SECONDS = 3.0
SAVE_FAILED_BANNER = "Could not save your progress. It will be retried automatically."


class ConfirmationGate:
    """
    Two-press confirmation. The first press arms a short window, a second press
    on the same key inside it confirms. Arming a key disarms any other.
    """

    def __init__(self, window: float = CONFIRM_WINDOW_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self.clock = clock
        self._armed: tuple[str, float] | None = None

    @property
    def armed_key(self) -> str | None:
        if self._armed and self.clock() - self._armed[1] <= self.window:
            return self._armed[0]
        return None

    def press(self, key: str) -> bool:
        if self.armed_key == key:
            self._armed = None
            return True
        self._armed = (key, self.clock())
        return False

    def disarm(self) -> None:
        self._armed = None


@dataclass(frozen=True)
class Snapshot:
    quests: tuple[Quest, ...] = ()
    state: UserState = field(default_factory=UserState)
    config: ViewConfig = field(default_factory=ViewConfig)


class QuestTracker:
    def __init__(self, store: ProgressStoreClient, sync: ProgressSync | None = None, gate: ConfirmationGate | None = None):
        self.store = store
        self.sync = sync or ProgressSync(store)
        self.gate = gate or ConfirmationGate()
        self.snapshot = Snapshot()
        self.banner: str | None = None
        self.completion_rate: float | None = None

    @property
    def state(self) -> UserState:
        return self.snapshot.state

    def _replace(self, **changes) -> None:
        self.snapshot = replace(self.snapshot, **changes)

    def load(self) -> None:
        """Fetch catalog and progress, then deliver any save left over from a previous run."""
        quests = tuple(self.store.get_quests())
        state = self.store.get_progress()
        self._replace(quests=quests, state=state)
        self.check_health()

    def view(self) -> QuestView:
        s = self.snapshot
        return build_view(s.quests, s.state, s.config)

    # ── View settings ─────────────────────────────────────────────────────────

    def set_mode(self, mode: ViewMode) -> None:
        self._replace(config=self.snapshot.config.with_changes(mode=ViewMode(mode)))

    def set_grouping(self, grouping: Grouping) -> None:
        # the selected group belongs to the old dimension
        self._replace(config=self.snapshot.config.with_changes(grouping=Grouping(grouping), group=None))

    def switch_group(self, group: str) -> None:
        self._replace(config=self.snapshot.config.with_changes(group=group))

    def sort_by_level(self, enabled: bool) -> None:
        self._replace(config=self.snapshot.config.with_changes(sort_by_level=enabled))

    # ── Mutations ─────────────────────────────────────────────────────────────

    def complete(self, quest_id: str) -> bool:
        """Press "complete" on a quest. Returns True once the change is committed."""
        if self.state.has_completed(quest_id) or not self.gate.press(f"complete:{quest_id}"):
            return False
        self._commit(self.state.with_completed(quest_id))
        return True

    def uncomplete(self, quest_id: str) -> bool:
        if not self.state.has_completed(quest_id) or not self.gate.press(f"uncomplete:{quest_id}"):
            return False
        self._commit(self.state.without_completed(quest_id))
        return True

    def set_level(self, level: int) -> None:
        self._commit(self.state.with_level(level))

    def complete_all(self) -> int:
        goal_ids = tuple(q.id for q in self.snapshot.quests if q.goal_relevant)
        self._commit(UserState(level=self.state.level, completed_quest_ids=self.state.completed_quest_ids + goal_ids))
        return len(goal_ids)

    def reset(self) -> bool:
        """Wipe progress on the store. Local state is only cleared once the store confirms."""
        self.gate.disarm()
        try:
            retry_with_backoff(self.store.reset_progress, self.sync.policy, self.sync.sleep)
        except ProgressStoreError as e:
            logger.warning("Reset failed: %s", e)
            self.banner = SAVE_FAILED_BANNER
            return False
        self._replace(state=UserState())
        self.sync.queue.clear()
        self.banner = None
        return True

    def check_health(self) -> bool:
        """
        Deliver a queued save once the store is reachable again. Returns True
        when nothing is left queued.
        """
        try:
            result = self.sync.resume()
        except ProgressStoreError as e:
            logger.warning("Queued save still undeliverable: %s", e)
            self.banner = SAVE_FAILED_BANNER
            return False
        if result is not None:
            self._settle(result)
        return not self.sync.has_pending

    def _commit(self, state: UserState) -> None:
        # optimistic: the view reflects the change before the store answers
        self._replace(state=state)
        try:
            result = self.sync.save(state)
        except ProgressStoreError as e:
            logger.warning("Save failed: %s", e)
            self.banner = SAVE_FAILED_BANNER
            return
        if result is not None:
            self._settle(result)

    def _settle(self, result: SaveResult) -> None:
        self._replace(state=reconcile(self.state, result.state.completed_quest_ids, result.state.level))
        self.completion_rate = result.completion_rate
        self.banner = None
