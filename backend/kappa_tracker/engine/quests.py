"""
Quest availability rules — pure functions, no DB access.

A quest is unlocked when the user meets its level requirement and has completed
every prerequisite. Nothing here is cached: callers recompute on every change.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from functools import cached_property
from typing import Iterable, Sequence

ANY_LOCATION = "Any Location"


class ViewMode(str, Enum):
    AVAILABLE = "available"
    PREVIEW = "preview"
    FINISHED = "finished"

    @classmethod
    def _missing_(cls, value):
        # the client used to call preview mode "future"
        if value == "future":
            return cls.PREVIEW
        return None


class Grouping(str, Enum):
    MAP = "map"
    TRADER = "trader"


@dataclass(frozen=True)
class Quest:
    id: str
    name: str
    trader: str
    level: int = 1
    prerequisite_ids: tuple[str, ...] = ()
    map_name: str | None = None
    goal_relevant: bool = False
    wiki_link: str | None = None
    objectives: tuple = ()
    required_items: tuple = ()  # RequiredItem, see engine.items

    @property
    def map_key(self) -> str:
        return self.map_name or ANY_LOCATION


@dataclass(frozen=True)
class UserState:
    level: int = 1
    completed_quest_ids: tuple[str, ...] = ()

    def __post_init__(self):
        # ids are unique; the first occurrence keeps its position
        object.__setattr__(self, "completed_quest_ids", tuple(dict.fromkeys(self.completed_quest_ids)))

    @cached_property
    def completed(self) -> frozenset[str]:
        return frozenset(self.completed_quest_ids)

    def has_completed(self, quest_id: str) -> bool:
        return quest_id in self.completed

    def with_completed(self, quest_id: str) -> "UserState":
        if self.has_completed(quest_id):
            return self
        return replace(self, completed_quest_ids=self.completed_quest_ids + (quest_id,))

    def without_completed(self, quest_id: str) -> "UserState":
        if not self.has_completed(quest_id):
            return self
        return replace(
            self,
            completed_quest_ids=tuple(q for q in self.completed_quest_ids if q != quest_id),
        )

    def with_level(self, level: int) -> "UserState":
        return replace(self, level=max(int(level), 1))


@dataclass(frozen=True)
class LockReason:
    missing_level: bool
    required_level: int
    missing_prerequisites: tuple[Quest, ...] = ()
    # prerequisite ids that name no quest in the catalog; these lock the quest forever
    unresolved_prerequisite_ids: tuple[str, ...] = field(default=())

    def describe(self) -> str:
        if self.missing_level:
            return f"Requires Level {self.required_level}"
        if self.missing_prerequisites:
            names = ", ".join(q.name for q in self.missing_prerequisites[:2])
            extra = len(self.missing_prerequisites) - 2
            return f"Complete: {names}" + (f" (+{extra} more)" if extra > 0 else "")
        if self.unresolved_prerequisite_ids:
            return "Requires a quest missing from the catalog"
        return ""


def is_unlocked(quest: Quest, state: UserState) -> bool:
    if state.level < quest.level:
        return False
    return all(state.has_completed(pid) for pid in quest.prerequisite_ids)


def missing_prerequisites(quest: Quest, state: UserState, quests: Sequence[Quest]) -> list[Quest]:
    """Uncompleted prerequisite quests in catalog order. Stale ids are skipped."""
    missing = {pid for pid in quest.prerequisite_ids if not state.has_completed(pid)}
    if not missing:
        return []
    return [q for q in quests if q.id in missing]


def lock_reason(quest: Quest, state: UserState, quests: Sequence[Quest]) -> LockReason | None:
    """Explain why a quest is locked, or None if it is unlocked.

    The level gate and the prerequisite gate are reported independently, so a
    quest can be missing both.
    """
    if is_unlocked(quest, state):
        return None
    missing = missing_prerequisites(quest, state, quests)
    catalog_ids = {q.id for q in quests}
    unresolved = tuple(
        pid for pid in dict.fromkeys(quest.prerequisite_ids)
        if not state.has_completed(pid) and pid not in catalog_ids
    )
    return LockReason(
        missing_level=state.level < quest.level,
        required_level=quest.level,
        missing_prerequisites=tuple(missing),
        unresolved_prerequisite_ids=unresolved,
    )


def lock_reasons(quests: Sequence[Quest], state: UserState) -> dict[str, LockReason]:
    reasons = {}
    for quest in quests:
        reason = lock_reason(quest, state, quests)
        if reason is not None:
            reasons[quest.id] = reason
    return reasons


def group_of(quest: Quest, grouping: Grouping = Grouping.MAP) -> str:
    if grouping == Grouping.TRADER:
        return quest.trader
    return quest.map_key


def matches_mode(quest: Quest, state: UserState, mode: ViewMode) -> bool:
    if not quest.goal_relevant:
        return False
    completed = state.has_completed(quest.id)
    if mode == ViewMode.FINISHED:
        return completed
    if mode == ViewMode.PREVIEW:
        return not completed
    return not completed and is_unlocked(quest, state)


def classify(
    quests: Sequence[Quest],
    state: UserState,
    group: str,
    mode: ViewMode,
    grouping: Grouping = Grouping.MAP,
    sort_by_level: bool = False,
) -> list[Quest]:
    mode = ViewMode(mode)
    selected = [
        q for q in quests
        if group_of(q, grouping) == group and matches_mode(q, state, mode)
    ]
    if sort_by_level:
        selected.sort(key=lambda q: q.level)
    return selected


def unlocks_if_completed(quest_id: str, quests: Iterable[Quest], goal_only: bool = False) -> list[Quest]:
    return [
        q for q in quests
        if quest_id in q.prerequisite_ids and (q.goal_relevant or not goal_only)
    ]
