"""
Grouping tabs (by map or by trader) and per-group statistics.
"""
from dataclasses import dataclass
from typing import Sequence

from .quests import (
    ANY_LOCATION, Grouping, Quest, UserState, ViewMode, group_of, is_unlocked,
)

TRADER_ORDER = [
    "Prapor", "Therapist", "Fence", "Skier", "Peacekeeper",
    "Mechanic", "Ragman", "Jaeger", "Lightkeeper", "Ref",
]


@dataclass(frozen=True)
class GroupStats:
    total: int
    completed: int
    available: int


@dataclass(frozen=True)
class GroupTab:
    key: str
    stats: GroupStats

    @property
    def label(self) -> str:
        return f"{self.key} ({self.stats.available}) {self.stats.completed}/{self.stats.total}"


def group_statistics(
    group: str,
    quests: Sequence[Quest],
    state: UserState,
    mode: ViewMode,
    grouping: Grouping = Grouping.MAP,
) -> GroupStats:
    """
    total/completed count goal-relevant quests in the group. available depends
    on the mode: finished mirrors completed, preview counts everything not yet
    done, available counts unlocked and not done.
    """
    mode = ViewMode(mode)
    in_group = [q for q in quests if q.goal_relevant and group_of(q, grouping) == group]
    completed = sum(1 for q in in_group if state.has_completed(q.id))

    if mode == ViewMode.FINISHED:
        available = completed
    elif mode == ViewMode.PREVIEW:
        available = len(in_group) - completed
    else:
        available = sum(
            1 for q in in_group
            if not state.has_completed(q.id) and is_unlocked(q, state)
        )

    return GroupStats(total=len(in_group), completed=completed, available=available)


def group_keys(quests: Sequence[Quest], grouping: Grouping = Grouping.MAP) -> list[str]:
    """Distinct groups holding at least one goal-relevant quest, in first-seen order."""
    keys = dict.fromkeys(group_of(q, grouping) for q in quests if q.goal_relevant)
    keys.pop("", None)
    return list(keys)


def build_group_tabs(
    quests: Sequence[Quest],
    state: UserState,
    mode: ViewMode,
    grouping: Grouping = Grouping.MAP,
) -> list[GroupTab]:
    tabs = [
        GroupTab(key, group_statistics(key, quests, state, mode, grouping))
        for key in group_keys(quests, grouping)
    ]

    if grouping == Grouping.TRADER:
        def trader_rank(tab: GroupTab) -> int:
            if tab.key in TRADER_ORDER:
                return TRADER_ORDER.index(tab.key)
            return len(TRADER_ORDER)
        return sorted(tabs, key=trader_rank)

    # Any Location is pinned first, the rest by available count, highest first
    return sorted(tabs, key=lambda t: (t.key != ANY_LOCATION, -t.stats.available))
