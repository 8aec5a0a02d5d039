"""
The derived view handed to a renderer. Rebuilt from scratch on every call.
"""
from dataclasses import dataclass, field, replace
from typing import Sequence

from .groups import GroupTab, build_group_tabs
from .items import ItemCounts, ItemLine, fir_items_list, item_counts, keys_list
from .progress import goal_progress
from .quests import (
    Grouping, LockReason, Quest, UserState, ViewMode,
    classify, is_unlocked, lock_reason, unlocks_if_completed,
)


@dataclass(frozen=True)
class ViewConfig:
    grouping: Grouping = Grouping.MAP
    group: str | None = None
    mode: ViewMode = ViewMode.AVAILABLE
    sort_by_level: bool = False

    def with_changes(self, **changes) -> "ViewConfig":
        return replace(self, **changes)


@dataclass(frozen=True)
class QuestCard:
    quest: Quest
    unlocked: bool
    lock: LockReason | None = None
    unlocks: tuple[Quest, ...] = ()


@dataclass(frozen=True)
class QuestView:
    group: str | None
    mode: ViewMode
    cards: tuple[QuestCard, ...]
    tabs: tuple[GroupTab, ...]
    goal_completed: int
    goal_total: int
    goal_percentage: float
    items: ItemCounts = field(default_factory=ItemCounts)
    keys: tuple[ItemLine, ...] = ()
    fir_items: tuple[ItemLine, ...] = ()

    @property
    def quests(self) -> list[Quest]:
        return [c.quest for c in self.cards]


def build_view(quests: Sequence[Quest], state: UserState, config: ViewConfig) -> QuestView:
    mode = ViewMode(config.mode)
    tabs = build_group_tabs(quests, state, mode, config.grouping)
    group = config.group
    if group is None and tabs:
        group = tabs[0].key

    selected = []
    if group is not None:
        selected = classify(quests, state, group, mode, config.grouping, config.sort_by_level)

    cards = []
    for quest in selected:
        unlocked = is_unlocked(quest, state)
        # lock annotations are only shown when previewing upcoming quests
        lock = lock_reason(quest, state, quests) if mode == ViewMode.PREVIEW else None
        cards.append(QuestCard(
            quest=quest,
            unlocked=unlocked,
            lock=lock,
            unlocks=tuple(unlocks_if_completed(quest.id, quests, goal_only=True)),
        ))

    done, total, pct = goal_progress(state, quests)
    return QuestView(
        group=group,
        mode=mode,
        cards=tuple(cards),
        tabs=tuple(tabs),
        goal_completed=done,
        goal_total=total,
        goal_percentage=pct,
        items=item_counts(selected),
        keys=tuple(keys_list(selected)),
        fir_items=tuple(fir_items_list(selected)),
    )


def encode_view(view: QuestView) -> dict:
    """JSON-ready representation used by the API."""
    def card(c: QuestCard) -> dict:
        return {
            "id": c.quest.id,
            "name": c.quest.name,
            "trader": c.quest.trader,
            "level": c.quest.level,
            "map_name": c.quest.map_key,
            "wiki_link": c.quest.wiki_link,
            "objectives": list(c.quest.objectives),
            "unlocked": c.unlocked,
            "lock": None if c.lock is None else {
                "missing_level": c.lock.missing_level,
                "required_level": c.lock.required_level,
                "missing_prerequisites": [
                    {"id": q.id, "name": q.name} for q in c.lock.missing_prerequisites
                ],
                "unresolved_prerequisites": list(c.lock.unresolved_prerequisite_ids),
                "message": c.lock.describe(),
            },
            "unlocks": [{"id": q.id, "name": q.name, "wiki_link": q.wiki_link} for q in c.unlocks],
        }

    return {
        "group": view.group,
        "mode": view.mode.value,
        "quests": [card(c) for c in view.cards],
        "tabs": [
            {
                "key": t.key,
                "label": t.label,
                "total": t.stats.total,
                "completed": t.stats.completed,
                "available": t.stats.available,
            }
            for t in view.tabs
        ],
        "progress": {
            "completed": view.goal_completed,
            "total": view.goal_total,
            "percentage": round(view.goal_percentage, 1),
        },
        "items": {
            "markers": view.items.markers,
            "jammers": view.items.jammers,
            "cameras": view.items.cameras,
            "keys": view.items.keys,
            "fir": view.items.fir,
            "key_list": [{"name": k.name, "count": k.count} for k in view.keys],
            "fir_list": [{"name": f.name, "count": f.count} for f in view.fir_items],
        },
    }
