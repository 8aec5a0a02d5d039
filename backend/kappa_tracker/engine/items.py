"""
Required-item classification and per-view item summaries.

Catalog rows tag most items with a structured category. Older rows only carry
an objective type and a display name, so a name heuristic exists as a separate
fallback step that never runs when the tag is present.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from .quests import Quest


class ItemCategory(str, Enum):
    KEYS = "keys"
    MARKERS = "markers"
    JAMMERS = "jammers"
    CAMERAS = "cameras"
    FIR = "fir"
    OTHER = "other"


# plantItem name fragments, checked in this order
PLANT_ITEM_HINTS: list[tuple[ItemCategory, tuple[str, ...]]] = [
    (ItemCategory.MARKERS, ("Marker", "MS2000")),
    (ItemCategory.JAMMERS, ("Jammer", "SJ")),
    (ItemCategory.CAMERAS, ("Camera", "WI-FI")),
]


@dataclass(frozen=True)
class RequiredItem:
    name: str
    category: ItemCategory
    count: int = 1
    display_name: str | None = None
    type: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or self.name.replace("_", " ")


@dataclass(frozen=True)
class ItemCounts:
    markers: int = 0
    jammers: int = 0
    cameras: int = 0
    keys: int = 0
    fir: int = 0


@dataclass(frozen=True)
class ItemLine:
    name: str
    count: int


def _guess_category(item_type: str | None, name: str) -> ItemCategory:
    if item_type == "key":
        return ItemCategory.KEYS
    if item_type == "plantItem":
        for category, hints in PLANT_ITEM_HINTS:
            if any(hint in name for hint in hints):
                return category
    return ItemCategory.OTHER


def classify_item(raw: dict) -> ItemCategory:
    tag = raw.get("category")
    if tag:
        try:
            return ItemCategory(tag)
        except ValueError:
            pass
    return _guess_category(raw.get("type"), str(raw.get("name") or ""))


def parse_required_item(raw: dict) -> RequiredItem | None:
    if not isinstance(raw, dict) or not raw.get("name"):
        return None
    try:
        count = int(raw.get("count") or 1)
    except (TypeError, ValueError):
        count = 1
    return RequiredItem(
        name=str(raw["name"]),
        category=classify_item(raw),
        count=count,
        display_name=raw.get("displayName") or raw.get("display_name"),
        type=raw.get("type"),
    )


def _items(quests: Iterable[Quest]) -> Iterable[RequiredItem]:
    for quest in quests:
        yield from quest.required_items


def item_counts(quests: Iterable[Quest]) -> ItemCounts:
    totals = {c: 0 for c in ItemCategory}
    for item in _items(quests):
        # a key requirement counts once regardless of quantity
        totals[item.category] += 1 if item.category == ItemCategory.KEYS else item.count
    return ItemCounts(
        markers=totals[ItemCategory.MARKERS],
        jammers=totals[ItemCategory.JAMMERS],
        cameras=totals[ItemCategory.CAMERAS],
        keys=totals[ItemCategory.KEYS],
        fir=totals[ItemCategory.FIR],
    )


def _merged(items: Iterable[RequiredItem], key) -> list[ItemLine]:
    merged: dict[str, int] = {}
    for item in items:
        name = key(item)
        merged[name] = max(merged.get(name, 0), item.count)
    return [ItemLine(name, count) for name, count in sorted(merged.items())]


def keys_list(quests: Iterable[Quest]) -> list[ItemLine]:
    keys = (i for i in _items(quests) if i.category == ItemCategory.KEYS)
    return _merged(keys, lambda i: i.label)


def fir_items_list(quests: Iterable[Quest]) -> list[ItemLine]:
    fir = (i for i in _items(quests) if i.category == ItemCategory.FIR)
    return _merged(fir, lambda i: i.name)
