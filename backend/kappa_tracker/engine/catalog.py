"""
Decoding raw quest catalog rows into Quest objects.

Structured fields arrive as JSON text. A field that fails to decode is treated
as empty for that quest only: one bad record must not hide the rest of the
catalog, and a quest with unreadable prerequisites is shown as having none.
"""
import json
import logging
from typing import Any, Iterable, Sequence

from .items import parse_required_item
from .quests import Quest

logger = logging.getLogger(__name__)


def decode_json_list(raw: Any) -> list | None:
    """Return the decoded list, [] for empty input, or None if malformed."""
    if raw is None or raw == "":
        return []
    if isinstance(raw, (list, tuple)):
        return list(raw)
    if not isinstance(raw, str):
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        return None
    if value is None:
        return []
    if not isinstance(value, list):
        return None
    return value


def _decoded_or_empty(raw: Any, field_name: str, quest_name: str) -> list:
    value = decode_json_list(raw)
    if value is None:
        logger.warning("Failed to decode %s for quest %s; treating as empty", field_name, quest_name)
        return []
    return value


def parse_prerequisites(raw: Any, quest_name: str = "") -> tuple[str, ...]:
    ids = _decoded_or_empty(raw, "prerequisite_quests", quest_name)
    if not all(isinstance(i, str) for i in ids):
        logger.warning("Non-string prerequisite id for quest %s; treating as no prerequisites", quest_name)
        return ()
    return tuple(ids)


def parse_level(raw: Any) -> int:
    try:
        return max(int(raw), 1)
    except (TypeError, ValueError):
        return 1


def decode_quest(row: dict) -> Quest:
    name = row.get("name") or row.get("id", "")
    items = (parse_required_item(i) for i in _decoded_or_empty(row.get("required_items"), "required_items", name))
    return Quest(
        id=str(row["id"]),
        name=name,
        trader=row.get("trader") or "",
        level=parse_level(row.get("level")),
        prerequisite_ids=parse_prerequisites(row.get("prerequisite_quests"), name),
        map_name=row.get("map_name") or None,
        goal_relevant=bool(row.get("required_for_kappa")),
        wiki_link=row.get("wiki_link"),
        objectives=tuple(_decoded_or_empty(row.get("objectives"), "objectives", name)),
        required_items=tuple(i for i in items if i is not None),
    )


def decode_catalog(rows: Iterable[dict]) -> list[Quest]:
    quests = []
    for row in rows:
        if not row.get("id"):
            logger.warning("Skipping catalog row without id: %s", row.get("name"))
            continue
        quests.append(decode_quest(row))
    for quest_id, stale in find_unresolved_prerequisites(quests).items():
        logger.warning("Quest %s references unknown prerequisites %s; it can never unlock", quest_id, stale)
    return quests


def find_unresolved_prerequisites(quests: Sequence[Quest]) -> dict[str, list[str]]:
    known = {q.id for q in quests}
    unresolved = {}
    for quest in quests:
        stale = [pid for pid in quest.prerequisite_ids if pid not in known]
        if stale:
            unresolved[quest.id] = stale
    return unresolved


def encode_quest(quest: Quest) -> dict:
    """JSON-ready representation used by the API."""
    return {
        "id": quest.id,
        "name": quest.name,
        "trader": quest.trader,
        "level": quest.level,
        "map_name": quest.map_name,
        "prerequisite_quests": list(quest.prerequisite_ids),
        "required_for_kappa": quest.goal_relevant,
        "wiki_link": quest.wiki_link,
        "objectives": list(quest.objectives),
        "required_items": [
            {
                "name": i.name,
                "display_name": i.display_name,
                "category": i.category.value,
                "count": i.count,
                "type": i.type,
            }
            for i in quest.required_items
        ],
    }
