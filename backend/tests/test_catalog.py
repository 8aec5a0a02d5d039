import json
import logging
from kappa_tracker.engine.catalog import (
    decode_catalog, decode_quest, decode_json_list, find_unresolved_prerequisites,
    encode_quest,
)
from kappa_tracker.engine.items import ItemCategory
from kappa_tracker.engine.quests import UserState, is_unlocked


def make_row(quest_id, **overrides):
    row = {
        "id": quest_id,
        "name": f"Quest {quest_id}",
        "trader": "Prapor",
        "level": 1,
        "map_name": "Customs",
        "prerequisite_quests": "[]",
        "objectives": "[]",
        "required_items": "[]",
        "required_for_kappa": True,
        "wiki_link": None,
    }
    row.update(overrides)
    return row


class TestDecodeJsonList:
    def test_json_text(self):
        assert decode_json_list('["a", "b"]') == ["a", "b"]

    def test_already_decoded(self):
        assert decode_json_list(["a"]) == ["a"]

    def test_empty_values(self):
        for raw in (None, "", "null"):
            assert decode_json_list(raw) == []

    def test_malformed(self):
        for raw in ("[not json", '{"a": 1}', 42):
            assert decode_json_list(raw) is None


class TestDecodeQuest:
    def test_decodes_structured_fields(self):
        quest = decode_quest(make_row(
            "b",
            prerequisite_quests='["a"]',
            objectives=json.dumps([{"description": "Find the stash"}]),
            required_items=json.dumps([{"name": "MS2000 Marker", "type": "plantItem", "count": 2}]),
        ))
        assert quest.prerequisite_ids == ("a",)
        assert quest.objectives == ({"description": "Find the stash"},)
        assert quest.required_items[0].category == ItemCategory.MARKERS
        assert quest.required_items[0].count == 2
        assert quest.goal_relevant

    def test_malformed_prerequisites_fail_open(self, caplog):
        with caplog.at_level(logging.WARNING):
            quest = decode_quest(make_row("b", prerequisite_quests="[oops"))
        assert quest.prerequisite_ids == ()
        assert is_unlocked(quest, UserState())
        assert "prerequisite_quests" in caplog.text

    def test_non_string_prerequisites_fail_open(self):
        quest = decode_quest(make_row("b", prerequisite_quests='["a", 7]'))
        assert quest.prerequisite_ids == ()

    def test_malformed_field_only_affects_that_field(self):
        quest = decode_quest(make_row("b", prerequisite_quests='["a"]', objectives="{{"))
        assert quest.prerequisite_ids == ("a",)
        assert quest.objectives == ()

    def test_bad_level_defaults_to_one(self):
        assert decode_quest(make_row("b", level="ten")).level == 1
        assert decode_quest(make_row("b", level=None)).level == 1

    def test_missing_map_is_any_location(self):
        quest = decode_quest(make_row("b", map_name=None))
        assert quest.map_name is None
        assert quest.map_key == "Any Location"


class TestDecodeCatalog:
    def test_bad_row_does_not_abort_batch(self):
        rows = [
            make_row("a"),
            make_row("b", prerequisite_quests="garbage", required_items="also garbage"),
            make_row("c", prerequisite_quests='["a"]'),
        ]
        quests = decode_catalog(rows)
        assert [q.id for q in quests] == ["a", "b", "c"]

    def test_rows_without_id_skipped(self):
        quests = decode_catalog([make_row("a"), {"name": "nameless"}])
        assert [q.id for q in quests] == ["a"]

    def test_unresolved_prerequisites_logged(self, caplog):
        with caplog.at_level(logging.WARNING):
            decode_catalog([make_row("d", prerequisite_quests='["ghost-quest"]')])
        assert "ghost-quest" in caplog.text

    def test_find_unresolved(self):
        quests = decode_catalog([
            make_row("a"),
            make_row("d", prerequisite_quests='["a", "ghost"]'),
        ])
        assert find_unresolved_prerequisites(quests) == {"d": ["ghost"]}

    def test_encoded_quest_decodes_to_same_quest(self):
        quest = decode_quest(make_row(
            "b",
            prerequisite_quests='["a"]',
            required_items=json.dumps([{"name": "Dorm_room_314", "type": "key", "displayName": "Dorm room 314 key"}]),
        ))
        assert decode_quest(encode_quest(quest)) == quest
