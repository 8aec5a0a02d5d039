import pytest
from kappa_tracker.engine.progress import (
    completion_rate, diff_completions, cascade_completions, reconcile, goal_progress,
)
from kappa_tracker.engine.quests import Quest, UserState


def q(quest_id, prereqs=(), goal=True):
    return Quest(id=quest_id, name=quest_id, trader="Prapor", prerequisite_ids=tuple(prereqs), goal_relevant=goal)


CHAIN = [q("a"), q("b", ["a"]), q("c", ["b"]), q("side", goal=False)]


class TestCompletionRate:
    def test_goal_quests_only(self):
        assert completion_rate(["a", "side"], CHAIN) == pytest.approx(100 / 3)

    def test_unknown_ids_ignored(self):
        assert completion_rate(["ghost"], CHAIN) == 0

    def test_empty_catalog(self):
        assert completion_rate(["a"], []) == 0


class TestDiffCompletions:
    def test_added_and_removed(self):
        added, removed = diff_completions(["a", "b"], ["b", "c", "d"])
        assert added == ["c", "d"]
        assert removed == ["a"]

    def test_same_payload_is_no_change(self):
        assert diff_completions(["a", "b"], ["a", "b"]) == ([], [])


class TestCascadeCompletions:
    def test_completion_pulls_in_prerequisite_chain(self):
        completed, auto = cascade_completions(["c"], CHAIN)
        assert auto == ["a", "b"]
        assert completed == ["c", "a", "b"]

    def test_nothing_to_cascade(self):
        completed, auto = cascade_completions(["a"], CHAIN)
        assert completed == ["a"]
        assert auto == []

    def test_resending_same_payload_gives_same_set(self):
        first, _ = cascade_completions(["c"], CHAIN)
        second, _ = cascade_completions(["c"], CHAIN)
        assert first == second == ["c", "a", "b"]

    def test_dropped_prerequisite_is_restored(self):
        # "a" left out while "b" stays completed
        completed, auto = cascade_completions(["b"], CHAIN)
        assert completed == ["b", "a"]
        assert auto == ["a"]

    def test_stale_prerequisite_not_added(self):
        quests = [q("d", ["ghost"])]
        completed, auto = cascade_completions(["d"], quests)
        assert completed == ["d"]
        assert auto == []

    def test_idempotent(self):
        completed, _ = cascade_completions(["c"], CHAIN)
        again, auto = cascade_completions(completed, CHAIN)
        assert again == completed
        assert auto == []

    def test_cycle_terminates(self):
        quests = [q("x", ["y"]), q("y", ["x"])]
        completed, auto = cascade_completions(["x"], quests)
        assert completed == ["x", "y"]
        assert auto == ["y"]


class TestReconcile:
    def test_server_set_replaces_local(self):
        local = UserState(level=12, completed_quest_ids=("a", "local-only"))
        settled = reconcile(local, ["a", "b", "c"])
        assert settled.completed_quest_ids == ("a", "b", "c")
        assert settled.level == 12

    def test_server_level_wins_when_given(self):
        assert reconcile(UserState(level=3), [], server_level=5).level == 5


class TestGoalProgress:
    def test_progress_bar_numbers(self):
        done, total, pct = goal_progress(UserState(completed_quest_ids=("a", "b", "side")), CHAIN)
        assert (done, total) == (2, 3)
        assert pct == pytest.approx(200 / 3)
