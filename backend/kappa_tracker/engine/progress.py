"""
Progress bookkeeping — pure functions, no DB access.
"""
from typing import Iterable, Sequence

from .quests import Quest, UserState


def completion_rate(completed_ids: Iterable[str], quests: Sequence[Quest]) -> float:
    """Percentage of goal-relevant quests completed. Unknown ids do not count."""
    goal_ids = {q.id for q in quests if q.goal_relevant}
    if not goal_ids:
        return 0.0
    done = goal_ids.intersection(completed_ids)
    return len(done) / len(goal_ids) * 100


def diff_completions(old: Sequence[str], new: Sequence[str]) -> tuple[list[str], list[str]]:
    """Returns (added, removed), each in the order of the list it came from."""
    old_set, new_set = set(old), set(new)
    added = [q for q in new if q not in old_set]
    removed = [q for q in old if q not in new_set]
    return added, removed


def cascade_completions(
    submitted: Sequence[str],
    quests: Sequence[Quest],
) -> tuple[list[str], list[str]]:
    """
    Returns (completed_ids, auto_completed_ids).

    Completing a quest implies its whole prerequisite chain is done, so every
    submitted id pulls in its transitive prerequisites. The result depends on
    the submitted set alone: re-sending the same payload stores the same set.
    A prerequisite cannot stay uncompleted while a quest depending on it is
    completed.
    """
    by_id = {q.id: q for q in quests}
    completed = list(dict.fromkeys(submitted))
    have = set(completed)

    implied: set[str] = set()
    stack = list(completed)
    while stack:
        quest = by_id.get(stack.pop())
        if quest is None:
            continue
        for pid in quest.prerequisite_ids:
            if pid in by_id and pid not in have and pid not in implied:
                implied.add(pid)
                stack.append(pid)

    auto = [q.id for q in quests if q.id in implied]
    return completed + auto, auto


def reconcile(local: UserState, server_completed: Sequence[str], server_level: int | None = None) -> UserState:
    """The server's set is authoritative: replace, never merge."""
    return UserState(
        level=local.level if server_level is None else server_level,
        completed_quest_ids=tuple(server_completed),
    )


def goal_progress(state: UserState, quests: Sequence[Quest]) -> tuple[int, int, float]:
    """(completed goal quests, total goal quests, percentage) for the progress bar."""
    goal = [q for q in quests if q.goal_relevant]
    done = sum(1 for q in goal if state.has_completed(q.id))
    pct = done / len(goal) * 100 if goal else 0.0
    return done, len(goal), pct
