from unittest.mock import MagicMock
import pytest
from kappa_tracker.client import ProgressStoreError, SaveResult
from kappa_tracker.engine.quests import UserState
from kappa_tracker.sync import (
    PendingSaveQueue, ProgressSync, RetryPolicy, SaveStatus, retry_with_backoff,
)

TRANSIENT = ProgressStoreError("503", retryable=True, status_code=503)
REJECTED = ProgressStoreError("422", retryable=False, status_code=422)


def ok(state: UserState) -> SaveResult:
    return SaveResult(state=state, completion_rate=10.0, total_completed=len(state.completed_quest_ids))


@pytest.fixture
def queue(tmp_path):
    return PendingSaveQueue(tmp_path / "pending.json")


@pytest.fixture
def store():
    s = MagicMock()
    s.put_progress.side_effect = ok
    s.health.return_value = True
    return s


def make_sync(store, queue, sleeps=None):
    return ProgressSync(store, queue, RetryPolicy(max_attempts=3, base_delay=1.0), sleep=(sleeps if sleeps is not None else []).append)


class TestRetryPolicy:
    def test_exponential_delays(self):
        policy = RetryPolicy(base_delay=1.0, factor=2.0)
        assert [policy.delay(i) for i in range(3)] == [1.0, 2.0, 4.0]


class TestRetryWithBackoff:
    def test_success_after_transient_failures(self):
        sleeps = []
        func = MagicMock(side_effect=[TRANSIENT, TRANSIENT, "done"])
        assert retry_with_backoff(func, RetryPolicy(max_attempts=3), sleeps.append) == "done"
        assert sleeps == [1.0, 2.0]

    def test_gives_up_after_max_attempts(self):
        sleeps = []
        func = MagicMock(side_effect=TRANSIENT)
        with pytest.raises(ProgressStoreError):
            retry_with_backoff(func, RetryPolicy(max_attempts=3), sleeps.append)
        assert func.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_non_retryable_raised_immediately(self):
        func = MagicMock(side_effect=REJECTED)
        with pytest.raises(ProgressStoreError):
            retry_with_backoff(func, RetryPolicy(max_attempts=3), lambda s: None)
        assert func.call_count == 1


class TestPendingSaveQueue:
    def test_push_peek_clear(self, queue):
        assert queue.peek() is None
        queue.push(UserState(level=7, completed_quest_ids=("a", "b")))
        assert queue.peek() == UserState(level=7, completed_quest_ids=("a", "b"))
        queue.clear()
        assert queue.peek() is None

    def test_latest_push_wins(self, queue):
        queue.push(UserState(completed_quest_ids=("a",)))
        queue.push(UserState(completed_quest_ids=("a", "b")))
        assert queue.peek().completed_quest_ids == ("a", "b")

    def test_unreadable_file_discarded(self, queue):
        queue.path.write_text("{not json")
        assert queue.peek() is None
        assert not queue.path.exists()


class TestProgressSync:
    def test_commit(self, store, queue):
        sync = make_sync(store, queue)
        assert sync.status == SaveStatus.IDLE
        result = sync.save(UserState(completed_quest_ids=("a",)))
        assert result.state.completed_quest_ids == ("a",)
        assert sync.status == SaveStatus.COMMITTED

    def test_transient_failure_retried_then_committed(self, store, queue):
        sleeps = []
        store.put_progress.side_effect = [TRANSIENT, ok(UserState(completed_quest_ids=("a",)))]
        sync = make_sync(store, queue, sleeps)
        sync.save(UserState(completed_quest_ids=("a",)))
        assert sync.status == SaveStatus.COMMITTED
        assert sleeps == [1.0]

    def test_exhausted_retries_queue_state(self, store, queue):
        store.put_progress.side_effect = TRANSIENT
        sync = make_sync(store, queue)
        state = UserState(level=4, completed_quest_ids=("a",))
        with pytest.raises(ProgressStoreError):
            sync.save(state)
        assert sync.status == SaveStatus.QUEUED
        assert queue.peek() == state
        assert store.put_progress.call_count == 3

    def test_rejected_save_not_queued(self, store, queue):
        store.put_progress.side_effect = REJECTED
        sync = make_sync(store, queue)
        with pytest.raises(ProgressStoreError):
            sync.save(UserState(completed_quest_ids=("a",)))
        assert sync.status == SaveStatus.FAILED
        assert queue.peek() is None

    def test_save_while_pending_is_coalesced(self, store, queue):
        sync = make_sync(store, queue)
        first = UserState(completed_quest_ids=("a",))
        second = UserState(completed_quest_ids=("a", "b"))
        third = UserState(completed_quest_ids=("a", "b", "c"))
        inner_results = []

        def put(state):
            if state == first:
                # two more saves arrive while the first is still in flight
                inner_results.append(sync.save(second))
                inner_results.append(sync.save(third))
            return ok(state)

        store.put_progress.side_effect = put
        result = sync.save(first)

        assert inner_results == [None, None]
        sent = [c.args[0] for c in store.put_progress.call_args_list]
        assert sent == [first, third]
        assert result.state == third
        assert sync.status == SaveStatus.COMMITTED

    def test_success_clears_queued_state(self, store, queue):
        queue.push(UserState(completed_quest_ids=("old",)))
        sync = make_sync(store, queue)
        sync.save(UserState(completed_quest_ids=("new",)))
        assert queue.peek() is None

    def test_resume_flushes_after_health_check(self, store, queue):
        state = UserState(level=9, completed_quest_ids=("a",))
        queue.push(state)
        sync = make_sync(store, queue)
        result = sync.resume()
        store.put_progress.assert_called_once_with(state)
        assert result.state == state
        assert queue.peek() is None

    def test_resume_waits_for_healthy_backend(self, store, queue):
        queue.push(UserState(completed_quest_ids=("a",)))
        store.health.return_value = False
        sync = make_sync(store, queue)
        assert sync.resume() is None
        store.put_progress.assert_not_called()
        assert sync.has_pending

    def test_resume_without_queue_skips_health_check(self, store, queue):
        sync = make_sync(store, queue)
        assert sync.resume() is None
        store.health.assert_not_called()

    def test_queueing_happens_under_the_status_lock(self, store):
        store.put_progress.side_effect = TRANSIENT
        queue = MagicMock()
        sync = make_sync(store, queue)
        held = []
        queue.push.side_effect = lambda state: held.append(sync._lock.locked())
        with pytest.raises(ProgressStoreError):
            sync.save(UserState(completed_quest_ids=("a",)))
        assert held == [True]
        assert sync.status == SaveStatus.QUEUED
