"""
Tests for serialized learner-state writes.
"""

import asyncio
import threading
import time
import pytest
from unittest.mock import MagicMock

from src.persistence.interfaces import LearnerStateRepository, LearnerState
from src.persistence.writer import SerializedStateWriter
from src.shared.exceptions import PersistenceError, PersistenceTimeoutError


class RecordingRepository(LearnerStateRepository):
    """Keeps every save; optional per-user, per-call delays."""

    def __init__(self, delays=None):
        self.saved = []
        self.delays = {user: list(d) for user, d in (delays or {}).items()}
        self._lock = threading.Lock()

    def load(self, user_id):
        return LearnerState()

    def save(self, user_id, state):
        pending = self.delays.get(user_id)
        delay = pending.pop(0) if pending else 0
        if delay:
            time.sleep(delay)
        with self._lock:
            self.saved.append((user_id, dict(state.mastery)))
        return True


@pytest.mark.asyncio
async def test_writes_for_one_user_are_ordered_by_submission():
    """Test that a slow first save cannot overwrite a later one."""
    repo = RecordingRepository(delays={"u1": [0.2, 0, 0]})
    writer = SerializedStateWriter(repo, timeout_seconds=5)

    tasks = [
        writer.submit("u1", LearnerState(mastery={"A": score}))
        for score in (0.6, 0.7, 0.8)
    ]
    results = await asyncio.gather(*tasks)

    assert results == [True, True, True]
    assert [m["A"] for _, m in repo.saved] == [0.6, 0.7, 0.8]
    assert writer.last_written("u1") == 3


@pytest.mark.asyncio
async def test_stale_write_is_skipped():
    repo = RecordingRepository()
    writer = SerializedStateWriter(repo, timeout_seconds=5)

    first = writer.reserve("u1")
    second = writer.reserve("u1")
    assert await writer.write("u1", LearnerState(mastery={"A": 0.9}), second) is True
    assert await writer.write("u1", LearnerState(mastery={"A": 0.1}), first) is False

    assert repo.saved == [("u1", {"A": 0.9})]
    assert writer.metrics["stale_skips"] == 1


@pytest.mark.asyncio
async def test_submit_snapshots_state():
    repo = RecordingRepository()
    writer = SerializedStateWriter(repo, timeout_seconds=5)
    state = LearnerState(mastery={"A": 0.5})

    task = writer.submit("u1", state)
    state.mastery["A"] = 0.99
    await task

    assert repo.saved == [("u1", {"A": 0.5})]


@pytest.mark.asyncio
async def test_hanging_store_times_out():
    repo = RecordingRepository(delays={"u1": [0.5]})
    writer = SerializedStateWriter(repo, timeout_seconds=0.05)

    with pytest.raises(PersistenceTimeoutError):
        await writer.submit("u1", LearnerState())
    assert writer.last_written("u1") is None
    assert writer.metrics["failures"] == 1


@pytest.mark.asyncio
async def test_timed_out_save_cannot_overwrite_later_save():
    """Test that the next save waits for a timed-out one still in its thread."""
    repo = RecordingRepository(delays={"u1": [0.15]})
    writer = SerializedStateWriter(repo, timeout_seconds=0.1)

    with pytest.raises(PersistenceTimeoutError):
        await writer.submit("u1", LearnerState(mastery={"A": 0.6}))
    assert await writer.submit("u1", LearnerState(mastery={"A": 0.7})) is True

    await asyncio.sleep(0.2)
    assert [m["A"] for _, m in repo.saved] == [0.6, 0.7]
    assert writer.last_written("u1") == 2


@pytest.mark.asyncio
async def test_next_save_refused_while_earlier_save_still_running():
    repo = RecordingRepository(delays={"u1": [0.4]})
    writer = SerializedStateWriter(repo, timeout_seconds=0.05)

    with pytest.raises(PersistenceTimeoutError):
        await writer.submit("u1", LearnerState(mastery={"A": 0.6}))
    with pytest.raises(PersistenceTimeoutError, match="has not finished"):
        await writer.submit("u1", LearnerState(mastery={"A": 0.7}))

    await asyncio.sleep(0.5)
    assert repo.saved == [("u1", {"A": 0.6})]


@pytest.mark.asyncio
async def test_store_failure_is_wrapped():
    repo = MagicMock(spec=LearnerStateRepository)
    repo.save.side_effect = OSError("disk full")
    writer = SerializedStateWriter(repo, timeout_seconds=5)

    with pytest.raises(PersistenceError, match="disk full"):
        await writer.submit("u1", LearnerState())


@pytest.mark.asyncio
async def test_users_do_not_block_each_other():
    repo = RecordingRepository(delays={"u1": [0.2]})
    writer = SerializedStateWriter(repo, timeout_seconds=5)

    slow = writer.submit("u1", LearnerState(mastery={"A": 0.1}))
    fast = writer.submit("u2", LearnerState(mastery={"B": 0.2}))
    await asyncio.gather(slow, fast)

    assert [user for user, _ in repo.saved] == ["u2", "u1"]
