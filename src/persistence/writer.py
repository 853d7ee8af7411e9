"""
Per-learner serialized persistence of mastery/hurdle checkpoints.
"""

import asyncio
import copy
import logging
from collections import defaultdict
from typing import Dict, Optional, Tuple

from src.persistence.interfaces import LearnerStateRepository, LearnerState
from src.shared.config import settings
from src.shared.exceptions import PersistenceError, PersistenceTimeoutError
from src.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)


class SerializedStateWriter:
    """
    Orders saves for the same learner by submission.

    A sequence number is taken synchronously when a checkpoint is requested.
    Writes for one learner run one at a time under a lock, and a write older
    than the last one persisted is skipped, so a slow stale save can never
    overwrite a newer state. A save that times out keeps running in its
    thread, so the next write for that learner first waits for it to settle.
    """

    def __init__(self, repository: LearnerStateRepository, timeout_seconds: Optional[float] = None):
        self.repository = repository
        self.timeout_seconds = timeout_seconds or settings.persistence.write_timeout_seconds
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._issued: Dict[str, int] = defaultdict(int)
        self._written: Dict[str, int] = {}
        self._inflight: Dict[str, Tuple[int, "asyncio.Future[bool]"]] = {}
        self.metrics = {
            "writes": 0,
            "stale_skips": 0,
            "failures": 0,
        }

    def reserve(self, user_id: str) -> int:
        """Next submission sequence for `user_id`."""
        self._issued[user_id] += 1
        return self._issued[user_id]

    def last_written(self, user_id: str) -> Optional[int]:
        return self._written.get(user_id)

    def submit(self, user_id: str, state: LearnerState) -> "asyncio.Task[bool]":
        """Snapshot `state`, reserve a sequence and schedule the write."""
        sequence = self.reserve(user_id)
        snapshot = copy.deepcopy(state)
        return asyncio.create_task(self.write(user_id, snapshot, sequence))

    async def write(self, user_id: str, state: LearnerState, sequence: int) -> bool:
        """
        Persist `state` if no newer sequence has been written.

        Returns True when written, False when skipped as stale.

        Raises:
            PersistenceTimeoutError if the store does not answer in time
            PersistenceError for any other store failure
        """
        async with self._locks[user_id]:
            await self._settle_inflight(user_id)

            last = self._written.get(user_id)
            if last is not None and sequence <= last:
                self.metrics["stale_skips"] += 1
                logger.debug(f"Skipping stale write seq {sequence} for {user_id} (last {last})")
                return False

            future = asyncio.ensure_future(
                asyncio.to_thread(self.repository.save, user_id, state)
            )
            try:
                await asyncio.wait_for(asyncio.shield(future), timeout=self.timeout_seconds)
            except asyncio.TimeoutError as e:
                self._inflight[user_id] = (sequence, future)
                self._record_failure(user_id, sequence, "timeout")
                raise PersistenceTimeoutError(
                    f"Saving state for {user_id} exceeded {self.timeout_seconds}s"
                ) from e
            except PersistenceError:
                self._record_failure(user_id, sequence, "store_error")
                raise
            except Exception as e:
                self._record_failure(user_id, sequence, "store_error")
                raise PersistenceError(f"Saving state for {user_id} failed: {e}") from e

            self._written[user_id] = sequence
            self.metrics["writes"] += 1
            return True

    async def _settle_inflight(self, user_id: str):
        """
        Wait for a timed-out save of `user_id` that is still running.

        Raises PersistenceTimeoutError if it is still running after another
        timeout period; the newer write is then not attempted.
        """
        pending = self._inflight.get(user_id)
        if pending is None:
            return
        sequence, future = pending

        try:
            await asyncio.wait_for(asyncio.shield(future), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            self._record_failure(user_id, sequence, "still_running")
            raise PersistenceTimeoutError(
                f"Earlier save for {user_id} (seq {sequence}) has not finished"
            ) from e
        except Exception as e:
            # Already reported as a timeout when it was abandoned
            logger.warning(f"Late save seq {sequence} for {user_id} failed: {str(e)}")
        else:
            last = self._written.get(user_id)
            if last is None or sequence > last:
                self._written[user_id] = sequence
            logger.info(f"Late save seq {sequence} for {user_id} completed")

        del self._inflight[user_id]

    def _record_failure(self, user_id: str, sequence: int, reason: str):
        self.metrics["failures"] += 1
        log_with_context(
            logger,
            logging.ERROR,
            f"Learner state write failed ({reason}) at seq {sequence}",
            user_id=user_id,
            action="state_write_failed",
        )
