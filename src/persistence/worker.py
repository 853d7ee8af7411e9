"""
Async telemetry audit worker with circuit breaker around the report publisher.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Dict, Any, Optional, Callable

from src.persistence.interfaces import ReportPublisher
from src.persistence.store import SQLiteDocumentStore
from src.shared.config import settings, PersistenceConfig
from src.shared.exceptions import CircuitBreakerOpenError
from src.shared.logging import get_logger, log_with_context
from src.validation.pipeline import ValidationPipeline

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Circuit breaker for publisher calls."""

    def __init__(
        self,
        failure_threshold: int = 3,
        reset_seconds: int = 60,
        clock: Callable[[], float] = time.time
    ):
        self.failure_threshold = failure_threshold
        self.reset_seconds = reset_seconds
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitState.CLOSED
        self._clock = clock

    def record_success(self):
        self.failure_count = 0
        self.state = CircuitState.CLOSED

    def record_failure(self):
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.state = CircuitState.OPEN
            logger.warning(f"Circuit breaker OPEN after {self.failure_count} failures")

    def can_proceed(self) -> bool:
        """Check if operation can proceed."""
        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if self.last_failure_time is not None:
                elapsed = self._clock() - self.last_failure_time
                if elapsed >= self.reset_seconds:
                    self.state = CircuitState.HALF_OPEN
                    return True
            return False

        return True

    def raise_if_open(self):
        if not self.can_proceed():
            raise CircuitBreakerOpenError(
                f"Circuit breaker is OPEN. Wait {self.reset_seconds} seconds before retry."
            )


class TelemetryAuditWorker:
    """
    Drains unaudited telemetry, validates each record against the learner's
    earlier records, stores the report and forwards the pair downstream.

    A row is marked audited only once its report is stored and, when a
    publisher is configured, published.
    """

    def __init__(
        self,
        store: SQLiteDocumentStore,
        pipeline: Optional[ValidationPipeline] = None,
        publisher: Optional[ReportPublisher] = None,
        config: Optional[PersistenceConfig] = None,
        breaker: Optional[CircuitBreaker] = None
    ):
        self.store = store
        self.pipeline = pipeline or ValidationPipeline()
        self.publisher = publisher
        self.config = config or settings.persistence
        self.batch_size = self.config.audit_batch_size

        self.circuit_breaker = breaker or CircuitBreaker(
            failure_threshold=self.config.circuit_breaker_failure_threshold,
            reset_seconds=self.config.circuit_breaker_reset_seconds
        )

        self.metrics = {
            "audited": 0,
            "failed_records": 0,
            "published": 0,
            "publish_failures": 0,
            "circuit_opens": 0,
        }
        self.running = False

    async def run_forever(self, interval: float = 1.0):
        """Run worker continuously."""
        self.running = True
        logger.info("Telemetry audit worker started")

        while self.running:
            try:
                await self.process_batch()
            except CircuitBreakerOpenError as e:
                logger.warning(str(e))
            except Exception as e:
                logger.error(f"Worker error: {str(e)}")

            await asyncio.sleep(interval)

    def stop(self):
        self.running = False
        logger.info("Telemetry audit worker stopped")

    async def process_batch(self, batch_size: Optional[int] = None) -> int:
        """
        Audit one batch. Returns the number of rows marked audited.

        Raises:
            CircuitBreakerOpenError if a publisher is configured and the
            breaker is open
        """
        batch_size = batch_size or self.batch_size

        if self.publisher is not None:
            self.circuit_breaker.raise_if_open()

        rows = await asyncio.to_thread(self.store.get_unaudited, batch_size)
        if not rows:
            return 0

        done = 0
        for row in rows:
            record = row["record"]
            try:
                report = await asyncio.to_thread(self._audit, row["rowid"], record)
            except Exception as e:
                self.metrics["failed_records"] += 1
                logger.error(f"Failed to audit {record.get('questionId')}: {str(e)}")
                continue

            if self.publisher is not None:
                if not await self._publish(record, report):
                    if not self.circuit_breaker.can_proceed():
                        self.metrics["circuit_opens"] += 1
                        break
                    continue

            await asyncio.to_thread(self.store.mark_audited, row["rowid"])
            self.metrics["audited"] += 1
            done += 1

        return done

    def _audit(self, rowid: int, record: Dict[str, Any]) -> Dict[str, Any]:
        history = self.store.recent_history(record.get("userId"), before_rowid=rowid)
        report = self.pipeline.run(record, history).to_dict()
        self.store.save_report(record.get("questionId"), record.get("timestamp"), report)
        return report

    async def _publish(self, record: Dict[str, Any], report: Dict[str, Any]) -> bool:
        try:
            await self.publisher.publish(record, report)
        except Exception as e:
            self.metrics["publish_failures"] += 1
            self.circuit_breaker.record_failure()
            log_with_context(
                logger,
                logging.ERROR,
                f"Failed to publish report for {record.get('questionId')}: {str(e)}",
                user_id=record.get("userId"),
                action="publish_failed",
                session_id=record.get("sessionId"),
            )
            return False

        self.circuit_breaker.record_success()
        self.metrics["published"] += 1
        return True
