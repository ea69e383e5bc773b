"""
BatchExecutor -- runs a registered task item by item, one SAVEPOINT each.

A failed, skipped or crashing item rolls back only its own SAVEPOINT and is
recorded in the run result; the run carries on.  By default the executor
never commits and the caller owns the outer transaction.  With
``commit_each_item`` the outer transaction is committed after every item,
so locks taken for one item are released before the next starts and
finished items stay written if the run dies.  All timestamps come from
the injected Clock.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from market_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJobStatus,
    BatchRunResult,
)
from market_batch.tasks.base import BatchItemInput, BatchTask, BatchTaskResult, TaskRegistry
from market_kernel.domain.clock import Clock, SystemClock
from market_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.executor")


def _elapsed_ms(since: float) -> int:
    return int((time.monotonic() - since) * 1000)


def job_status(succeeded: int, failed: int, skipped: int) -> BatchJobStatus:
    """COMPLETED with no failures, FAILED when nothing else happened, else partial."""
    if failed == 0:
        return BatchJobStatus.COMPLETED
    if succeeded == 0 and skipped == 0:
        return BatchJobStatus.FAILED
    return BatchJobStatus.PARTIALLY_COMPLETED


class BatchExecutor:
    """Savepoint-per-item batch runner."""

    def __init__(
        self,
        session: Session,
        task_registry: TaskRegistry,
        clock: Clock | None = None,
        commit_each_item: bool = False,
    ):
        self._session = session
        self._task_registry = task_registry
        self._clock = clock or SystemClock()
        self._commit_each_item = commit_each_item

    def run(
        self,
        task_type: str,
        actor_id: UUID,
        parameters: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> BatchRunResult:
        """
        Run ``task_type`` once.

        Raises:
            TaskNotRegisteredError: If task_type is not registered.
        """
        task = self._task_registry.get(task_type)
        job_id = uuid4()
        with LogContext.bind(job_id=job_id, actor_id=actor_id, correlation_id=correlation_id):
            return self._run(task, job_id, parameters or {}, correlation_id)

    def _run(
        self,
        task: BatchTask,
        job_id: UUID,
        parameters: dict[str, Any],
        correlation_id: str | None,
    ) -> BatchRunResult:
        t0 = time.monotonic()
        started_at = self._clock.now()
        logger.info(
            "batch_job_started",
            extra={"task_type": task.task_type, "description": task.description},
        )

        try:
            items = task.prepare_items(parameters=parameters, session=self._session, as_of=started_at)
        except Exception as exc:
            logger.error("batch_prepare_failed", extra={"task_type": task.task_type}, exc_info=True)
            return BatchRunResult(
                job_id=job_id,
                task_type=task.task_type,
                status=BatchJobStatus.FAILED,
                total_items=0,
                succeeded=0,
                failed=0,
                skipped=0,
                started_at=started_at,
                completed_at=self._clock.now(),
                duration_ms=_elapsed_ms(t0),
                correlation_id=correlation_id,
                error_summary=f"prepare_items failed: {exc}",
            )

        results = tuple(
            self._execute_item(task, item, parameters, started_at) for item in items
        )
        counts = {status: 0 for status in BatchItemStatus}
        for result in results:
            counts[result.status] += 1
        succeeded = counts[BatchItemStatus.SUCCEEDED]
        failed = counts[BatchItemStatus.FAILED]
        skipped = counts[BatchItemStatus.SKIPPED]
        status = job_status(succeeded, failed, skipped)

        duration_ms = _elapsed_ms(t0)
        logger.info(
            "batch_job_completed",
            extra={
                "task_type": task.task_type,
                "status": status.value,
                "total_items": len(items),
                "succeeded": succeeded,
                "failed": failed,
                "skipped": skipped,
                "duration_ms": duration_ms,
            },
        )
        return BatchRunResult(
            job_id=job_id,
            task_type=task.task_type,
            status=status,
            total_items=len(items),
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            item_results=results,
            started_at=started_at,
            completed_at=self._clock.now(),
            duration_ms=duration_ms,
            correlation_id=correlation_id,
            error_summary=f"{failed} item(s) failed" if failed else None,
        )

    def _execute_item(
        self,
        task: BatchTask,
        item: BatchItemInput,
        parameters: dict[str, Any],
        as_of: datetime,
    ) -> BatchItemResult:
        t0 = time.monotonic()
        item_started_at = self._clock.now()

        savepoint = self._session.begin_nested()
        try:
            outcome = task.execute_item(
                item=item, parameters=parameters, session=self._session, as_of=as_of,
            )
        except Exception as exc:
            savepoint.rollback()
            logger.warning(
                "batch_item_failed",
                extra={
                    "item_key": item.item_key,
                    "error_code": "UNHANDLED_EXCEPTION",
                    "error_message": str(exc),
                },
                exc_info=True,
            )
            outcome = BatchTaskResult(
                status=BatchItemStatus.FAILED,
                error_code="UNHANDLED_EXCEPTION",
                error_message=str(exc),
            )
        else:
            if outcome.status is BatchItemStatus.SUCCEEDED:
                savepoint.commit()
            else:
                savepoint.rollback()
            if outcome.status is BatchItemStatus.FAILED:
                logger.warning(
                    "batch_item_failed",
                    extra={
                        "item_key": item.item_key,
                        "error_code": outcome.error_code or "UNKNOWN",
                        "error_message": outcome.error_message or "",
                    },
                )

        if self._commit_each_item:
            self._session.commit()

        return BatchItemResult(
            item_index=item.item_index,
            item_key=item.item_key,
            status=outcome.status,
            error_code=outcome.error_code,
            error_message=outcome.error_message,
            result_data=outcome.result_data,
            duration_ms=_elapsed_ms(t0),
            started_at=item_started_at,
            completed_at=self._clock.now(),
        )
