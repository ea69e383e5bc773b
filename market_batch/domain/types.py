"""Run and item outcomes of a batch execution.  Values only, no I/O."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class BatchJobStatus(str, Enum):
    """Job-level outcome."""

    COMPLETED = "completed"  # No item failed
    FAILED = "failed"  # Every item failed, or prepare_items did
    PARTIALLY_COMPLETED = "partially_completed"


class BatchItemStatus(str, Enum):
    """Per-item outcome within a batch run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # Intentionally skipped, savepoint rolled back


@dataclass(frozen=True)
class BatchItemResult:
    """How one item went.  Durations are wall-clock, timestamps come from the Clock."""

    item_index: int
    item_key: str  # Seller id for tier runs
    status: BatchItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class BatchRunResult:
    """Everything ``BatchExecutor.run()`` has to say about one run."""

    job_id: UUID
    task_type: str
    status: BatchJobStatus
    total_items: int
    succeeded: int
    failed: int
    skipped: int
    item_results: tuple[BatchItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    correlation_id: str | None = None
    error_summary: str | None = None

    @property
    def failed_items(self) -> tuple[BatchItemResult, ...]:
        return tuple(r for r in self.item_results if r.status is BatchItemStatus.FAILED)
