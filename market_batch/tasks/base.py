"""
Batch task contract and the registry that maps ``task_type`` to a task.

A task splits a run into items (``prepare_items``) and handles one item at
a time (``execute_item``).  The executor wraps every item in its own
SAVEPOINT, so tasks never commit or roll back themselves.

Concrete tasks import the module services they drive inside their
methods; module services import the executor, and the import has to stay
one-way at module load.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from market_batch.domain.types import BatchItemStatus
from market_kernel.exceptions import TaskNotRegisteredError


@dataclass(frozen=True)
class BatchItemInput:
    """One unit of work, e.g. one seller to re-tier."""

    item_index: int
    item_key: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchTaskResult:
    """What ``execute_item`` reports back.  FAILED and SKIPPED roll the item back."""

    status: BatchItemStatus
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None


@runtime_checkable
class BatchTask(Protocol):

    @property
    def task_type(self) -> str:
        """Registry key, e.g. ``tiers.recompute``."""
        ...

    @property
    def description(self) -> str: ...

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        """Items for this run, in processing order.  ``as_of`` is the run's clock time."""
        ...

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        """
        Handle one item inside the executor's SAVEPOINT.

        Expected domain failures come back as a FAILED result with the
        error's code.  Anything raised is recorded as ``UNHANDLED_EXCEPTION``.
        """
        ...


class TaskRegistry:
    """``task_type`` -> task."""

    def __init__(self) -> None:
        self._tasks: dict[str, BatchTask] = {}

    def register(self, task: BatchTask, replace: bool = False) -> None:
        """
        Raises:
            ValueError: ``task_type`` already registered and ``replace`` not set.
        """
        if not replace and task.task_type in self._tasks:
            raise ValueError(f"Task type '{task.task_type}' is already registered")
        self._tasks[task.task_type] = task

    def get(self, task_type: str) -> BatchTask:
        """
        Raises:
            TaskNotRegisteredError: nothing registered under ``task_type``.
        """
        task = self._tasks.get(task_type)
        if task is None:
            raise TaskNotRegisteredError(task_type)
        return task

    def list_tasks(self) -> tuple[str, ...]:
        return tuple(sorted(self._tasks))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_type: str) -> bool:
        return task_type in self._tasks


def default_task_registry() -> TaskRegistry:
    """A fresh, empty registry."""
    return TaskRegistry()
