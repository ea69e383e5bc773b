"""
Tests for market_batch.services.executor.

Validates BatchExecutor: SAVEPOINT-per-item isolation, item status
accounting, job status derivation, prepare failures and the registry.
"""

from datetime import datetime
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from market_batch.domain.types import BatchItemStatus, BatchJobStatus
from market_batch.services.executor import BatchExecutor
from market_batch.tasks.base import (
    BatchItemInput,
    BatchTaskResult,
    TaskRegistry,
    default_task_registry,
)
from market_kernel.exceptions import TaskNotRegisteredError
from market_modules.parties.orm import PartyModel


# =============================================================================
# Test fixtures
# =============================================================================


class ScriptedTask:
    """Writes one party per item, then does whatever the item key says."""

    def __init__(self, keys: tuple[str, ...], actor_id, task_type: str = "test.scripted"):
        self._keys = keys
        self._actor_id = actor_id
        self._task_type = task_type

    @property
    def task_type(self) -> str:
        return self._task_type

    @property
    def description(self) -> str:
        return "Scripted outcomes"

    def prepare_items(
        self, parameters: dict[str, Any], session: Session, as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        return tuple(
            BatchItemInput(item_index=i, item_key=key, payload={"key": key})
            for i, key in enumerate(self._keys)
        )

    def execute_item(
        self, item: BatchItemInput, parameters: dict[str, Any],
        session: Session, as_of: datetime,
    ) -> BatchTaskResult:
        session.add(PartyModel(role="seller", display_name=item.item_key, created_by_id=self._actor_id))
        session.flush()

        if item.item_key.startswith("fail"):
            return BatchTaskResult(
                status=BatchItemStatus.FAILED,
                error_code="SCRIPTED_FAILURE",
                error_message=f"{item.item_key} failed",
            )
        if item.item_key.startswith("skip"):
            return BatchTaskResult(status=BatchItemStatus.SKIPPED)
        if item.item_key.startswith("boom"):
            raise RuntimeError(f"{item.item_key} exploded")
        return BatchTaskResult(
            status=BatchItemStatus.SUCCEEDED,
            result_data={"processed": item.item_key},
        )


class BrokenPrepareTask:
    """Task whose item query itself fails."""

    @property
    def task_type(self) -> str:
        return "test.broken_prepare"

    @property
    def description(self) -> str:
        return "prepare_items raises"

    def prepare_items(self, parameters, session, as_of):
        raise LookupError("seller index unavailable")

    def execute_item(self, item, parameters, session, as_of):
        raise AssertionError("never reached")


@pytest.fixture
def run_task(session, deterministic_clock, test_actor_id):
    """Register a scripted task for ``keys`` and run it once."""

    def _run(*keys: str):
        # Open the outer transaction before the first SAVEPOINT.
        session.add(PartyModel(role="buyer", display_name="outer", created_by_id=test_actor_id))
        session.flush()

        registry = TaskRegistry()
        registry.register(ScriptedTask(keys, test_actor_id))
        executor = BatchExecutor(session, registry, deterministic_clock)
        return executor.run("test.scripted", test_actor_id, correlation_id="corr-batch")

    return _run


def _party_names(session) -> set[str]:
    return set(session.execute(select(PartyModel.display_name)).scalars())


# =============================================================================
# Execution
# =============================================================================


class TestItemOutcomes:

    def test_all_succeed(self, run_task, session):
        result = run_task("ok-1", "ok-2", "ok-3")

        assert result.status is BatchJobStatus.COMPLETED
        assert (result.total_items, result.succeeded, result.failed, result.skipped) == (3, 3, 0, 0)
        assert result.correlation_id == "corr-batch"
        assert result.error_summary is None
        assert [r.result_data for r in result.item_results] == [
            {"processed": "ok-1"}, {"processed": "ok-2"}, {"processed": "ok-3"},
        ]
        assert {"ok-1", "ok-2", "ok-3"} <= _party_names(session)

    def test_failed_and_skipped_items_are_rolled_back(self, run_task, session):
        result = run_task("ok-1", "fail-1", "skip-1", "boom-1")

        names = _party_names(session)
        assert "ok-1" in names
        assert names.isdisjoint({"fail-1", "skip-1", "boom-1"})
        # The outer transaction survives item rollbacks.
        assert "outer" in names
        assert result.skipped == 1

    def test_error_codes(self, run_task):
        result = run_task("fail-1", "boom-1")

        by_key = {r.item_key: r for r in result.item_results}
        assert by_key["fail-1"].status is BatchItemStatus.FAILED
        assert by_key["fail-1"].error_code == "SCRIPTED_FAILURE"
        assert by_key["boom-1"].error_code == "UNHANDLED_EXCEPTION"
        assert by_key["boom-1"].error_message == "boom-1 exploded"
        assert [r.item_key for r in result.failed_items] == ["fail-1", "boom-1"]

    def test_timestamps_come_from_clock(self, run_task, deterministic_clock):
        result = run_task("ok-1")
        assert result.started_at == deterministic_clock.now()
        assert result.item_results[0].completed_at == deterministic_clock.now()


class TestCommitEachItem:

    def _run(self, session, deterministic_clock, test_actor_id, commit_each_item):
        registry = TaskRegistry()
        registry.register(ScriptedTask(("ok-1", "fail-1", "boom-1", "ok-2"), test_actor_id))
        executor = BatchExecutor(
            session, registry, deterministic_clock, commit_each_item=commit_each_item,
        )
        return executor.run("test.scripted", test_actor_id)

    def test_finished_items_survive_a_later_rollback(self, session, deterministic_clock, test_actor_id):
        result = self._run(session, deterministic_clock, test_actor_id, commit_each_item=True)
        session.rollback()

        assert result.status is BatchJobStatus.PARTIALLY_COMPLETED
        assert _party_names(session) == {"ok-1", "ok-2"}

    def test_default_leaves_commit_to_caller(self, session, deterministic_clock, test_actor_id):
        self._run(session, deterministic_clock, test_actor_id, commit_each_item=False)
        session.rollback()

        assert _party_names(session) == set()


class TestJobStatus:

    def test_partial(self, run_task):
        result = run_task("ok-1", "fail-1")
        assert result.status is BatchJobStatus.PARTIALLY_COMPLETED
        assert result.error_summary == "1 item(s) failed"

    def test_nothing_succeeded(self, run_task):
        result = run_task("fail-1", "boom-1")
        assert result.status is BatchJobStatus.FAILED

    def test_skips_only_is_completed(self, run_task):
        assert run_task("skip-1", "skip-2").status is BatchJobStatus.COMPLETED

    def test_empty_run_is_completed(self, run_task):
        result = run_task()
        assert result.status is BatchJobStatus.COMPLETED
        assert result.total_items == 0

    def test_prepare_failure(self, session, deterministic_clock, test_actor_id, captured_logs):
        registry = TaskRegistry()
        registry.register(BrokenPrepareTask())
        result = BatchExecutor(session, registry, deterministic_clock).run(
            "test.broken_prepare", test_actor_id,
        )

        assert result.status is BatchJobStatus.FAILED
        assert result.total_items == 0
        assert result.error_summary == "prepare_items failed: seller index unavailable"
        failure = next(r for r in captured_logs() if r["message"] == "batch_prepare_failed")
        assert failure["exc_type"] == "LookupError"


class TestLogging:

    def test_job_completed_record(self, run_task, captured_logs):
        result = run_task("ok-1", "fail-1")

        records = captured_logs()
        completed = next(r for r in records if r["message"] == "batch_job_completed")
        assert completed["status"] == "partially_completed"
        assert completed["succeeded"] == 1
        assert completed["failed"] == 1
        assert completed["job_id"] == str(result.job_id)

        failed = next(r for r in records if r["message"] == "batch_item_failed")
        assert failed["item_key"] == "fail-1"


# =============================================================================
# Registry
# =============================================================================


class TestTaskRegistry:

    def test_register_and_get(self, test_actor_id):
        registry = default_task_registry()
        task = ScriptedTask((), test_actor_id)
        registry.register(task)

        assert registry.get("test.scripted") is task
        assert "test.scripted" in registry
        assert len(registry) == 1

    def test_duplicate_rejected(self, test_actor_id):
        registry = TaskRegistry()
        registry.register(ScriptedTask((), test_actor_id))
        with pytest.raises(ValueError):
            registry.register(ScriptedTask((), test_actor_id))

    def test_replace(self, test_actor_id):
        registry = TaskRegistry()
        registry.register(ScriptedTask((), test_actor_id))
        newer = ScriptedTask(("ok-1",), test_actor_id)
        registry.register(newer, replace=True)
        assert registry.get("test.scripted") is newer

    def test_unknown_task(self, session, deterministic_clock, test_actor_id):
        executor = BatchExecutor(session, TaskRegistry(), deterministic_clock)
        with pytest.raises(TaskNotRegisteredError) as exc_info:
            executor.run("tiers.nope", test_actor_id)
        assert exc_info.value.code == "TASK_NOT_REGISTERED"

    def test_list_tasks_sorted(self, test_actor_id):
        registry = TaskRegistry()
        registry.register(ScriptedTask((), test_actor_id, task_type="b.task"))
        registry.register(ScriptedTask((), test_actor_id, task_type="a.task"))
        assert registry.list_tasks() == ("a.task", "b.task")
