"""Tests for the guarded delete step."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine

from safe_delete.deletion.errors import CascadeStepError
from safe_delete.deletion.probe import SchemaProbe
from safe_delete.deletion.registry import ReferenceAction
from safe_delete.deletion.steps import (
    AutocommitRunner,
    GuardedDeleteStep,
    StatementRunner,
    StepOutcome,
    TransactionalRunner,
)
from safe_delete.models import Notification, Order, SearchLog
from tests.helpers.marketplace import (
    StatementRecorder,
    add_notifications,
    count_rows,
    create_schema,
    create_user,
    execute_sql,
    insert_row,
    seed_driver_with_delivery,
)


async def _step(engine: AsyncEngine, *, probe: bool = True, **kwargs: int) -> GuardedDeleteStep:
    runner = AutocommitRunner(engine)
    loaded = await runner.load_probe() if probe else SchemaProbe.disabled()
    return GuardedDeleteStep(runner, loaded, **kwargs)


@pytest.mark.asyncio
async def test_step_removes_matching_rows(engine: AsyncEngine) -> None:
    user_id = await create_user(engine)
    other_id = await create_user(engine)
    await add_notifications(engine, user_id, 3)
    await add_notifications(engine, other_id, 1)
    step = await _step(engine)

    result = await step.run("notifications", "user_id", [user_id])

    assert result.outcome is StepOutcome.REMOVED
    assert result.removed == 3
    assert result.label == "notifications.user_id"
    assert await count_rows(engine, Notification, user_id=user_id) == 0
    assert await count_rows(engine, Notification, user_id=other_id) == 1


@pytest.mark.asyncio
async def test_step_with_no_matches_is_empty(engine: AsyncEngine) -> None:
    step = await _step(engine)

    result = await step.run("notifications", "user_id", ["missing-user"])

    assert result.outcome is StepOutcome.EMPTY
    assert result.removed == 0


@pytest.mark.asyncio
async def test_step_with_no_values_issues_no_sql(engine: AsyncEngine) -> None:
    """A principal without a phone number never touches phone_verifications."""
    step = await _step(engine)
    recorder = StatementRecorder(engine)
    try:
        result = await step.run("phone_verifications", "phone", [])
    finally:
        recorder.close()

    assert result.outcome is StepOutcome.EMPTY
    assert recorder.statements == []


@pytest.mark.asyncio
async def test_step_on_absent_table_is_absent_without_sql(bare_engine: AsyncEngine) -> None:
    await create_schema(bare_engine, exclude={"blacklist"})
    step = await _step(bare_engine)
    recorder = StatementRecorder(bare_engine)
    try:
        result = await step.run("blacklist", "added_by", ["some-user"])
    finally:
        recorder.close()

    assert result.outcome is StepOutcome.ABSENT
    assert recorder.mutations == []


@pytest.mark.asyncio
async def test_step_on_absent_column_is_absent(bare_engine: AsyncEngine) -> None:
    await create_schema(bare_engine, exclude={"search_logs"})
    await execute_sql(bare_engine, "CREATE TABLE search_logs (id VARCHAR(36) PRIMARY KEY, query TEXT)")
    step = await _step(bare_engine)

    result = await step.run("search_logs", "user_id", ["some-user"])

    assert result.outcome is StepOutcome.ABSENT


@pytest.mark.asyncio
async def test_step_classifies_absence_from_error_without_probe(bare_engine: AsyncEngine) -> None:
    """With metadata unavailable the missing table is recognised from the driver error."""
    await create_schema(bare_engine, exclude={"blacklist"})
    step = await _step(bare_engine, probe=False)

    result = await step.run("blacklist", "added_by", ["some-user"])

    assert result.outcome is StepOutcome.ABSENT


@pytest.mark.asyncio
async def test_step_raises_on_real_failure_with_truncated_cause(engine: AsyncEngine) -> None:
    """Deleting a row that is still referenced is a real error, not absence."""
    user_id = await create_user(engine)
    await add_notifications(engine, user_id, 1)
    step = await _step(engine, cause_max_length=20)

    with pytest.raises(CascadeStepError) as exc_info:
        await step.run("users", "id", [user_id])

    assert exc_info.value.table == "users"
    assert exc_info.value.column == "id"
    assert len(exc_info.value.cause) <= 20
    assert "FOREIGN KEY" in exc_info.value.cause


@pytest.mark.asyncio
async def test_step_splits_large_id_lists_into_batches(engine: AsyncEngine) -> None:
    user_ids = [await create_user(engine) for _ in range(5)]
    for user_id in user_ids:
        await insert_row(engine, SearchLog, user_id=user_id, query="lamps")
    step = await _step(engine, batch_size=2)
    recorder = StatementRecorder(engine)
    try:
        result = await step.run("search_logs", "user_id", [*user_ids, user_ids[0]])
    finally:
        recorder.close()

    assert result.removed == 5
    assert len([s for s in recorder.mutations if s.startswith("DELETE FROM search_logs")]) == 3


@pytest.mark.asyncio
async def test_failed_savepoint_does_not_poison_following_steps(engine: AsyncEngine) -> None:
    """In one outer transaction a failing statement only rolls back its own SAVEPOINT."""
    user_id = await create_user(engine)
    await add_notifications(engine, user_id, 2)

    async with engine.connect() as conn, conn.begin():
        runner = TransactionalRunner(conn)
        step = GuardedDeleteStep(runner, await runner.load_probe())

        with pytest.raises(CascadeStepError):
            await step.run("users", "id", [user_id])
        result = await step.run("notifications", "user_id", [user_id])

    assert result.outcome is StepOutcome.REMOVED
    assert await count_rows(engine, Notification, user_id=user_id) == 0


@pytest.mark.asyncio
async def test_nullify_step_clears_column_and_keeps_rows(engine: AsyncEngine) -> None:
    delivery = await seed_driver_with_delivery(engine)
    step = await _step(engine)
    recorder = StatementRecorder(engine)
    try:
        result = await step.run("orders", "driver_id", [delivery.driver_id], ReferenceAction.NULLIFY)
    finally:
        recorder.close()

    assert result.outcome is StepOutcome.NULLIFIED
    assert result.removed == 1
    assert result.action is ReferenceAction.NULLIFY
    assert [s.split()[0] for s in recorder.mutations] == ["UPDATE"]
    assert await count_rows(engine, Order, id=delivery.order_id, driver_id=None) == 1


@pytest.mark.asyncio
async def test_nullify_step_with_no_matches_is_empty(engine: AsyncEngine) -> None:
    step = await _step(engine)

    result = await step.run("orders", "driver_id", ["no-such-driver"], ReferenceAction.NULLIFY)

    assert result.outcome is StepOutcome.EMPTY


@pytest.mark.asyncio
async def test_step_wraps_pool_timeout_as_step_error() -> None:
    """Errors raised before a statement reaches the driver are classified too."""
    runner = AsyncMock(spec=AutocommitRunner)
    runner.rowcount.side_effect = PoolTimeoutError(
        "QueuePool limit of size 5 overflow 10 reached, connection timed out"
    )
    step = GuardedDeleteStep(runner, SchemaProbe.disabled(), cause_max_length=30)

    with pytest.raises(CascadeStepError) as exc_info:
        await step.run("notifications", "user_id", ["user-1"])

    assert exc_info.value.table == "notifications"
    assert exc_info.value.column == "user_id"
    assert exc_info.value.cause.startswith("QueuePool limit")
    assert len(exc_info.value.cause) <= 30


def test_statement_runner_is_abstract() -> None:
    with pytest.raises(TypeError):
        StatementRunner()  # type: ignore[abstract]
