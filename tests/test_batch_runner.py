"""
Tests for bulk rule runs: the batch runner, completion notices and the
background job queue.
"""
import asyncio

import pytest

from serviflow.config import NotificationType
from serviflow.core.exceptions import JobQueueFullError
from serviflow.infrastructure.database.models import NotificationModel
from serviflow.rules.application import BatchRunner, CompletionNotifier, RuleActionExecutor
from serviflow.rules.domain import BatchJob, BatchResult
from serviflow.rules.infrastructure import (
    BackgroundJobQueue,
    TicketRuleExecutionModel,
    rule_unit_of_work_factory,
)
from serviflow.rules.services import create_rule_job_queue


class DownExecutor(RuleActionExecutor):
    """Every attempt hits a dropped connection."""

    async def apply_action(self, uow, action, ticket, now):
        raise ConnectionResetError("connection reset by peer")


@pytest.fixture
def uow_factory(databases):
    return rule_unit_of_work_factory(databases)


@pytest.fixture
def make_runner(uow_factory, config_provider, clock, sleep, monotonic):
    def factory(executor_cls=RuleActionExecutor):
        return BatchRunner(
            uow_factory,
            config_provider,
            executor_cls=executor_cls,
            clock=clock,
            sleep=sleep,
            monotonic=monotonic,
        )
    return factory


def make_job(rule_id, ticket_ids, **fields) -> BatchJob:
    fields.setdefault("batch_size", 3)
    fields.setdefault("batch_delay_seconds", 3.0)
    return BatchJob(
        tenant_code="acme",
        rule_id=rule_id,
        rule_name="Printer rule",
        ticket_ids=ticket_ids,
        user_id=8,
        **fields,
    )


class TestBatchRunner:

    @pytest.mark.asyncio
    async def test_chunks_are_paced(self, make_runner, seed, sleep):
        ids = [await seed.ticket() for _ in range(7)]
        rule_id = await seed.rule()

        result = await make_runner().run(make_job(rule_id, ids, batch_delay_seconds=4.0))

        assert result.success_count == 7
        assert result.error_count == 0
        assert not result.circuit_broken
        assert sleep.calls == [4.0, 4.0]
        assert len(await seed.all(TicketRuleExecutionModel)) == 7

    @pytest.mark.asyncio
    async def test_tallies_mixed_outcomes(self, make_runner, seed):
        ids = [await seed.ticket() for _ in range(2)]
        rule_id = await seed.rule()

        result = await make_runner().run(make_job(rule_id, [ids[0], 999, ids[1]]))

        assert (result.success_count, result.error_count, result.skipped_count) == (2, 1, 0)
        assert result.errors == ["Ticket #999: Ticket with id '999' not found"]

    @pytest.mark.asyncio
    async def test_disabled_rule_skips_every_ticket(self, make_runner, seed):
        ids = [await seed.ticket() for _ in range(4)]
        rule_id = await seed.rule(enabled=False)

        result = await make_runner().run(make_job(rule_id, ids))

        assert result.skipped_count == 4
        assert result.processed == 4
        assert await seed.all(TicketRuleExecutionModel) == []

    @pytest.mark.asyncio
    async def test_business_failures_never_open_the_breaker(self, make_runner, seed):
        ids = [await seed.ticket() for _ in range(8)]
        rule_id = await seed.rule(action_params={})

        result = await make_runner().run(make_job(rule_id, ids))

        assert result.error_count == 8
        assert not result.circuit_broken

    @pytest.mark.asyncio
    async def test_circuit_breaker_stops_the_run(self, make_runner, seed, sleep):
        ids = [await seed.ticket() for _ in range(8)]
        rule_id = await seed.rule()

        result = await make_runner(DownExecutor).run(make_job(rule_id, ids, batch_size=2))

        assert result.circuit_broken
        assert result.error_count == 5
        assert result.success_count == 0
        assert len(result.errors) == 6
        assert result.errors[-1] == "Circuit breaker triggered after 5 consecutive connection failures"
        executions = await seed.all(TicketRuleExecutionModel)
        assert [e.ticket_id for e in executions] == ids[:5]
        assert {e.result for e in executions} == {"failure"}
        # Two retry waits per ticket, a batch wait after each of the first two chunks
        assert sleep.calls.count(3.0) == 2
        assert sleep.calls.count(1.0) == 5
        assert sleep.calls.count(2.0) == 5


class TestCompletionNotifier:

    @pytest.fixture
    def notifier(self, uow_factory, config_provider, clock):
        return CompletionNotifier(uow_factory, config_provider, clock=clock)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("result, severity, suffix", [
        (BatchResult(success_count=3), "info", "3 succeeded, 0 failed, 0 skipped"),
        (BatchResult(success_count=2, error_count=1, errors=["Ticket #4: boom"]), "warning",
         "2 succeeded, 1 failed, 0 skipped"),
        (BatchResult(error_count=5, circuit_broken=True), "critical",
         "0 succeeded, 5 failed, 0 skipped (stopped by circuit breaker)"),
    ])
    async def test_summary_notification(self, notifier, seed, result, severity, suffix):
        job = make_job(3, [1, 2, 3])

        await notifier.notify(job, result)

        [notification] = await seed.all(NotificationModel)
        assert notification.ticket_id is None
        assert notification.type == NotificationType.RULE_EXECUTION_COMPLETE.value
        assert notification.severity == severity
        assert notification.message == f'Rule "Printer rule" completed: {suffix}'
        assert notification.payload_json["rule_id"] == 3
        assert notification.payload_json["user_id"] == 8
        assert notification.payload_json["circuit_broken"] is result.circuit_broken

    @pytest.mark.asyncio
    async def test_breaker_reason_survives_error_limit(self, notifier, seed):
        errors = [f"Ticket #{n}: connection reset" for n in range(12)]
        errors.append("Circuit breaker triggered after 5 consecutive connection failures")
        result = BatchResult(error_count=12, circuit_broken=True, errors=errors)

        await notifier.notify(make_job(3, list(range(12))), result)

        [notification] = await seed.all(NotificationModel)
        payload_errors = notification.payload_json["errors"]
        assert len(payload_errors) == 10
        assert payload_errors[:9] == errors[:9]
        assert payload_errors[-1] == "Circuit breaker triggered after 5 consecutive connection failures"

    @pytest.mark.asyncio
    async def test_hard_failure_notification(self, notifier, seed):
        await notifier.notify(make_job(3, [1]), error=RuntimeError("tenant store unreachable"))

        [notification] = await seed.all(NotificationModel)
        assert notification.severity == "critical"
        assert notification.message == 'Rule "Printer rule" failed: tenant store unreachable'
        assert notification.payload_json["error"] == "tenant store unreachable"


class TestBackgroundJobQueue:

    @pytest.mark.asyncio
    async def test_every_job_completes_once(self):
        completions = []

        async def handler(job):
            if job.rule_id == 2:
                raise RuntimeError("boom")
            return BatchResult(success_count=len(job.ticket_ids))

        async def on_complete(job, result, error):
            completions.append((job.rule_id, result, error))

        queue = BackgroundJobQueue(handler, on_complete, maxsize=10, workers=2)
        queue.start()
        try:
            queue.submit(make_job(1, [1, 2]))
            queue.submit(make_job(2, [3]))
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await queue.stop()

        assert len(completions) == 2
        by_rule = {rule_id: (result, error) for rule_id, result, error in completions}
        assert by_rule[1][0].success_count == 2
        assert by_rule[1][1] is None
        assert by_rule[2][0] is None
        assert str(by_rule[2][1]) == "boom"
        assert not queue.is_running

    @pytest.mark.asyncio
    async def test_full_queue(self):
        completions = []

        async def handler(job):
            return BatchResult()

        async def on_complete(job, result, error):
            completions.append((job.rule_id, error))

        queue = BackgroundJobQueue(handler, on_complete, maxsize=1)
        queue.submit(make_job(1, [1]))
        assert queue.is_full
        assert queue.pending == 1

        with pytest.raises(JobQueueFullError):
            queue.submit(make_job(2, [1]))
        await queue.enqueue(make_job(3, [1]))

        queue.start()
        try:
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await queue.stop()

        assert sorted(rule_id for rule_id, _ in completions) == [1, 3]
        rejected = dict(completions)[3]
        assert isinstance(rejected, JobQueueFullError)
        assert dict(completions)[1] is None

    @pytest.mark.asyncio
    async def test_completion_errors_do_not_stop_the_listener(self):
        seen = []

        async def handler(job):
            return BatchResult()

        async def on_complete(job, result, error):
            seen.append(job.rule_id)
            if job.rule_id == 1:
                raise RuntimeError("notification store down")

        queue = BackgroundJobQueue(handler, on_complete)
        queue.start()
        try:
            queue.submit(make_job(1, [1]))
            queue.submit(make_job(2, [1]))
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await queue.stop()

        assert seen == [1, 2]

    @pytest.mark.asyncio
    async def test_wired_queue_runs_rule_and_notifies(self, databases, config_provider, seed, clock, sleep):
        ids = [await seed.ticket() for _ in range(2)]
        rule_id = await seed.rule()
        queue = create_rule_job_queue(databases, config_provider, clock=clock, sleep=sleep)
        queue.start()
        try:
            await queue.enqueue(make_job(rule_id, ids))
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await queue.stop()

        assert {t.priority for t in [await seed.get_ticket(i) for i in ids]} == {"High"}
        [notification] = await seed.all(NotificationModel)
        assert notification.severity == "info"
        assert notification.message == 'Rule "Printer rule" completed: 2 succeeded, 0 failed, 0 skipped'
        assert queue.maxsize == 100
