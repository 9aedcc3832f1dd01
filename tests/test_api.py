"""
API tests over the FastAPI app with in-memory tenant stores.

The lifespan is not run; the components it would build are placed on
app.state directly.
"""
import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from serviflow.infrastructure.database import TenantDatabaseManager
from serviflow.infrastructure.database.models import NotificationModel
from serviflow.main import app
from serviflow.rules.domain import BatchJob, BatchResult
from serviflow.rules.infrastructure import BackgroundJobQueue, TicketRuleExecutionModel
from serviflow.shared.api.middleware import tenant_from_path
from serviflow.sla.services import SchedulerContext, SLANotificationScheduler

from conftest import T0


class RecordingQueue(BackgroundJobQueue):
    """Job queue whose handler records jobs instead of running them."""

    def __init__(self, maxsize: int = 10):
        self.jobs = []
        self.handled = asyncio.Event()
        super().__init__(self._handle, self._complete, maxsize=maxsize)

    async def _handle(self, job):
        self.jobs.append(job)
        self.handled.set()
        return BatchResult(success_count=len(job.ticket_ids))

    async def _complete(self, job, result, error):
        pass


@pytest.fixture
def job_queue():
    return RecordingQueue()


@pytest_asyncio.fixture
async def client(master_engine, databases, config_manager, registry, config_provider, clock, sleep, job_queue, seed):
    await seed.tenant("acme")
    await seed.tenant("globex", status="suspended")
    app.state.tenant_databases = databases
    app.state.config_manager = config_manager
    app.state.tenant_registry = registry
    app.state.job_queue = job_queue
    app.state.clock = clock
    app.state.notification_scheduler = SLANotificationScheduler(
        SchedulerContext(), databases, registry, config_provider, clock=clock, sleep=sleep
    )
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    await job_queue.stop()


TICKETS = "/sla/tenants/acme/tickets"
RULES = "/rules/tenants/acme"


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})

        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "abc-123"
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["engine_config"] == "loaded"
        assert body["checks"]["job_queue"] == "stopped"
        assert body["checks"]["pending_jobs"] == 0


class TestSLARoutes:

    @pytest.mark.asyncio
    async def test_assign_from_ticket_columns(self, client, seed):
        sla_id = await seed.sla()
        ticket_id = await seed.ticket()

        response = await client.post(f"{TICKETS}/{ticket_id}/assign", json={})

        assert response.status_code == 200
        assert response.json() == {"ticket_id": ticket_id, "sla_definition_id": sla_id, "sla_source": "default"}
        ticket = await seed.get_ticket(ticket_id)
        assert ticket.sla_definition_id == sla_id
        assert ticket.response_due_at is not None

    @pytest.mark.asyncio
    async def test_assign_with_explicit_candidates(self, client, seed):
        await seed.sla(name="Bronze")
        gold = await seed.sla(name="Gold")
        ticket_id = await seed.ticket()

        response = await client.post(f"{TICKETS}/{ticket_id}/assign", json={"sla_definition_id": gold})

        assert response.json()["sla_source"] == "ticket"
        assert response.json()["sla_definition_id"] == gold

    @pytest.mark.asyncio
    async def test_missing_ticket_is_404(self, client):
        response = await client.get(f"{TICKETS}/99/status")

        assert response.status_code == 404
        assert response.json()["detail"] == "Ticket with id '99' not found"
        assert response.json()["correlation_id"]

    @pytest.mark.asyncio
    async def test_first_response_then_status(self, client, seed, clock):
        await seed.sla(response=240, resolve=480)
        ticket_id = await seed.ticket()
        await client.post(f"{TICKETS}/{ticket_id}/assign", json={})
        clock.advance(hours=1)

        response = await client.post(f"{TICKETS}/{ticket_id}/first-response", json={})

        assert response.status_code == 200
        body = response.json()
        assert body["sla_phase"] == "in_progress"
        assert body["response"]["state"] == "met"
        assert body["resolve"]["state"] == "on_track"
        assert body["resolve"]["percent_elapsed"] == 0.0

        clock.advance(hours=4)
        status = (await client.get(f"{TICKETS}/{ticket_id}/status")).json()
        assert status["resolve"]["percent_elapsed"] == 50.0

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, client, seed, clock):
        ticket_id = await seed.ticket()

        paused = await client.post(f"{TICKETS}/{ticket_id}/pause", json={})
        clock.advance(minutes=20)
        resumed = await client.post(f"{TICKETS}/{ticket_id}/resume")

        assert paused.json() == {"ticket_id": ticket_id, "paused": True, "sla_pause_total_seconds": None}
        assert resumed.json() == {"ticket_id": ticket_id, "paused": False, "sla_pause_total_seconds": 1200}
        ticket = await seed.get_ticket(ticket_id)
        assert ticket.pool_status == "IN_PROGRESS_OWNED"

    @pytest.mark.asyncio
    async def test_cycle_and_ticket_notifications(self, client, seed, clock):
        sla_id = await seed.sla()
        ticket_id = await seed.ticket(sla_definition_id=sla_id, response_due_at=T0 + timedelta(hours=4))
        clock.now = T0 + timedelta(hours=4, minutes=30)

        cycle = await client.post("/sla/cycle")

        assert cycle.status_code == 200
        assert cycle.json()["tenants_processed"] == 1
        assert cycle.json()["notifications_created"] == 2

        listed = (await client.get(f"{TICKETS}/{ticket_id}/notifications")).json()
        assert [n["type"] for n in listed] == ["SLA_RESPONSE_BREACHED", "SLA_RESPONSE_NEAR"]
        assert listed[0]["severity"] == "critical"
        assert listed[0]["payload"]["ticketId"] == ticket_id


class TestRuleRoutes:

    @pytest.mark.asyncio
    async def test_dry_run(self, client, seed):
        ticket_id = await seed.ticket()
        await seed.ticket(title="VPN", description="down")
        rule_id = await seed.rule()

        response = await client.get(f"{RULES}/rules/{rule_id}/test")

        assert response.status_code == 200
        body = response.json()
        assert body["ticket_count"] == 1
        assert body["tickets"][0]["id"] == ticket_id
        assert body["tickets"][0]["title"] == "Printer on fire"

    @pytest.mark.asyncio
    async def test_execute(self, client, seed):
        ticket_id = await seed.ticket()
        rule_id = await seed.rule()

        response = await client.post(f"{RULES}/rules/{rule_id}/execute", json={"ticket_id": ticket_id})

        assert response.status_code == 200
        assert response.json()["result"] == "success"
        assert response.json()["message"] == f"Ticket #{ticket_id} priority set to High"

    @pytest.mark.asyncio
    async def test_execute_failure_is_reported_in_body(self, client, seed):
        rule_id = await seed.rule()

        response = await client.post(f"{RULES}/rules/{rule_id}/execute", json={"ticket_id": 50})

        assert response.status_code == 200
        assert response.json()["result"] == "failure"
        assert response.json()["error"] == "Ticket with id '50' not found"

    @pytest.mark.asyncio
    async def test_execute_unknown_rule_is_404(self, client, seed):
        ticket_id = await seed.ticket()

        response = await client.post(f"{RULES}/rules/8/execute", json={"ticket_id": ticket_id})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_execute_validates_body(self, client):
        response = await client.post(f"{RULES}/rules/1/execute", json={"ticket_id": "abc"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_execute_rules_on_new_ticket(self, client, seed):
        ticket_id = await seed.ticket()
        await seed.rule()
        await seed.rule(name="Tag", action_type="add_tag", action_params={"tag": "hardware"})

        response = await client.post(f"{RULES}/tickets/{ticket_id}/execute-rules")

        assert response.status_code == 200
        assert [o["action_taken"] for o in response.json()] == ["set_priority", "add_tag"]

    @pytest.mark.asyncio
    async def test_run_in_background(self, client, seed, job_queue):
        job_queue.start()
        ids = [await seed.ticket() for _ in range(3)]
        rule_id = await seed.rule()
        await seed.setting("batch_size", "50")
        await seed.setting("batch_delay_seconds", "1")

        response = await client.post(f"{RULES}/rules/{rule_id}/run", json={"user_id": 4})

        assert response.status_code == 202
        assert response.json() == {
            "ticket_count": 3,
            "started": True,
            "rule_name": "Printer rule",
            "message": "Processing 3 tickets in the background",
        }
        await asyncio.wait_for(job_queue.handled.wait(), timeout=5)
        [job] = job_queue.jobs
        assert sorted(job.ticket_ids) == ids
        assert job.user_id == 4
        # Tenant values are clamped to the engine bounds
        assert job.batch_size == 10
        assert job.batch_delay_seconds == 3.0

    @pytest.mark.asyncio
    async def test_run_without_matches(self, client, seed, job_queue):
        rule_id = await seed.rule()

        response = await client.post(f"{RULES}/rules/{rule_id}/run", json={})

        assert response.status_code == 202
        assert response.json()["started"] is False
        assert job_queue.pending == 0

    @pytest.mark.asyncio
    async def test_run_disabled_rule_is_422(self, client, seed):
        await seed.ticket()
        rule_id = await seed.rule(enabled=False)

        response = await client.post(f"{RULES}/rules/{rule_id}/run", json={})

        assert response.status_code == 422
        assert response.json()["detail"] == "Rule is disabled"

    @pytest.mark.asyncio
    async def test_run_with_full_queue_is_503(self, client, seed):
        full = RecordingQueue(maxsize=1)
        full.submit(BatchJob(tenant_code="acme", rule_id=1, rule_name="Queued", ticket_ids=[1]))
        app.state.job_queue = full
        await seed.ticket()
        rule_id = await seed.rule()

        response = await client.post(f"{RULES}/rules/{rule_id}/run", json={})

        assert response.status_code == 503
        assert full.pending == 1

    @pytest.mark.asyncio
    async def test_history_and_statistics(self, client, seed):
        ticket_id = await seed.ticket()
        rule_id = await seed.rule()
        await client.post(f"{RULES}/rules/{rule_id}/execute", json={"ticket_id": ticket_id})

        history = (await client.get(f"{RULES}/rules/{rule_id}/executions", params={"limit": 5})).json()
        stats = (await client.get(f"{RULES}/statistics")).json()

        assert len(history) == 1
        assert history[0]["ticket_title"] == "Printer on fire"
        assert history[0]["result"] == "success"
        assert stats["total_rules"] == 1
        assert stats["total_executions"] == 1
        assert stats["executions_last_24h"] == 1
        assert len(await seed.all(TicketRuleExecutionModel)) == 1
        assert await seed.all(NotificationModel) == []

    @pytest.mark.asyncio
    async def test_history_limit_is_bounded(self, client, seed):
        rule_id = await seed.rule()

        response = await client.get(f"{RULES}/rules/{rule_id}/executions", params={"limit": 0})

        assert response.status_code == 422


class TestTenantResolution:

    @pytest.mark.asyncio
    async def test_unknown_tenant_is_404_without_an_engine(self, client, databases):
        response = await client.get("/sla/tenants/nope/tickets/1/status")

        assert response.status_code == 404
        assert response.json()["detail"] == "Tenant with id 'nope' not found"
        assert "nope" not in databases.tenant_codes

    @pytest.mark.asyncio
    async def test_suspended_tenant_is_404(self, client):
        response = await client.get("/rules/tenants/globex/statistics")

        assert response.status_code == 404
        assert response.json()["detail"] == "Tenant with id 'globex' not found"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["ACME", "ac%3Fme", "ac-me"])
    async def test_malformed_tenant_code_is_422(self, client, databases, code):
        response = await client.get(f"/sla/tenants/{code}/tickets/1/status")

        assert response.status_code == 422
        assert databases.tenant_codes == ["acme", "globex"]

    def test_engine_is_never_built_for_a_malformed_code(self):
        manager = TenantDatabaseManager(url_template="sqlite+aiosqlite:///:memory:?tenant={tenant}")

        with pytest.raises(ValueError, match="Invalid tenant code"):
            manager.get_engine("x;drop")
        assert manager.tenant_codes == []


@pytest.mark.parametrize("path, tenant", [
    ("/sla/tenants/acme/tickets/1/status", "acme"),
    ("/rules/tenants/globex/statistics", "globex"),
    ("/sla/tenants", None),
    ("/health", None),
])
def test_tenant_from_path(path, tenant):
    assert tenant_from_path(path) == tenant
