"""Tests for the SQL-backed workflow store and domain service."""

from datetime import timedelta

import pytest

from core.constants import ExecutionStatus, LogLevel, TriggeredBy
from core.exceptions import NotFoundError, ValidationError
from core.utils import ensure_aware, utc_now
from db.models.notification import Notification
from db.models.project import Project
from db.models.task import Task, TaskComment
from db.models.workflow_log import WorkflowLog
from services.base import BaseService
from services.domain_service import SqlDomainService
from services.workflow_service import SqlWorkflowStore, trigger_types_column
from workflow.engine import create_workflow_engine


@pytest.fixture
def sql_store(session_factory):
    return SqlWorkflowStore(session_factory)


@pytest.fixture
def sql_domain(session_factory):
    return SqlDomainService(session_factory)


async def seed(session_factory, model, **values):
    async with session_factory() as session:
        instance = await BaseService(model, session).create(values)
        await session.commit()
        return instance


def definition(**overrides):
    return {
        "name": "Notify PM",
        "triggers": [{"type": "PROJECT_STATUS_CHANGED", "config": {"status": ["COMPLETED"]}}],
        "actions": [{"type": "DELAY", "order": 1, "config": {"seconds": 0}}],
        **overrides,
    }


@pytest.mark.integration
class TestWorkflowDefinitions:
    def test_trigger_types_column(self):
        triggers = [{"type": "TASK_CREATED"}, {"type": "MANUAL"}, {"type": "TASK_CREATED"}]
        assert trigger_types_column(triggers) == ",TASK_CREATED,MANUAL,"
        assert trigger_types_column([]) == ","

    async def test_create_accepts_camel_case(self, sql_store):
        workflow = await sql_store.create_workflow(definition(maxRetries=1, retryDelaySeconds=30, priority=8))
        assert workflow.max_retries == 1
        assert workflow.retry_delay_seconds == 30
        assert workflow.priority == 8
        assert workflow.trigger_types == ",PROJECT_STATUS_CHANGED,"
        assert workflow.version == 1

    async def test_definition_change_bumps_version(self, sql_store):
        workflow = await sql_store.create_workflow(definition())
        renamed = await sql_store.update_workflow(workflow.id, {"name": "Renamed"})
        assert renamed.version == 1
        changed = await sql_store.update_workflow(workflow.id, {"triggers": [{"type": "TASK_CREATED"}]})
        assert changed.version == 2
        assert changed.trigger_types == ",TASK_CREATED,"

    async def test_update_missing(self, sql_store):
        assert await sql_store.update_workflow("nope", {"name": "x"}) is None

    async def test_find_by_trigger_type(self, sql_store):
        low = await sql_store.create_workflow(definition(name="low", priority=1))
        high = await sql_store.create_workflow(definition(name="high", priority=9))
        await sql_store.create_workflow(definition(name="off", enabled=False))
        await sql_store.create_workflow(definition(name="other", triggers=[{"type": "PROJECT_CREATED"}]))
        deleted = await sql_store.create_workflow(definition(name="gone"))
        await sql_store.delete_workflow(deleted.id)

        found = await sql_store.find_enabled_by_trigger_type("PROJECT_STATUS_CHANGED")

        assert [w.id for w in found] == [high.id, low.id]

    async def test_trigger_type_lookup_is_exact(self, sql_store):
        await sql_store.create_workflow(definition(triggers=[{"type": "TASK_STATUS_CHANGED"}]))
        assert await sql_store.find_enabled_by_trigger_type("STATUS_CHANGED") == []

    async def test_soft_delete_hides_workflow(self, sql_store):
        workflow = await sql_store.create_workflow(definition())
        assert await sql_store.delete_workflow(workflow.id) is True
        assert await sql_store.get_workflow(workflow.id) is None
        assert await sql_store.delete_workflow(workflow.id) is False

    async def test_list_filters(self, sql_store):
        await sql_store.create_workflow(definition(category="billing"))
        await sql_store.create_workflow(definition(category="ops", enabled=False))
        assert len(await sql_store.list_workflows()) == 2
        assert [w.category for w in await sql_store.list_workflows(enabled=True)] == ["billing"]
        assert [w.category for w in await sql_store.list_workflows(category="ops")] == ["ops"]


@pytest.mark.integration
class TestExecutions:
    async def test_create_and_update(self, sql_store):
        workflow = await sql_store.create_workflow(definition())
        execution = await sql_store.create_execution({
            "workflow_id": workflow.id,
            "status": ExecutionStatus.PENDING,
            "triggered_by": TriggeredBy.USER_ACTION,
            "context": {"timestamp": utc_now()},
            "started_at": utc_now(),
        })
        assert execution.status == "PENDING"
        assert execution.triggered_by == "USER_ACTION"
        assert isinstance(execution.context["timestamp"], str)

        updated = await sql_store.update_execution(execution.id, {"status": ExecutionStatus.SUCCESS, "duration_ms": 12})
        assert updated.status == "SUCCESS"
        assert (await sql_store.get_execution(execution.id)).duration_ms == 12

    async def test_due_retries_and_claim(self, sql_store):
        workflow = await sql_store.create_workflow(definition())
        now = utc_now()

        async def retrying(offset_seconds):
            return await sql_store.create_execution({
                "workflow_id": workflow.id,
                "status": ExecutionStatus.RETRYING,
                "next_retry_at": now + timedelta(seconds=offset_seconds),
            })

        due = await retrying(-30)
        await retrying(300)
        await sql_store.create_execution({"workflow_id": workflow.id, "status": ExecutionStatus.FAILED})

        rows = await sql_store.list_due_retries(now)
        assert [r.id for r in rows] == [due.id]

        assert await sql_store.mark_retry_dispatched(due.id, now) is True
        assert await sql_store.mark_retry_dispatched(due.id, now) is False
        assert await sql_store.list_due_retries(now) == []


@pytest.mark.integration
class TestLogsAndStats:
    async def test_append_log(self, sql_store, session_factory):
        workflow = await sql_store.create_workflow(definition())
        await sql_store.append_log(workflow.id, LogLevel.WARNING, "careful", {"at": utc_now()}, action="DELAY", step=1)

        async with session_factory() as session:
            [log], _ = await BaseService(WorkflowLog, session).list()
        assert log.level == "WARNING"
        assert log.action == "DELAY"
        assert isinstance(log.data["at"], str)

    async def test_running_statistics(self, sql_store):
        workflow = await sql_store.create_workflow(definition())
        first = utc_now()
        await sql_store.update_workflow_stats(workflow.id, ExecutionStatus.SUCCESS, 100, first)
        await sql_store.update_workflow_stats(workflow.id, ExecutionStatus.FAILED, 300, first + timedelta(seconds=5))
        await sql_store.update_workflow_stats(workflow.id, ExecutionStatus.CANCELLED, 200, first - timedelta(seconds=5))

        row = await sql_store.get_workflow(workflow.id)
        assert row.execution_count == 3
        assert row.success_count == 1
        assert row.failure_count == 1
        assert row.avg_execution_ms == 200
        assert ensure_aware(row.last_execution_at) == first + timedelta(seconds=5)

    async def test_stats_for_missing_workflow_is_a_no_op(self, sql_store):
        await sql_store.update_workflow_stats("nope", ExecutionStatus.SUCCESS, 1, utc_now())


@pytest.mark.integration
class TestDomainService:
    async def test_create_task(self, sql_domain, session_factory):
        project = await seed(session_factory, Project, name="Apollo")

        result = await sql_domain.create_task(project.id, "Kickoff", priority="HIGH", created_by="u1")

        async with session_factory() as session:
            task = await BaseService(Task, session).get_by_id(result.entity_id)
        assert task.title == "Kickoff"
        assert task.priority == "HIGH"
        assert task.created_by == "u1"

    async def test_create_task_unknown_project(self, sql_domain):
        with pytest.raises(NotFoundError):
            await sql_domain.create_task("missing", "t")

    async def test_update_project_status(self, sql_domain, session_factory):
        project = await seed(session_factory, Project, name="Apollo")
        result = await sql_domain.update_project_status(project.id, "COMPLETED")
        assert result.to_dict() == {"entityId": project.id, "field": "status", "value": "COMPLETED"}

    async def test_update_project_field_maps_camel_case(self, sql_domain, session_factory):
        project = await seed(session_factory, Project, name="Apollo")
        result = await sql_domain.update_project_field(project.id, "budgetUsed", 1200.5)
        assert result.field == "budget_used"
        assert result.value == 1200.5

    async def test_update_project_date_field(self, sql_domain, session_factory):
        project = await seed(session_factory, Project, name="Apollo")
        result = await sql_domain.update_project_field(project.id, "deadline", "2026-12-31T00:00:00Z")
        assert result.to_dict()["value"].startswith("2026-12-31")
        with pytest.raises(ValidationError, match="Invalid date"):
            await sql_domain.update_project_field(project.id, "deadline", "whenever")

    async def test_update_project_field_rejects_unknown_columns(self, sql_domain, session_factory):
        project = await seed(session_factory, Project, name="Apollo")
        with pytest.raises(ValidationError, match="cannot be updated"):
            await sql_domain.update_project_field(project.id, "id", "hijack")

    async def test_task_mutations(self, sql_domain, session_factory):
        project = await seed(session_factory, Project, name="Apollo")
        task = await seed(session_factory, Task, project_id=project.id, title="Write docs")

        await sql_domain.update_task_status(task.id, "IN_PROGRESS")
        await sql_domain.update_task_priority(task.id, "URGENT")
        await sql_domain.assign_task(task.id, "u2")
        comment = await sql_domain.add_task_comment(task.id, "On it", author_id="u2")

        async with session_factory() as session:
            stored = await BaseService(Task, session).get_by_id(task.id)
            stored_comment = await BaseService(TaskComment, session).get_by_id(comment.value)
        assert (stored.status, stored.priority, stored.assignee_id) == ("IN_PROGRESS", "URGENT", "u2")
        assert stored_comment.content == "On it"

    async def test_missing_task(self, sql_domain):
        with pytest.raises(NotFoundError):
            await sql_domain.update_task_status("missing", "DONE")
        with pytest.raises(NotFoundError):
            await sql_domain.add_task_comment("missing", "hello")

    async def test_create_notification(self, sql_domain, session_factory):
        result = await sql_domain.create_notification("u1", "Heads up", "m", type="WARNING", link="/p/1")
        async with session_factory() as session:
            notification = await BaseService(Notification, session).get_by_id(result.entity_id)
        assert notification.user_id == "u1"
        assert notification.type == "WARNING"
        assert notification.read is False


@pytest.mark.integration
async def test_engine_end_to_end_on_sql(sql_store, sql_domain, notifications, settings, session_factory, project_context):
    project = await seed(session_factory, Project, name="Website Redesign", status="COMPLETED")
    workflow = await sql_store.create_workflow(definition(actions=[
        {"type": "UPDATE_PROJECT_FIELD", "order": 1, "config": {
            "projectId": "{{entity.id}}", "field": "notes", "value": "Closed by {{user.email}}",
        }},
    ]))
    engine = create_workflow_engine(sql_store, sql_domain, notifications, settings=settings)
    context = project_context(id=project.id, status="COMPLETED")

    result = await engine.execute_workflow(workflow.id, context)

    assert result.status == ExecutionStatus.SUCCESS
    async with session_factory() as session:
        stored_project = await BaseService(Project, session).get_by_id(project.id)
        logs, total = await BaseService(WorkflowLog, session).list(limit=100)
    assert stored_project.notes == "Closed by owner@example.com"
    assert total == len(logs) >= 3
    execution = await sql_store.get_execution(result.execution_id)
    assert execution.status == "SUCCESS"
    assert execution.results[0]["status"] == "SUCCESS"
    stats = await sql_store.get_workflow(workflow.id)
    assert stats.execution_count == 1
    assert stats.success_count == 1
