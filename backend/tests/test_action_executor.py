"""Tests for sequential action execution."""

from typing import Any, Mapping

import pytest

from actions.base_action import ActionDependencies, BaseAction
from actions.registry import BUILTIN_ACTIONS, ActionRegistry
from core.constants import ActionStatus, ActionType
from core.exceptions import ActionError, ValidationError
from notifications.channels import NotificationChannel
from workflow.action_executor import ActionExecutor, sort_actions
from workflow.models import ActionDeclaration, WorkflowDefinition

CONTEXT = {
    "entity": {"type": "project", "id": "p1", "data": {"name": "Apollo", "ownerEmail": "owner@example.com"}},
    "user": {"id": "u1", "email": "actor@example.com"},
}


def chat(order, message="hello", **extra):
    return {"type": "SEND_CHAT_MESSAGE", "order": order, "config": {"message": message}, **extra}


def delay(order, seconds, **extra):
    return {"type": "DELAY", "order": order, "config": {"seconds": seconds}, **extra}


@pytest.mark.unit
class TestOrdering:
    def test_sort_is_stable(self):
        actions = sort_actions([chat(2, "b"), chat(1, "a1"), chat(1, "a2")])
        assert [a.config["message"] for a in actions] == ["a1", "a2", "b"]

    async def test_runs_in_order(self, executor, notifications):
        results = await executor.execute_actions([chat(3, "third"), chat(1, "first"), chat(2, "second")], CONTEXT)
        assert [r.order for r in results] == [1, 2, 3]
        assert [content["message"] for _, content in notifications.sent_on(NotificationChannel.CHAT)] == [
            "first", "second", "third",
        ]
        assert all(r.status == ActionStatus.SUCCESS for r in results)

    async def test_records_timing(self, executor):
        [result] = await executor.execute_actions([delay(1, 0.01)], CONTEXT)
        assert result.completed_at >= result.started_at
        assert result.duration_ms >= 0


@pytest.mark.unit
class TestFailureHandling:
    async def test_failure_stops_batch(self, executor, notifications):
        notifications.fail(NotificationChannel.EMAIL)
        results = await executor.execute_actions([
            {"type": "SEND_EMAIL", "order": 1, "config": {"to": "a@example.com", "subject": "s", "body": "b"}},
            chat(2),
        ], CONTEXT)
        assert len(results) == 1
        assert results[0].status == ActionStatus.FAILED
        assert "Email send failed" in results[0].error["message"]
        assert results[0].error["type"] == "DeliveryError"

    async def test_continue_on_error(self, executor, notifications):
        notifications.fail(NotificationChannel.EMAIL)
        results = await executor.execute_actions([
            {
                "type": "SEND_EMAIL", "order": 1, "continueOnError": True,
                "config": {"to": "a@example.com", "subject": "s", "body": "b"},
            },
            chat(2),
        ], CONTEXT)
        assert [r.status for r in results] == [ActionStatus.FAILED, ActionStatus.SUCCESS]

    async def test_unknown_type_is_a_failed_result(self, executor):
        results = await executor.execute_actions([{"type": "TELEPORT", "order": 1, "config": {}}, chat(2)], CONTEXT)
        assert len(results) == 1
        assert results[0].error == {"message": "Unsupported action type: TELEPORT", "type": "UnsupportedActionType"}


@pytest.mark.unit
class TestTimeouts:
    async def test_timeout_stops_batch(self, executor):
        results = await executor.execute_actions([
            chat(1),
            delay(2, 1, timeoutSeconds=0.05),
            chat(3),
        ], CONTEXT)
        assert [r.status for r in results] == [ActionStatus.SUCCESS, ActionStatus.FAILED]
        assert results[1].error["message"] == "Action timeout"
        assert results[1].error["timeoutSeconds"] == 0.05

    async def test_timeout_with_continue_on_error(self, executor):
        results = await executor.execute_actions([
            chat(1),
            delay(2, 1, timeoutSeconds=0.05, continueOnError=True),
            chat(3),
        ], CONTEXT)
        assert [r.status for r in results] == [ActionStatus.SUCCESS, ActionStatus.FAILED, ActionStatus.SUCCESS]

    def test_timeout_resolution_order(self, executor):
        action = ActionDeclaration.from_dict(delay(1, 0, timeoutSeconds=7))
        assert executor.resolve_timeout(action, 30) == 7
        bare = ActionDeclaration.from_dict(delay(1, 0))
        assert executor.resolve_timeout(bare, 30) == 30
        assert executor.resolve_timeout(bare, 0) == executor.default_timeout
        assert executor.resolve_timeout(bare) == executor.default_timeout

    async def test_workflow_timeout_applies(self, executor):
        workflow = WorkflowDefinition(id="wf", timeout_seconds=0.05)
        [result] = await executor.execute_actions([delay(1, 1)], CONTEXT, workflow)
        assert result.error["message"] == "Action timeout"


@pytest.mark.unit
class TestTemplates:
    async def test_config_is_templated(self, executor, notifications):
        await executor.execute_actions([chat(1, "Project {{entity.data.name}} by {{user.email}}")], CONTEXT)
        assert notifications.sent_on(NotificationChannel.CHAT)[0][1]["message"] == "Project Apollo by actor@example.com"

    async def test_strict_unresolved_placeholder_fails(self, executor, notifications):
        [result] = await executor.execute_actions([chat(1, "Hi {{entity.data.missing}}")], CONTEXT)
        assert result.status == ActionStatus.FAILED
        assert result.error["type"] == "TemplateResolutionError"
        assert result.error["placeholders"] == ["entity.data.missing"]
        assert notifications.sent == []

    async def test_lenient_leaves_placeholder(self, registry, notifications):
        lenient = ActionExecutor(registry, strict_templates=False)
        [result] = await lenient.execute_actions([chat(1, "Hi {{entity.data.missing}}")], CONTEXT)
        assert result.status == ActionStatus.SUCCESS
        assert notifications.sent_on(NotificationChannel.CHAT)[0][1]["message"] == "Hi {{entity.data.missing}}"


class FlakyChat(BaseAction):
    """Fails ``failures`` times with a transient error, then succeeds."""

    action_type = ActionType.SEND_CHAT_MESSAGE
    display_name = "Flaky Chat"
    failures = 2
    error = ConnectionError
    message = "connection reset"

    def __init__(self, deps):
        super().__init__(deps)
        self.calls = 0

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(self.message)
        return {"sent": True, "calls": self.calls}


@pytest.fixture
def flaky_registry(domain, notifications, settings):
    handlers = [h for h in BUILTIN_ACTIONS if h.action_type != ActionType.SEND_CHAT_MESSAGE] + [FlakyChat]
    deps = ActionDependencies(domain=domain, notifications=notifications, settings=settings)
    return ActionRegistry(deps, handlers=handlers)


@pytest.mark.unit
class TestPerActionRetry:
    async def test_retry_until_success(self, flaky_registry):
        executor = ActionExecutor(flaky_registry)
        [result] = await executor.execute_actions([
            chat(1, retryOnError=True, retry={"policy": "fixed", "max_retries": 3, "base_delay": 0, "jitter": False}),
        ], CONTEXT)
        assert result.status == ActionStatus.SUCCESS
        assert result.attempts == 3
        assert result.result == {"sent": True, "calls": 3}

    async def test_without_retry_flag_fails_once(self, flaky_registry):
        executor = ActionExecutor(flaky_registry)
        [result] = await executor.execute_actions([chat(1)], CONTEXT)
        assert result.status == ActionStatus.FAILED
        assert result.attempts == 1

    async def test_budget_exhausted(self, flaky_registry):
        executor = ActionExecutor(flaky_registry)
        [result] = await executor.execute_actions([
            chat(1, retryOnError=True, retry={"policy": "fixed", "max_retries": 1, "base_delay": 0}),
        ], CONTEXT)
        assert result.status == ActionStatus.FAILED
        assert result.attempts == 2

    async def test_validation_errors_not_retried(self, flaky_registry):
        handler = flaky_registry.get("SEND_CHAT_MESSAGE")
        handler.error = ValidationError
        executor = ActionExecutor(flaky_registry)
        [result] = await executor.execute_actions([
            chat(1, retryOnError=True, retry={"policy": "fixed", "max_retries": 3, "base_delay": 0}),
        ], CONTEXT)
        assert result.status == ActionStatus.FAILED
        assert result.attempts == 1

    async def test_plain_action_error_not_transient(self, flaky_registry):
        handler = flaky_registry.get("SEND_CHAT_MESSAGE")
        handler.error = ActionError
        handler.message = "malformed channel"
        executor = ActionExecutor(flaky_registry)
        [result] = await executor.execute_actions([
            chat(1, retryOnError=True, retry={"policy": "fixed", "max_retries": 3, "base_delay": 0}),
        ], CONTEXT)
        assert result.attempts == 1
