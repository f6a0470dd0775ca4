"""Outbound webhook and delay actions."""

import asyncio
from typing import Any, Mapping

import httpx

from actions.base_action import BaseAction
from core.constants import ActionType
from core.exceptions import ActionError, DeliveryError
from core.utils import to_number
from notifications.channels import NotificationChannel


class WebhookAction(BaseAction):
    """Call an HTTP endpoint.

    Any HTTP response counts as success; the status code, reason phrase
    and decoded body are returned so later steps can judge them.

    Config:
        url: target URL (required)
        method: HTTP method (default POST)
        headers: optional header map
        body: optional JSON body (or raw string)
    """

    action_type = ActionType.WEBHOOK
    display_name = "Webhook"
    description = "Send an HTTP request to an external endpoint"
    required_config = ("url",)

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        self.require(config, "url")
        result = await self.deps.notifications.send(
            NotificationChannel.WEBHOOK,
            str(config["url"]),
            {
                "method": str(config.get("method") or "POST").upper(),
                "headers": config.get("headers") or {},
                "body": config.get("body"),
            },
        )
        if not result.success:
            raise DeliveryError(f"Webhook request failed: {result.error}")

        status = result.status_code or 0
        return {
            "status": status,
            "statusText": httpx.codes.get_reason_phrase(status),
            "data": result.response,
        }


class DelayAction(BaseAction):
    """Pause the action stream.

    Config:
        seconds: delay in seconds
        delay: delay in milliseconds (used when ``seconds`` is absent, default 1000)
    """

    action_type = ActionType.DELAY
    display_name = "Delay"
    description = "Wait before running the next action"

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        if config.get("seconds") is not None:
            seconds = to_number(config["seconds"])
        else:
            millis = to_number(config.get("delay", 1000))
            seconds = millis / 1000 if millis is not None else None
        if seconds is None or seconds < 0:
            raise ActionError("DELAY requires a non-negative duration")

        await asyncio.sleep(seconds)
        return {"delayedSeconds": seconds}


HTTP_ACTIONS = [
    WebhookAction,
    DelayAction,
]
