"""Notification action handlers: email, chat, SMS and in-app notifications."""

from typing import Any, Mapping

from actions.base_action import BaseAction, first_present
from core.constants import ActionType, NotificationType
from core.exceptions import ActionError, DeliveryError
from core.utils import utc_now
from notifications.channels import NotificationChannel
from notifications.formatting import extract_emails, format_phone_number
from workflow.templating import render_text


class SendEmailAction(BaseAction):
    """Send an email to one or more recipients.

    Config:
        to: address, comma/semicolon separated list, or list of addresses
        subject: subject line
        body: plain text or HTML body
        cc: optional extra recipients
    """

    action_type = ActionType.SEND_EMAIL
    display_name = "Send Email"
    description = "Send an email through the configured SMTP server"
    required_config = ("to", "subject", "body")

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        recipients = extract_emails(config.get("to"))
        recipients += [e for e in extract_emails(config.get("cc")) if e not in recipients]
        if not recipients:
            raise ActionError("No valid email addresses provided")

        subject = render_text(config.get("subject"))
        body = render_text(config.get("body"))
        result = await self.deps.notifications.send(
            NotificationChannel.EMAIL,
            recipients,
            {"subject": subject, "body": body, "html": config.get("html")},
        )
        if not result.success:
            raise DeliveryError(f"Email send failed: {result.error}")

        return {
            "sent": True,
            "to": recipients,
            "subject": subject,
            "messageId": result.provider_message_id,
            "timestamp": utc_now().isoformat(),
        }


class SendChatMessageAction(BaseAction):
    """Post a message to a chat channel.

    Config:
        message: message text
        channel: optional channel id or name (required for bot-token delivery)
    """

    action_type = ActionType.SEND_CHAT_MESSAGE
    display_name = "Send Chat Message"
    description = "Post a message to Slack"
    required_config = ("message",)

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        self.require(config, "message")
        channel = config.get("channel")
        result = await self.deps.notifications.send(
            NotificationChannel.CHAT,
            channel,
            {"message": render_text(config["message"]), "blocks": config.get("blocks")},
        )
        if not result.success:
            raise DeliveryError(f"Chat message failed: {result.error}")

        return {
            "sent": True,
            "channel": result.recipient,
            "messageId": result.provider_message_id,
            "timestamp": utc_now().isoformat(),
        }


class SendSmsAction(BaseAction):
    """Send a text message.

    Config:
        to: phone number or list of numbers (normalised to E.164)
        body: message text
    """

    action_type = ActionType.SEND_SMS
    display_name = "Send SMS"
    description = "Send an SMS through Twilio"
    required_config = ("to", "body")

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        self.require(config, "to", "body")
        raw = config["to"] if isinstance(config["to"], list) else [config["to"]]
        country_code = self.deps.settings.SMS_DEFAULT_COUNTRY_CODE
        numbers = []
        for value in raw:
            number = format_phone_number(render_text(value), country_code)
            if number and number not in numbers:
                numbers.append(number)
        if not numbers:
            raise ActionError("No valid phone numbers provided")

        body = render_text(config["body"])
        message_ids = []
        for number in numbers:
            result = await self.deps.notifications.send(
                NotificationChannel.SMS, number, {"body": body}
            )
            if not result.success:
                raise DeliveryError(f"SMS send failed: {result.error}")
            message_ids.append(result.provider_message_id)

        return {
            "sent": True,
            "to": numbers,
            "messageIds": message_ids,
            "timestamp": utc_now().isoformat(),
        }


class CreateNotificationAction(BaseAction):
    """Create one in-app notification per user.

    Config:
        userId: a user id or a list of ids (``userIds`` also accepted)
        title, message: notification text
        type: INFO, SUCCESS, WARNING or ERROR (default INFO)
        link: optional URL
    """

    action_type = ActionType.CREATE_NOTIFICATION
    display_name = "Create Notification"
    description = "Create in-app notifications"
    required_config = ("userId", "title")

    async def execute(self, config: dict[str, Any], context: Mapping[str, Any]) -> Any:
        user_ids = first_present(config, "userId", "userIds", default=[])
        if not isinstance(user_ids, list):
            user_ids = [user_ids]
        user_ids = [str(uid) for uid in user_ids if uid not in (None, "")]
        if not user_ids:
            raise ActionError("No notification recipients provided")

        notification_type = str(config.get("type") or NotificationType.INFO.value).upper()
        if notification_type not in NotificationType.__members__:
            notification_type = NotificationType.INFO.value

        created = []
        for user_id in user_ids:
            mutation = await self.deps.domain.create_notification(
                user_id=user_id,
                title=render_text(config.get("title")),
                message=render_text(config.get("message")),
                type=notification_type,
                link=config.get("link"),
            )
            created.append(mutation.entity_id)

        return {"created": len(created), "notificationIds": created}


NOTIFICATION_ACTIONS = [
    SendEmailAction,
    SendChatMessageAction,
    SendSmsAction,
    CreateNotificationAction,
]
