"""Tests for delivery channels, the notification manager and recipient parsing."""

import json
import smtplib

import httpx
import pytest

from app.config import Settings
from notifications.channels import (
    ChatChannel,
    EmailChannel,
    NotificationChannel,
    SmsChannel,
    WebhookChannel,
    validate_url_safety,
)
from notifications.formatting import extract_emails, format_phone_number
from notifications.manager import NotificationManager, create_notification_manager


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.body, (dict, list)):
            return httpx.Response(self.status_code, json=self.body)
        return httpx.Response(self.status_code, text=self.body or "")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


# ─── Webhook ───

@pytest.mark.unit
class TestWebhookChannel:
    async def test_json_body_and_status(self):
        recorder = Recorder(201, {"id": 7})
        channel = WebhookChannel({}, transport=recorder.transport)

        result = await channel.send(
            "https://hooks.example.com/in",
            {"method": "put", "headers": {"X-Token": "abc"}, "body": {"deal": 42}},
        )

        assert result.success is True
        assert result.status_code == 201
        assert result.response == {"id": 7}
        request = recorder.requests[0]
        assert request.method == "PUT"
        assert request.headers["X-Token"] == "abc"
        assert json.loads(request.content) == {"deal": 42}

    async def test_http_error_status_is_still_delivered(self):
        recorder = Recorder(500, "boom")
        channel = WebhookChannel({}, transport=recorder.transport)
        result = await channel.send("https://hooks.example.com/in", {})
        assert result.success is True
        assert result.status_code == 500
        assert result.response == "boom"

    async def test_transport_error_is_a_failure(self):
        channel = WebhookChannel({}, transport=httpx.MockTransport(refuse))
        result = await channel.send("https://hooks.example.com/in", {})
        assert result.success is False
        assert result.error.startswith("ConnectError")

    async def test_private_hosts_blocked(self):
        recorder = Recorder()
        channel = WebhookChannel({}, transport=recorder.transport)
        result = await channel.send("http://127.0.0.1:8080/admin", {})
        assert result.success is False
        assert recorder.requests == []

    async def test_private_hosts_allowed_when_configured(self):
        recorder = Recorder()
        channel = WebhookChannel({"allow_private_hosts": True}, transport=recorder.transport)
        assert (await channel.send("http://127.0.0.1:8080/hook", {})).success is True

    @pytest.mark.parametrize("url", [
        "ftp://example.com/file",
        "http://localhost/x",
        "http://10.0.0.5/x",
        "http://[::1]/x",
        "https://example.com:6379/",
        "https:///nohost",
    ])
    def test_unsafe_urls(self, url):
        with pytest.raises(ValueError):
            validate_url_safety(url)

    def test_public_url_is_safe(self):
        validate_url_safety("https://api.example.com/v1/hooks")


# ─── Chat ───

@pytest.mark.unit
class TestChatChannel:
    async def test_incoming_webhook(self):
        recorder = Recorder(200, "ok")
        channel = ChatChannel({"webhook_url": "https://hooks.slack.com/services/T/B/X"}, transport=recorder.transport)

        result = await channel.send(None, {"message": "deploy done"})

        assert result.success is True
        assert result.recipient == "default"
        assert json.loads(recorder.requests[0].content) == {"text": "deploy done"}

    async def test_bot_token_posts_to_channel(self):
        recorder = Recorder(200, {"ok": True, "channel": "C123", "ts": "1700000000.0001"})
        channel = ChatChannel({"bot_token": "xoxb-1"}, transport=recorder.transport)

        result = await channel.send("#ops", {"message": "hi"})

        assert result.success is True
        assert result.recipient == "C123"
        assert result.provider_message_id == "1700000000.0001"
        request = recorder.requests[0]
        assert request.headers["Authorization"] == "Bearer xoxb-1"
        assert json.loads(request.content)["channel"] == "#ops"

    async def test_slack_api_error(self):
        recorder = Recorder(200, {"ok": False, "error": "channel_not_found"})
        channel = ChatChannel({"bot_token": "xoxb-1"}, transport=recorder.transport)
        result = await channel.send("#nope", {"message": "hi"})
        assert result.success is False
        assert result.error == "Slack API error: channel_not_found"

    async def test_webhook_http_error(self):
        recorder = Recorder(404, "no_service")
        channel = ChatChannel({"webhook_url": "https://hooks.slack.com/x"}, transport=recorder.transport)
        result = await channel.send(None, {"message": "hi"})
        assert result.error == "Slack webhook returned HTTP 404"

    async def test_bot_token_without_target_needs_webhook(self):
        channel = ChatChannel({"bot_token": "xoxb-1"}, transport=Recorder().transport)
        result = await channel.send(None, {"message": "hi"})
        assert result.error == "No Slack webhook URL or bot token configured"


# ─── SMS ───

TWILIO = {"account_sid": "AC1", "auth_token": "secret", "from_number": "+15550000000"}


@pytest.mark.unit
class TestSmsChannel:
    async def test_sends_form(self):
        recorder = Recorder(201, {"sid": "SM1"})
        channel = SmsChannel(TWILIO, transport=recorder.transport)

        result = await channel.send("+15551234567", {"body": "Reminder"})

        assert result.success is True
        assert result.provider_message_id == "SM1"
        request = recorder.requests[0]
        assert request.url.path == "/2010-04-01/Accounts/AC1/Messages.json"
        assert b"Body=Reminder" in request.content

    async def test_provider_error_message(self):
        recorder = Recorder(400, {"message": "Invalid 'To' Phone Number"})
        channel = SmsChannel(TWILIO, transport=recorder.transport)
        result = await channel.send("+1", {"body": "x"})
        assert result.success is False
        assert result.error == "Invalid 'To' Phone Number"
        assert result.status_code == 400

    def test_config_validation(self):
        assert SmsChannel(TWILIO).validate_config() == (True, None)
        assert SmsChannel({"account_sid": "AC1", "auth_token": "t"}).validate_config() == (False, "Missing from_number")


# ─── Email ───

@pytest.mark.unit
class TestEmailChannel:
    async def test_builds_message(self, monkeypatch):
        sent = []
        channel = EmailChannel({"smtp_host": "smtp.example.com", "from_address": "bot@example.com"})
        monkeypatch.setattr(channel, "_send_smtp", lambda from_addr, rcpts, msg: sent.append((from_addr, rcpts, msg)))

        result = await channel.send(["a@example.com", "b@example.com"], {"subject": "Hi", "body": "Line 1\nLine 2"})

        assert result.success is True
        assert result.recipient == "a@example.com, b@example.com"
        from_addr, recipients, msg = sent[0]
        assert from_addr == "bot@example.com"
        assert recipients == ["a@example.com", "b@example.com"]
        assert msg["Subject"] == "Hi"
        assert "Line 1<br>Line 2" in msg.as_string()

    async def test_smtp_failure(self, monkeypatch):
        channel = EmailChannel({"smtp_host": "smtp.example.com"})

        def fail(*args):
            raise smtplib.SMTPRecipientsRefused({})

        monkeypatch.setattr(channel, "_send_smtp", fail)
        result = await channel.send("a@example.com", {"subject": "s", "body": "b"})
        assert result.success is False

    async def test_no_recipients(self):
        result = await EmailChannel({"smtp_host": "h"}).send([], {"subject": "s"})
        assert result.error == "No recipients"


# ─── Manager ───

@pytest.mark.unit
class TestNotificationManager:
    async def test_unconfigured_channel(self):
        manager = NotificationManager()
        result = await manager.send(NotificationChannel.SMS, "+15551234567", {"body": "x"})
        assert result.success is False
        assert result.error == "Channel not configured: sms"

    def test_configure_from_settings(self):
        settings = Settings(SLACK_WEBHOOK_URL="https://hooks.slack.com/x", TWILIO_ACCOUNT_SID="AC1")
        manager = create_notification_manager(settings)
        assert manager.is_configured(NotificationChannel.CHAT)
        assert manager.is_configured(NotificationChannel.WEBHOOK)
        assert not manager.is_configured(NotificationChannel.SMS)
        assert not manager.is_configured(NotificationChannel.EMAIL)
        assert manager.get_status() == {"channels": ["chat", "webhook"]}

    def test_invalid_channel_config_skipped(self):
        manager = NotificationManager()
        manager.configure_channels({"sms": {"account_sid": "AC1"}, "pager": {}})
        assert manager.get_status() == {"channels": []}

    async def test_routes_through_transport(self):
        recorder = Recorder(200, {"ok": True})
        manager = NotificationManager(transport=recorder.transport)
        manager.configure_channels({"webhook": {}})
        result = await manager.send(NotificationChannel.WEBHOOK, "https://api.example.com/x", {"body": {"a": 1}})
        assert result.success is True
        assert len(recorder.requests) == 1


# ─── Recipient parsing ───

@pytest.mark.unit
class TestFormatting:
    def test_extract_emails(self):
        assert extract_emails("a@example.com; B@example.com, junk  a@example.com") == [
            "a@example.com", "B@example.com",
        ]
        assert extract_emails(["<c@example.com>", None, "d@example.com e@example.com"]) == [
            "c@example.com", "d@example.com", "e@example.com",
        ]
        assert extract_emails(None) == []

    @pytest.mark.parametrize("raw, expected", [
        ("(555) 123-4567", "+15551234567"),
        ("+44 20 7946 0958", "+442079460958"),
        ("0044 20 7946 0958", "+442079460958"),
        ("15551234567", "+15551234567"),
        ("123", None),
        ("", None),
        (None, None),
    ])
    def test_format_phone_number(self, raw, expected):
        assert format_phone_number(raw) == expected

    def test_custom_country_code(self):
        assert format_phone_number("(020) 794-6095", default_country_code="+44") == "+440207946095"
