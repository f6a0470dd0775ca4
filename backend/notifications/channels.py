"""Delivery channel implementations.

Each channel handles delivery for one transport (email, chat, SMS,
generic webhook) behind the same contract:

    await channel.send(target, content) -> DeliveryResult

Channels never retry; retry belongs to the action executor and engine.
Transport failures are reported as ``success=False`` rather than raised.
"""

import asyncio
import ipaddress
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from enum import Enum
from html import escape
from typing import Any, Optional, Union
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)


# ─── Data Types ────────────────────────────────────────────────

class NotificationChannel(str, Enum):
    EMAIL = "email"
    CHAT = "chat"
    SMS = "sms"
    WEBHOOK = "webhook"


@dataclass
class DeliveryResult:
    """Result of a delivery attempt."""
    success: bool
    channel: NotificationChannel
    recipient: str
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    response: Any = None
    delivered_at: Optional[str] = field(default=None)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _decode_body(response: httpx.Response) -> Any:
    """JSON when the body parses as JSON, text otherwise."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


# ─── Base Channel ──────────────────────────────────────────────

class BaseChannel(ABC):
    """Abstract base for delivery channels."""

    channel_type: NotificationChannel

    def __init__(self, config: Optional[dict] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or {}
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def _failure(self, recipient: str, error: str, **kwargs) -> DeliveryResult:
        logger.warning(f"{self.channel_type.value} delivery to {recipient} failed: {error}")
        return DeliveryResult(
            success=False,
            channel=self.channel_type,
            recipient=recipient,
            error=error,
            **kwargs,
        )

    @abstractmethod
    async def send(self, target: Any, content: dict[str, Any]) -> DeliveryResult:
        """Deliver ``content`` to ``target``."""
        ...

    @abstractmethod
    def validate_config(self) -> tuple[bool, Optional[str]]:
        """Check channel-specific configuration."""
        ...


# ─── Email Channel ─────────────────────────────────────────────

class EmailChannel(BaseChannel):
    """Send email over SMTP.

    Config:
        smtp_host, smtp_port, smtp_user, smtp_password,
        from_address, use_tls

    Content:
        subject, body, html (optional; defaults to ``body`` when it looks like HTML)
    """

    channel_type = NotificationChannel.EMAIL

    async def send(self, target: Union[str, list[str]], content: dict[str, Any]) -> DeliveryResult:
        recipients = [target] if isinstance(target, str) else list(target)
        recipient_label = ", ".join(recipients)
        if not recipients:
            return self._failure("", "No recipients")

        from_addr = self.config.get("from_address", "automation@localhost")
        subject = content.get("subject", "")
        body = content.get("body", "")
        html = content.get("html")
        if html is None and "<" in body:
            html = body

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = from_addr
        msg["To"] = recipient_label
        message_id = make_msgid()
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(body, "plain"))
        if html:
            msg.attach(MIMEText(html, "html"))
        else:
            msg.attach(MIMEText(f"<p>{escape(body).replace(chr(10), '<br>')}</p>", "html"))

        try:
            # smtplib is blocking
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, lambda: self._send_smtp(from_addr, recipients, msg))
        except (smtplib.SMTPException, OSError) as e:
            return self._failure(recipient_label, str(e))

        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient=recipient_label,
            provider_message_id=message_id,
            delivered_at=_now_iso(),
        )

    def _send_smtp(self, from_addr: str, recipients: list[str], msg: MIMEMultipart) -> None:
        """Synchronous SMTP send."""
        host = self.config.get("smtp_host", "localhost")
        port = self.config.get("smtp_port", 587)
        user = self.config.get("smtp_user", "")
        password = self.config.get("smtp_password", "")
        with smtplib.SMTP(host, port) as server:
            if self.config.get("use_tls", True):
                server.starttls()
            if user and password:
                server.login(user, password)
            server.sendmail(from_addr, recipients, msg.as_string())

    def validate_config(self) -> tuple[bool, Optional[str]]:
        if not self.config.get("smtp_host"):
            return False, "Missing smtp_host"
        return True, None


# ─── Chat Channel ──────────────────────────────────────────────

class ChatChannel(BaseChannel):
    """Post chat messages to Slack.

    Config:
        bot_token (chat.postMessage, needs a channel target) OR
        webhook_url (incoming webhook, channel fixed by the webhook)

    Content:
        message, blocks (optional)
    """

    channel_type = NotificationChannel.CHAT

    POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"

    async def send(self, target: Optional[str], content: dict[str, Any]) -> DeliveryResult:
        text = content.get("message", "")
        payload: dict[str, Any] = {"text": text}
        if content.get("blocks"):
            payload["blocks"] = content["blocks"]

        bot_token = self.config.get("bot_token")
        webhook_url = self.config.get("webhook_url")
        recipient = target or "default"

        try:
            async with self._client(timeout=10) as client:
                if bot_token and target:
                    payload["channel"] = target
                    response = await client.post(
                        self.POST_MESSAGE_URL,
                        json=payload,
                        headers={"Authorization": f"Bearer {bot_token}"},
                    )
                    data = _decode_body(response)
                    if not isinstance(data, dict) or not data.get("ok"):
                        error = data.get("error") if isinstance(data, dict) else f"HTTP {response.status_code}"
                        return self._failure(recipient, f"Slack API error: {error}", status_code=response.status_code)
                    return DeliveryResult(
                        success=True,
                        channel=self.channel_type,
                        recipient=data.get("channel", target),
                        provider_message_id=data.get("ts"),
                        status_code=response.status_code,
                        response=data,
                        delivered_at=_now_iso(),
                    )

                if not webhook_url:
                    return self._failure(recipient, "No Slack webhook URL or bot token configured")
                response = await client.post(webhook_url, json=payload)
                if response.is_error:
                    return self._failure(
                        recipient,
                        f"Slack webhook returned HTTP {response.status_code}",
                        status_code=response.status_code,
                    )
        except httpx.HTTPError as e:
            return self._failure(recipient, str(e))

        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient=recipient,
            status_code=response.status_code,
            delivered_at=_now_iso(),
        )

    def validate_config(self) -> tuple[bool, Optional[str]]:
        if not self.config.get("webhook_url") and not self.config.get("bot_token"):
            return False, "Need either webhook_url or bot_token"
        return True, None


# ─── SMS Channel ───────────────────────────────────────────────

class SmsChannel(BaseChannel):
    """Send SMS through the Twilio Messages REST API.

    Config:
        account_sid, auth_token, from_number

    Target is an E.164 phone number; content carries ``body``.
    """

    channel_type = NotificationChannel.SMS

    API_BASE = "https://api.twilio.com/2010-04-01"

    async def send(self, target: str, content: dict[str, Any]) -> DeliveryResult:
        sid = self.config.get("account_sid", "")
        token = self.config.get("auth_token", "")
        url = f"{self.API_BASE}/Accounts/{sid}/Messages.json"
        form = {
            "To": target,
            "From": self.config.get("from_number", ""),
            "Body": content.get("body", ""),
        }

        try:
            async with self._client(timeout=15) as client:
                response = await client.post(url, data=form, auth=(sid, token))
        except httpx.HTTPError as e:
            return self._failure(target, str(e))

        data = _decode_body(response)
        if response.is_error:
            message = data.get("message") if isinstance(data, dict) else None
            return self._failure(
                target,
                message or f"Twilio returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient=target,
            provider_message_id=data.get("sid") if isinstance(data, dict) else None,
            status_code=response.status_code,
            response=data,
            delivered_at=_now_iso(),
        )

    def validate_config(self) -> tuple[bool, Optional[str]]:
        if not self.config.get("account_sid") or not self.config.get("auth_token"):
            return False, "Missing account_sid or auth_token"
        if not self.config.get("from_number"):
            return False, "Missing from_number"
        return True, None


# ─── Webhook Channel ──────────────────────────────────────────

FORBIDDEN_PORTS = (5432, 6379, 9000)


def validate_url_safety(url: str) -> None:
    """Reject URLs that would let a workflow reach internal services.

    Blocks non-HTTP(S) schemes, localhost, private/loopback/reserved IP
    literals and well-known internal ports.

    Raises:
        ValueError: If the URL is unsafe
    """
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme or '(none)'}. Only HTTP and HTTPS allowed.")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a valid hostname")
    if hostname.lower() in ("localhost", "localhost.localdomain"):
        raise ValueError("Connections to localhost are not allowed")

    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        ip = None
    if ip is not None and (ip.is_private or ip.is_loopback or ip.is_reserved or ip.is_link_local):
        raise ValueError(f"Connections to private IP {hostname} are not allowed")

    if parsed.port in FORBIDDEN_PORTS:
        raise ValueError(f"Connections to internal port {parsed.port} are not allowed")


class WebhookChannel(BaseChannel):
    """Call arbitrary HTTP endpoints.

    Any HTTP response counts as delivered; the status code and decoded
    body are handed back so the caller can judge the outcome.

    Config:
        timeout: request timeout in seconds (default 30)
        allow_private_hosts: skip the SSRF guard (tests, trusted networks)

    Content:
        method, headers, body
    """

    channel_type = NotificationChannel.WEBHOOK

    async def send(self, target: str, content: dict[str, Any]) -> DeliveryResult:
        if not target:
            return self._failure("", "No webhook URL")
        if not self.config.get("allow_private_hosts", False):
            try:
                validate_url_safety(target)
            except ValueError as e:
                return self._failure(target, str(e))

        method = str(content.get("method") or "POST").upper()
        headers = {"Content-Type": "application/json", **(content.get("headers") or {})}
        body = content.get("body")
        request_kwargs: dict[str, Any] = {"headers": headers}
        if isinstance(body, (dict, list)):
            request_kwargs["json"] = body
        elif body is not None:
            request_kwargs["content"] = str(body)

        try:
            async with self._client(timeout=self.config.get("timeout", 30)) as client:
                response = await client.request(method, target, **request_kwargs)
        except httpx.HTTPError as e:
            return self._failure(target, f"{type(e).__name__}: {e}")

        logger.info(f"Webhook {method} {target} -> HTTP {response.status_code}")
        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient=target,
            status_code=response.status_code,
            response=_decode_body(response),
            delivered_at=_now_iso(),
        )

    def validate_config(self) -> tuple[bool, Optional[str]]:
        return True, None
