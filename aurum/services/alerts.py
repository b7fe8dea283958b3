"""Alert formatting and delivery for threshold breaches."""

from __future__ import annotations

import asyncio
import logging
import os
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Mapping, Optional, Protocol

from prometheus_client import Counter

from ..errors import NotificationFailure
from ..models import DerivedPricePayload, Status


logger = logging.getLogger(__name__)

BELOW_LOWER_THRESHOLD = "below lower threshold"
ABOVE_UPPER_THRESHOLD = "above upper threshold"

DEFAULT_SENDER = "alerts@aurum.local"
DEFAULT_SMTP_PORT = 587
IMPLICIT_TLS_PORT = 465

ALERTS_DISPATCHED = Counter(
    "aurum_alerts_total",
    "Breach alerts handled by the dispatcher",
    ["outcome"],
)


def breach_direction(status: Status) -> Optional[str]:
    if status == Status.BELOW_RANGE:
        return BELOW_LOWER_THRESHOLD
    if status == Status.ABOVE_RANGE:
        return ABOVE_UPPER_THRESHOLD
    return None


def format_alert(payload: DerivedPricePayload, direction: str) -> tuple[str, str]:
    """Return the subject line and plain-text body for an alert."""

    subject = f"Gold price alert: {direction}"
    body = (
        "Gold price alert\n\n"
        f"Current price: {payload.current_price} {payload.currency.value} per {payload.unit.value}\n"
        f"Threshold breached: {direction}\n"
        f"Lower threshold: {payload.lower_threshold}\n"
        f"Upper threshold: {payload.upper_threshold}\n"
        f"Timestamp: {payload.timestamp.isoformat()}"
    )
    return subject, body


class AlertTransport(Protocol):
    async def send(self, to: str, subject: str, body: str) -> None:
        ...


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int
    user: str
    password: str
    sender: str = DEFAULT_SENDER
    timeout: float = 10.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SmtpSettings | None:
        """Read ``SMTP_*`` variables; ``None`` when the transport is not configured."""

        env = os.environ if environ is None else environ
        host = env.get("SMTP_HOST")
        user = env.get("SMTP_USER")
        password = env.get("SMTP_PASS")
        if not host or not user or not password:
            return None
        try:
            port = int(env.get("SMTP_PORT") or DEFAULT_SMTP_PORT)
        except ValueError:
            logger.warning("Invalid SMTP_PORT %r, using %s", env.get("SMTP_PORT"), DEFAULT_SMTP_PORT)
            port = DEFAULT_SMTP_PORT
        return cls(
            host=host,
            port=port,
            user=user,
            password=password,
            sender=env.get("SMTP_FROM") or DEFAULT_SENDER,
        )


class SmtpTransport:
    """Send plain-text email over SMTP from a worker thread."""

    def __init__(self, settings: SmtpSettings) -> None:
        self._settings = settings

    def _build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._settings.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        return message

    def _deliver(self, message: EmailMessage) -> None:
        settings = self._settings
        if settings.port == IMPLICIT_TLS_PORT:
            with smtplib.SMTP_SSL(settings.host, settings.port, timeout=settings.timeout) as server:
                server.login(settings.user, settings.password)
                server.send_message(message)
            return
        with smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout) as server:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls()
                server.ehlo()
            server.login(settings.user, settings.password)
            server.send_message(message)

    async def send(self, to: str, subject: str, body: str) -> None:
        message = self._build_message(to, subject, body)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationFailure(f"SMTP delivery to {to} failed: {exc}") from exc


def build_transport_from_env(environ: Mapping[str, str] | None = None) -> Optional[SmtpTransport]:
    settings = SmtpSettings.from_env(environ)
    if settings is None:
        return None
    return SmtpTransport(settings)


class AlertDispatcher:
    """Send one notification per fired alert; delivery problems never propagate."""

    def __init__(self, transport: Optional[AlertTransport] = None) -> None:
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self._transport is not None

    async def dispatch(self, identity: str, payload: DerivedPricePayload, direction: str) -> bool:
        """Return True when the message was handed to the transport successfully."""

        if self._transport is None:
            logger.warning("Email transport not configured. Skipping alert for %s (%s).", identity, direction)
            ALERTS_DISPATCHED.labels(outcome="skipped").inc()
            return False

        subject, body = format_alert(payload, direction)
        try:
            await self._transport.send(identity, subject, body)
        except Exception:
            logger.exception("Failed to send alert email to %s", identity)
            ALERTS_DISPATCHED.labels(outcome="failed").inc()
            return False

        logger.info("Alert sent to %s: %s at %s", identity, direction, payload.current_price)
        ALERTS_DISPATCHED.labels(outcome="sent").inc()
        return True
