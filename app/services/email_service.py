"""
services/email_service.py
-------------------------
Notification gateway: rate-limited, retried delivery of rendered emails with
graceful degradation and a persistent delivery log.

Send decision sequence (each branch writes exactly one log entry):
  1. EMAIL_ENABLED is false      → status "disabled",     failure
  2. rate window full            → status "rate_limited", failure
  3. no SMTP transport           → status "logged",       success (console mode)
  4. SMTP with retry and backoff → status "sent" or "failed"

Transport errors never leave send(); they come back as a failed SendResult.
"""

import asyncio
import random
import re
import secrets
import smtplib
import ssl
import time
from collections import deque
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from html import unescape
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import Settings
from app.core.exceptions import PersistenceError
from app.core.logging import get_logger
from app.schemas.base import utcnow_iso
from app.schemas.email import (
    ConnectionCheck,
    EmailLogEntry,
    EmailStatus,
    RateLimitStatus,
    SendResult,
    ServiceStatus,
)
from app.services.record_store import EMAIL_LOG, RecordStore

logger = get_logger(__name__)

RATE_WINDOW_SECONDS = 60.0

TRANSIENT_MESSAGE_PATTERNS = ("timeout", "connection", "rate limit", "try again")


# ── Rate limiting ─────────────────────────────────────────────────────────────

class RateLimiter:
    """
    Sliding window of send attempts, shared by the whole process.

    Attempts are counted when they are admitted, before the transport has
    delivered anything.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float = RATE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._window: Deque[float] = deque()

    def _evict(self, now: float) -> None:
        while self._window and self._window[0] <= now - self.window_seconds:
            self._window.popleft()

    def try_acquire(self) -> bool:
        now = self._clock()
        self._evict(now)
        if len(self._window) >= self.limit:
            return False
        self._window.append(now)
        return True

    def status(self) -> RateLimitStatus:
        now = self._clock()
        self._evict(now)
        sent = len(self._window)
        reset_ms = 0
        if self._window:
            reset_ms = max(0, int((self.window_seconds - (now - self._window[0])) * 1000))
        return RateLimitStatus(
            sent=sent,
            limit=self.limit,
            remaining=max(0, self.limit - sent),
            reset_ms=reset_ms,
        )

    def reset(self) -> None:
        self._window.clear()


# ── Retry policy ──────────────────────────────────────────────────────────────

def compute_backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    multiplier: float = 2.0,
    jitter_fraction: float = 0.5,
    rng: Callable[[], float] = random.random,
) -> float:
    """
    Exponential backoff with bounded jitter.

        min(base * multiplier**attempt + rng() * jitter_fraction * base, max_delay)

    With rng() in [0, 1) the result never decreases as `attempt` grows.
    """
    delay = base_delay * (multiplier ** attempt) + rng() * jitter_fraction * base_delay
    return min(delay, max_delay)


def is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, (
        ConnectionError,
        TimeoutError,
        smtplib.SMTPServerDisconnected,
        smtplib.SMTPConnectError,
    )):
        return True

    code = getattr(exc, "smtp_code", None)
    if isinstance(code, int) and 400 <= code < 500:
        return True

    message = str(exc).lower()
    return any(pattern in message for pattern in TRANSIENT_MESSAGE_PATTERNS)


# ── Content helpers ───────────────────────────────────────────────────────────

_HTML_RULES = (
    (re.compile(r"<(style|head)[^>]*>.*?</\1>", re.I | re.S), ""),
    (re.compile(r"<br\s*/?>", re.I), "\n"),
    (re.compile(r"</p>", re.I), "\n\n"),
    (re.compile(r"</div>", re.I), "\n"),
    (re.compile(r"</li>", re.I), "\n"),
    (re.compile(r"<li[^>]*>", re.I), "  - "),
    (re.compile(r'<a[^>]*href="([^"]*)"[^>]*>([^<]*)</a>', re.I), r"\2 (\1)"),
    (re.compile(r"<[^>]+>"), ""),
)


def html_to_plain_text(html: Optional[str]) -> str:
    if not html:
        return ""
    text = html
    for pattern, replacement in _HTML_RULES:
        text = pattern.sub(replacement, text)
    text = unescape(text).replace("\xa0", " ")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


# ── SMTP transport ────────────────────────────────────────────────────────────

class SmtpTransport:
    """smtplib delivery, run in a worker thread so the event loop never blocks."""

    def __init__(self, settings: Settings) -> None:
        self.host = settings.SMTP_HOST
        self.port = settings.SMTP_PORT
        self.username = settings.SMTP_USER
        self.password = settings.SMTP_PASSWORD
        self.secure = settings.SMTP_SECURE
        self.timeout = settings.SMTP_TIMEOUT_SECONDS

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.secure:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            if not self.secure:
                server.starttls(context=context)
            server.login(self.username, self.password)
        except BaseException:
            server.close()
            raise
        return server

    def _send_sync(self, message: EmailMessage) -> str:
        with self._connect() as server:
            server.send_message(message)
        return message["Message-ID"]

    def _verify_sync(self) -> None:
        with self._connect() as server:
            server.noop()

    async def send(self, message: EmailMessage) -> str:
        if not message["Message-ID"]:
            message["Message-ID"] = make_msgid()
        return await asyncio.to_thread(self._send_sync, message)

    async def verify(self) -> None:
        await asyncio.to_thread(self._verify_sync)


# ── Delivery log ──────────────────────────────────────────────────────────────

class EmailLog:
    """
    Append-only, capped log of every send attempt.

    A failed write is logged and dropped: auditing never blocks the send it
    records.
    """

    def __init__(self, store: RecordStore, max_entries: int = 1000) -> None:
        self._store = store
        self.max_entries = max_entries

    async def append(self, entry: EmailLogEntry) -> None:
        try:
            async with self._store.lock(EMAIL_LOG):
                entries = await self._store.load(EMAIL_LOG, [])
                entries.append(entry.to_record())
                if len(entries) > self.max_entries:
                    entries = entries[-self.max_entries:]
                saved = await self._store.save(EMAIL_LOG, entries)
        except SQLAlchemyError as exc:
            logger.error("Failed to write email log", error=str(exc), template=entry.template_name)
            return
        if not saved:
            logger.error("Failed to write email log", template=entry.template_name)

    async def entries(
        self,
        limit: int = 50,
        status: Optional[str] = None,
        template_name: Optional[str] = None,
    ) -> List[EmailLogEntry]:
        """Newest first, optionally filtered by status and template."""
        try:
            records = await self._store.load(EMAIL_LOG, [])
        except SQLAlchemyError as exc:
            raise PersistenceError("Email log is unavailable") from exc

        result: List[EmailLogEntry] = []
        for record in reversed(records):
            if status and record.get("status") != status:
                continue
            if template_name and record.get("templateName") != template_name:
                continue
            result.append(EmailLogEntry.model_validate(record))
            if len(result) >= limit:
                break
        return result


# ── Gateway ───────────────────────────────────────────────────────────────────

class NotificationGateway:

    def __init__(
        self,
        settings: Settings,
        store: RecordStore,
        transport: Optional[Any] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._settings = settings
        self._sleep = sleep
        self._rng = rng
        if transport is None and settings.smtp_configured:
            transport = SmtpTransport(settings)
        self.transport = transport
        self.rate_limiter = RateLimiter(settings.EMAIL_RATE_LIMIT, clock=clock)
        self.log = EmailLog(store, settings.EMAIL_LOG_MAX_ENTRIES)

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
        template_name: str = "unknown",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SendResult:
        metadata = metadata or {}

        async def record(status: EmailStatus, **extra) -> None:
            await self.log.append(EmailLogEntry(
                id=f"email_{int(time.time() * 1000)}_{secrets.token_hex(4)}",
                to=to,
                subject=subject,
                template_name=template_name,
                status=status,
                metadata=metadata,
                timestamp=utcnow_iso(),
                **extra,
            ))

        if not self._settings.EMAIL_ENABLED:
            logger.info("Email disabled, not sending", to=to, subject=subject, template=template_name)
            await record(EmailStatus.disabled)
            return SendResult(success=False, reason="disabled")

        if not self.rate_limiter.try_acquire():
            snapshot = self.rate_limiter.status()
            logger.warning("Email rate limited", sent=snapshot.sent, limit=snapshot.limit, to=to)
            await record(EmailStatus.rate_limited)
            return SendResult(success=False, reason="rate_limited", rate_limit_status=snapshot)

        if self.transport is None:
            logger.info("Email logged (console mode)", to=to, subject=subject, template=template_name)
            await record(EmailStatus.logged)
            return SendResult(success=True, mode="console")

        message = self._build_message(to, subject, html, text or html_to_plain_text(html))
        try:
            message_id = await self._send_with_retry(message)
        except Exception as exc:
            logger.error("Email send failed", to=to, subject=subject, template=template_name, error=str(exc))
            await record(EmailStatus.failed, error=str(exc))
            return SendResult(success=False, reason="send_failed", error=str(exc))

        logger.info("Email sent", to=to, subject=subject, template=template_name, message_id=message_id)
        await record(EmailStatus.sent, message_id=message_id)
        return SendResult(success=True, mode="smtp", message_id=message_id)

    async def _send_with_retry(self, message: EmailMessage) -> str:
        max_retries = self._settings.EMAIL_MAX_RETRIES
        attempt = 0
        while True:
            try:
                return await self.transport.send(message)
            except Exception as exc:
                if attempt >= max_retries or not is_retryable_error(exc):
                    raise
                delay_ms = compute_backoff_delay(
                    attempt,
                    self._settings.EMAIL_RETRY_BASE_DELAY_MS,
                    self._settings.EMAIL_RETRY_MAX_DELAY_MS,
                    rng=self._rng,
                )
                logger.warning(
                    "Retrying email send",
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay_ms=round(delay_ms),
                    error=str(exc),
                )
                await self._sleep(delay_ms / 1000)
                attempt += 1

    def _build_message(self, to: str, subject: str, html: str, text: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = formataddr((self._settings.sender_name, self._settings.sender_address))
        message["To"] = to
        message["Message-ID"] = make_msgid()
        message.set_content(text)
        message.add_alternative(html, subtype="html")
        return message

    def status(self) -> ServiceStatus:
        s = self._settings
        return ServiceStatus(
            enabled=s.EMAIL_ENABLED,
            smtp_configured=s.smtp_configured,
            smtp_ready=self.transport is not None,
            smtp_host=f"{s.SMTP_HOST}:{s.SMTP_PORT}" if s.SMTP_HOST else None,
            from_email=s.sender_address,
            rate_limit=self.rate_limiter.status(),
        )

    async def verify_connection(self) -> ConnectionCheck:
        if self.transport is None:
            return ConnectionCheck(connected=False, reason="SMTP not configured")
        try:
            await self.transport.verify()
        except Exception as exc:
            logger.warning("SMTP verification failed", error=str(exc))
            return ConnectionCheck(connected=False, reason=str(exc))
        return ConnectionCheck(connected=True)

    def reset(self) -> None:
        self.rate_limiter.reset()
