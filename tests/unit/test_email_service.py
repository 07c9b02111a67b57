import smtplib
from email.message import EmailMessage

import pytest

from app.schemas.email import EmailLogEntry, EmailStatus
from app.services.email_service import (
    EmailLog,
    NotificationGateway,
    RateLimiter,
    SmtpTransport,
    compute_backoff_delay,
    html_to_plain_text,
    is_retryable_error,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def gateway(settings, container, fake_transport, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return NotificationGateway(
        settings,
        container.store,
        transport=fake_transport,
        sleep=fake_sleep,
        rng=lambda: 0.0,
    )


# ── Rate limiter ──────────────────────────────────────────────────────────────

def test_rate_limiter_admits_up_to_limit():
    clock = FakeClock()
    limiter = RateLimiter(3, clock=clock)

    assert [limiter.try_acquire() for _ in range(4)] == [True, True, True, False]
    status = limiter.status()
    assert status.sent == 3
    assert status.remaining == 0
    assert status.reset_ms == 60000


def test_rate_limiter_window_slides():
    clock = FakeClock()
    limiter = RateLimiter(2, clock=clock)
    limiter.try_acquire()
    clock.now += 30
    limiter.try_acquire()
    assert limiter.try_acquire() is False

    clock.now += 30
    assert limiter.status().sent == 1
    assert limiter.status().reset_ms == 30000
    assert limiter.try_acquire() is True


def test_rate_limiter_reset():
    limiter = RateLimiter(1, clock=FakeClock())
    limiter.try_acquire()
    limiter.reset()
    assert limiter.status().sent == 0
    assert limiter.status().reset_ms == 0


# ── Retry policy ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize("jitter", [0.0, 0.5, 0.999])
def test_backoff_is_monotonic_and_capped(jitter):
    delays = [compute_backoff_delay(a, 1000, 5000, rng=lambda: jitter) for a in range(8)]
    assert delays == sorted(delays)
    assert all(d <= 5000 for d in delays)
    assert delays[-1] == 5000


def test_backoff_without_jitter_doubles():
    assert [compute_backoff_delay(a, 1000, 60000, rng=lambda: 0.0) for a in range(3)] == [1000, 2000, 4000]


@pytest.mark.parametrize(
    "exc, retryable",
    [
        (smtplib.SMTPServerDisconnected("Connection unexpectedly closed"), True),
        (ConnectionRefusedError(111, "refused"), True),
        (TimeoutError("timed out"), True),
        (smtplib.SMTPResponseException(421, b"Service not available"), True),
        (smtplib.SMTPResponseException(550, b"Mailbox unavailable"), False),
        (smtplib.SMTPAuthenticationError(535, b"Bad credentials"), False),
        (OSError("please try again later"), True),
    ],
)
def test_is_retryable_error(exc, retryable):
    assert is_retryable_error(exc) is retryable


def test_html_to_plain_text():
    html = (
        "<html><head><style>p { color: red; }</style></head>"
        '<body><p>Hello <b>Jane</b> &amp; co</p><a href="https://x.io/j">Join</a></body></html>'
    )
    assert html_to_plain_text(html) == "Hello Jane & co\n\nJoin (https://x.io/j)"
    assert html_to_plain_text(None) == ""


# ── Gateway ───────────────────────────────────────────────────────────────────

async def test_send_via_transport(gateway, fake_transport):
    result = await gateway.send("jane@x.edu", "Hi", "<p>Hello</p>", template_name="alumniWelcome")

    assert result.success is True
    assert result.mode == "smtp"
    assert result.message_id == "<msg-1@test.local>"
    message = fake_transport.sent[0]
    assert message["To"] == "jane@x.edu"
    assert message["Subject"] == "Hi"
    assert message.get_body(preferencelist=("plain",)).get_content().strip() == "Hello"

    [entry] = await gateway.log.entries()
    assert entry.status == EmailStatus.sent
    assert entry.message_id == "<msg-1@test.local>"


async def test_transient_failure_is_retried(gateway, fake_transport, sleeps):
    fake_transport.failures = [smtplib.SMTPResponseException(421, b"try later")]

    result = await gateway.send("jane@x.edu", "Hi", "<p>Hello</p>")

    assert result.success is True
    assert fake_transport.attempts == 2
    assert sleeps == [1.0]


async def test_retries_exhausted(gateway, fake_transport, sleeps):
    fake_transport.failures = [smtplib.SMTPServerDisconnected("Connection unexpectedly closed")] * 3

    result = await gateway.send("jane@x.edu", "Hi", "<p>Hello</p>", template_name="alumniInvitation")

    assert result.success is False
    assert result.reason == "send_failed"
    assert "Connection unexpectedly closed" in result.error
    assert fake_transport.attempts == 3
    assert sleeps == [1.0, 2.0]

    [entry] = await gateway.log.entries()
    assert entry.status == EmailStatus.failed
    assert entry.template_name == "alumniInvitation"


async def test_permanent_failure_is_not_retried(gateway, fake_transport, sleeps):
    fake_transport.failures = [smtplib.SMTPResponseException(550, b"Mailbox unavailable")]

    result = await gateway.send("jane@x.edu", "Hi", "<p>Hello</p>")

    assert result.success is False
    assert fake_transport.attempts == 1
    assert sleeps == []


async def test_unexpected_transport_error_is_classified_by_message(gateway, fake_transport, sleeps):
    fake_transport.failures = [RuntimeError("Connection timeout"), RuntimeError("Unexpected reply")]

    result = await gateway.send("jane@x.edu", "Hi", "<p>Hello</p>", template_name="alumniInvitation")

    assert result.success is False
    assert result.reason == "send_failed"
    assert result.error == "Unexpected reply"
    assert fake_transport.attempts == 2
    assert sleeps == [1.0]

    [entry] = await gateway.log.entries()
    assert entry.status == EmailStatus.failed
    assert entry.error == "Unexpected reply"


async def test_unexpected_verify_error_reports_disconnected(gateway, fake_transport):
    fake_transport.failures = [RuntimeError("socket closed")]
    check = await gateway.verify_connection()
    assert check.connected is False
    assert check.reason == "socket closed"


async def test_rate_limited(settings, container, fake_transport):
    limited = NotificationGateway(
        settings.model_copy(update={"EMAIL_RATE_LIMIT": 2}),
        container.store,
        transport=fake_transport,
    )
    for _ in range(2):
        assert (await limited.send("a@x.edu", "s", "<p>b</p>")).success

    result = await limited.send("a@x.edu", "s", "<p>b</p>")

    assert result.success is False
    assert result.reason == "rate_limited"
    assert result.rate_limit_status.remaining == 0
    assert fake_transport.attempts == 2
    assert (await limited.log.entries(status="rate_limited"))[0].to == "a@x.edu"


async def test_disabled(settings, container, fake_transport):
    disabled = NotificationGateway(
        settings.model_copy(update={"EMAIL_ENABLED": False}),
        container.store,
        transport=fake_transport,
    )

    result = await disabled.send("a@x.edu", "s", "<p>b</p>")

    assert result.success is False
    assert result.reason == "disabled"
    assert fake_transport.attempts == 0
    assert (await disabled.log.entries())[0].status == EmailStatus.disabled


async def test_console_mode_without_smtp(container):
    gateway = container.gateway
    assert gateway.transport is None

    result = await gateway.send("a@x.edu", "s", "<p>b</p>", metadata={"k": "v"})

    assert result.success is True
    assert result.mode == "console"
    [entry] = await gateway.log.entries()
    assert entry.status == EmailStatus.logged
    assert entry.metadata == {"k": "v"}


async def test_verify_connection(gateway, fake_transport, container):
    assert (await gateway.verify_connection()).connected is True

    fake_transport.failures = [smtplib.SMTPAuthenticationError(535, b"Bad credentials")]
    check = await gateway.verify_connection()
    assert check.connected is False
    assert "Bad credentials" in check.reason

    assert (await container.gateway.verify_connection()).reason == "SMTP not configured"


async def test_status_reports_configuration(container):
    status = container.gateway.status()
    assert status.enabled is True
    assert status.smtp_configured is False
    assert status.smtp_ready is False
    assert status.from_email == "noreply@campusmarket.io"
    assert status.rate_limit.limit == 50


# ── SMTP transport ────────────────────────────────────────────────────────────

class RecordingSMTP:
    """Replaces smtplib.SMTP / SMTP_SSL; every instance appends to `calls`."""

    calls = []
    fail_on = None

    def __init__(self, host, port, timeout=None, context=None):
        self.calls.append(("connect", type(self).__name__, host, port, timeout))

    def _call(self, name, *args):
        self.calls.append((name, *args))
        if self.fail_on == name:
            raise smtplib.SMTPAuthenticationError(535, b"Bad credentials")

    def starttls(self, context=None):
        self._call("starttls")

    def login(self, user, password):
        self._call("login", user, password)

    def send_message(self, message):
        self._call("send_message", message["Message-ID"])

    def noop(self):
        self._call("noop")

    def close(self):
        self.calls.append(("close",))

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.calls.append(("quit",))
        self.close()


class RecordingSMTPSSL(RecordingSMTP):
    pass


@pytest.fixture
def smtp_calls(monkeypatch):
    calls = []
    monkeypatch.setattr(RecordingSMTP, "calls", calls)
    monkeypatch.setattr(RecordingSMTP, "fail_on", None)
    monkeypatch.setattr(smtplib, "SMTP", RecordingSMTP)
    monkeypatch.setattr(smtplib, "SMTP_SSL", RecordingSMTPSSL)
    return calls


def _smtp_transport(settings, **overrides):
    return SmtpTransport(settings.model_copy(update={
        "SMTP_HOST": "smtp.example.com",
        "SMTP_USER": "mailer",
        "SMTP_PASSWORD": "hunter2",
        **overrides,
    }))


async def test_smtp_transport_uses_starttls(settings, smtp_calls):
    transport = _smtp_transport(settings, SMTP_PORT=587)
    message = EmailMessage()
    message["To"] = "jane@x.edu"

    message_id = await transport.send(message)

    assert message_id == message["Message-ID"]
    assert message_id.startswith("<")
    assert [c[0] for c in smtp_calls] == ["connect", "starttls", "login", "send_message", "quit", "close"]
    assert smtp_calls[0][1:4] == ("RecordingSMTP", "smtp.example.com", 587)
    assert smtp_calls[2] == ("login", "mailer", "hunter2")
    assert smtp_calls[3] == ("send_message", message_id)


async def test_smtp_transport_implicit_tls(settings, smtp_calls):
    transport = _smtp_transport(settings, SMTP_PORT=465, SMTP_SECURE=True)

    await transport.verify()

    assert [c[0] for c in smtp_calls] == ["connect", "login", "noop", "quit", "close"]
    assert smtp_calls[0][1] == "RecordingSMTPSSL"


async def test_smtp_transport_closes_connection_when_login_fails(settings, smtp_calls):
    RecordingSMTP.fail_on = "login"
    transport = _smtp_transport(settings)

    with pytest.raises(smtplib.SMTPAuthenticationError):
        await transport.verify()

    assert [c[0] for c in smtp_calls] == ["connect", "starttls", "login", "close"]


async def test_gateway_builds_smtp_transport_when_configured(settings, container):
    gateway = NotificationGateway(
        settings.model_copy(update={"SMTP_HOST": "smtp.example.com", "SMTP_USER": "u", "SMTP_PASSWORD": "p"}),
        container.store,
    )
    assert isinstance(gateway.transport, SmtpTransport)
    assert gateway.status().smtp_host == "smtp.example.com:587"


# ── Delivery log ──────────────────────────────────────────────────────────────

def _entry(n, status=EmailStatus.logged, template="alumniInvitation"):
    return EmailLogEntry(
        id=f"email_{n}",
        to=f"user{n}@x.edu",
        subject="s",
        template_name=template,
        status=status,
        timestamp=f"2026-01-01T00:00:0{n}+00:00",
    )


async def test_email_log_is_capped_and_newest_first(container):
    log = EmailLog(container.store, max_entries=3)
    for n in range(5):
        await log.append(_entry(n))

    assert [e.id for e in await log.entries()] == ["email_4", "email_3", "email_2"]
    assert [e.id for e in await log.entries(limit=1)] == ["email_4"]


async def test_email_log_filters(container):
    log = EmailLog(container.store)
    await log.append(_entry(1, EmailStatus.sent, "alumniWelcome"))
    await log.append(_entry(2, EmailStatus.failed, "alumniWelcome"))
    await log.append(_entry(3, EmailStatus.sent, "tenantApproved"))

    assert [e.id for e in await log.entries(status="sent")] == ["email_3", "email_1"]
    assert [e.id for e in await log.entries(template_name="alumniWelcome")] == ["email_2", "email_1"]
    assert [e.id for e in await log.entries(status="sent", template_name="alumniWelcome")] == ["email_1"]


async def test_email_log_write_failure_is_swallowed(container, monkeypatch):
    async def failing_save(name, value):
        return False

    monkeypatch.setattr(container.store, "save", failing_save)
    log = EmailLog(container.store)

    await log.append(_entry(1))
    assert await log.entries() == []
