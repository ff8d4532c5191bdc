"""
Shared test fixtures
"""
from datetime import date, datetime, time, timedelta
from typing import List, Optional

import pytest
from beanie import init_beanie
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from expiry_alerts.config import Settings
from expiry_alerts.container import build_container, get_container
from expiry_alerts.database import DOCUMENT_MODELS
from expiry_alerts.exceptions import TransientSendFailure
from expiry_alerts.models.employee import Employee
from expiry_alerts.services.email import EmailService

TODAY = date(2026, 3, 1)


def midnight(day: date) -> datetime:
    return datetime.combine(day, time.min)


def expiring_in(days: int, today: date = TODAY) -> datetime:
    return midnight(today + timedelta(days=days))


class FakeClock:
    """Virtual monotonic clock; `sleep` advances it instead of waiting"""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeEmailService(EmailService):
    """Real rendering, recorded delivery"""

    def __init__(self, config: Settings, clock: Optional[FakeClock] = None):
        super().__init__(config)
        self.sent: List[dict] = []
        self.attempts: List[str] = []
        self.failures = {}
        self.clock = clock

    def fail_for(self, recipient: str, error: Exception) -> None:
        self.failures[recipient] = error

    async def send_email(self, to_email, subject, html_content, text_content=None):
        self.attempts.append(to_email)
        if to_email in self.failures:
            raise self.failures[to_email]
        self.sent.append({
            "to": to_email,
            "subject": subject,
            "html": html_content,
            "at": self.clock() if self.clock else None,
        })


@pytest.fixture
def test_settings():
    return Settings(
        SMTP_USER="",
        SMTP_PASSWORD="",
        EMAILS_DISABLED=False,
        ALERT_RECIPIENT_OVERRIDE=None,
        SEND_MIN_INTERVAL_SECONDS=1.0,
        CYCLE_TIMEOUT_SECONDS=3600.0,
        SCHEDULER_ENABLED=False,
        LOG_FILE="",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def db():
    """In-memory Mongo with every document model registered"""
    client = AsyncMongoMockClient()
    await init_beanie(database=client["test_expiry_alerts"], document_models=DOCUMENT_MODELS)
    yield client


@pytest.fixture
def email_service(test_settings, clock):
    return FakeEmailService(test_settings, clock)


@pytest.fixture
def container(db, test_settings, email_service, clock):
    """Fully wired engine on mongomock with a fake mailer and virtual time"""
    engine = build_container(test_settings)
    engine.email_service = email_service
    engine.dispatcher.email_service = email_service
    engine.dispatcher.rate_limiter._clock = clock
    engine.dispatcher.rate_limiter._sleep = clock.sleep
    engine.dispatcher._clock = clock
    engine.orchestrator._clock = clock
    engine.orchestrator._today = lambda: TODAY
    engine.refresher._today = lambda: TODAY
    return engine


@pytest.fixture
async def client(container):
    """HTTP client against the app with the test container injected"""
    from main import app

    app.dependency_overrides[get_container] = lambda: container
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_employee(db):
    """Insert an employee; expiry offsets are days from TODAY"""
    counter = {"n": 0}

    async def _make(
        visa: Optional[int] = None,
        passport: Optional[int] = None,
        labour_card: Optional[int] = None,
        employee_id: Optional[str] = None,
        email: Optional[str] = "auto",
        **kwargs
    ) -> Employee:
        counter["n"] += 1
        emp_id = employee_id or f"EMP{counter['n']:03d}"
        employee = Employee(
            employee_id=emp_id,
            name=kwargs.pop("name", f"Worker {emp_id}"),
            email=f"{emp_id.lower()}@company.com" if email == "auto" else email,
            visa_expiry_date=expiring_in(visa) if visa is not None else None,
            passport_expiry_date=expiring_in(passport) if passport is not None else None,
            labour_card_expiry_date=expiring_in(labour_card) if labour_card is not None else None,
            **kwargs
        )
        await employee.insert()
        return employee

    return _make


@pytest.fixture
def transient_failure():
    return TransientSendFailure("Connection reset by peer")
