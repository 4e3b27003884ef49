"""
pytest configuration and shared fixtures

Tests run against a file-backed SQLite database (aiosqlite) and an in-memory
fake of the remote ticket source.
"""
import asyncio
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SLACK_WEBHOOK_URL", "")

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core import ApplicationException, NotificationException
from src.infrastructure.database import create_tables
from src.infrastructure.database.unit_of_work import sqlalchemy_uow_factory
from src.shared.infrastructure.notifications import (
    INotificationSink, Notification
)
from src.sla.application import SLARecordService, SLAEscalationService, ISLAPolicyProvider
from src.sla.domain import SLAPolicy
from src.sync.application import (
    IRemoteTicketSource, NotificationTicketEventPublisher, SyncCoordinator,
    SyncOptions, TicketIngestionService
)

SOURCE = "ServiceNow"
T0 = datetime(2024, 1, 15, 8, 0, 0, tzinfo=timezone.utc)


class MutableClock:
    """Clock whose time only moves when a test says so."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSink(INotificationSink):
    """Keeps every notification; can be told to fail."""

    name = "recording"

    def __init__(self):
        self.notifications: List[Notification] = []
        self.fail = False

    async def notify(self, notification: Notification) -> None:
        if self.fail:
            raise NotificationException("sink down")
        self.notifications.append(notification)

    def titles(self) -> List[str]:
        return [n.title for n in self.notifications]


class FakeRemoteSource(IRemoteTicketSource):
    """
    Serves pages out of ``records`` and counts every remote call.

    ``honour_since`` makes incremental queries return only records updated at
    or after the cursor. ``gate`` holds every fetch until it is set.
    """

    fields = ["number", "state", "priority", "opened_at", "sys_updated_on"]

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None):
        self.records = list(records or [])
        self.missing: List[str] = []
        self.connectivity_error: Optional[ApplicationException] = None
        self.fetch_error: Optional[ApplicationException] = None
        self.honour_since = False
        self.gate: Optional[asyncio.Event] = None
        self.connectivity_calls = 0
        self.fetch_calls: List[Dict[str, Any]] = []

    @property
    def remote_calls(self) -> int:
        return self.connectivity_calls + len(self.fetch_calls)

    def _matching(self, query: str) -> List[Dict[str, Any]]:
        if not (self.honour_since and query.startswith("since=")):
            return self.records
        since = datetime.fromisoformat(query[len("since="):])
        return [
            record for record in self.records
            if datetime.strptime(record["sys_updated_on"], "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc) >= since
        ]

    async def fetch_page(self, query, fields, limit, offset):
        self.fetch_calls.append({"query": query, "limit": limit, "offset": offset})
        if self.gate is not None:
            await self.gate.wait()
        if self.fetch_error is not None:
            raise self.fetch_error
        return self._matching(query)[offset:offset + limit]

    async def check_connectivity(self) -> None:
        self.connectivity_calls += 1
        if self.connectivity_error is not None:
            raise self.connectivity_error

    def missing_parameters(self) -> List[str]:
        return list(self.missing)

    def build_modified_since_query(self, since: datetime) -> str:
        return f"since={since.isoformat()}"

    def build_bulk_query(self) -> str:
        return "bulk"


async def wait_for_fetch(remote):
    """Yield to the event loop until a fetch is parked on the remote's gate."""
    for _ in range(500):
        if remote.fetch_calls:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("no fetch started")


class StaticPolicyProvider(ISLAPolicyProvider):
    def __init__(self, policy: Optional[SLAPolicy] = None):
        self.policy = policy or SLAPolicy()

    def get_policy(self) -> SLAPolicy:
        return self.policy


def make_record(
    number: str,
    state: str = "New",
    priority: str = "1 - Critical",
    opened_at: str = "2024-01-15 08:00:00",
    updated_at: str = "2024-01-15 08:00:00",
    **extra: Any
) -> Dict[str, Any]:
    """Raw incident as returned by the Table API with display values."""
    record = {
        "sys_id": f"sys-{number.lower()}",
        "number": number,
        "short_description": f"Issue {number}",
        "state": state,
        "priority": priority,
        "opened_at": opened_at,
        "sys_updated_on": updated_at,
        "assigned_to": {"display_value": "Jane Doe", "link": "https://x/api/now/table/sys_user/u1", "value": "u1"},
        "category": "network",
    }
    record.update(extra)
    return record


# ========== Database ==========

@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tickets.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def uow_factory(session_factory):
    return sqlalchemy_uow_factory(session_factory)


# ========== Collaborators ==========

@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def remote():
    return FakeRemoteSource()


@pytest.fixture
def policy_provider():
    return StaticPolicyProvider()


@pytest.fixture
def ingestion(uow_factory, sink, clock):
    return TicketIngestionService(
        uow_factory,
        source=SOURCE,
        sla_service=SLARecordService(clock),
        publisher=NotificationTicketEventPublisher(sink),
    )


@pytest.fixture
def sync_options():
    return SyncOptions(source=SOURCE, incremental_batch_size=2, bulk_batch_size=2, max_pages_per_tick=10)


@pytest.fixture
def coordinator(uow_factory, remote, ingestion, sink, sync_options, clock):
    return SyncCoordinator(uow_factory, remote, ingestion, sink, sync_options, clock)


@pytest.fixture
def escalation_service(uow_factory, policy_provider, sink, clock):
    return SLAEscalationService(uow_factory, policy_provider, sink, clock)
