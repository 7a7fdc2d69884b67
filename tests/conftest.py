"""
Shared pytest fixtures for the escalation engine tests.

Repository-backed tests run against an in-memory SQLite database; external
channels and emergency services are replaced by in-process fakes.
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from cascade import CascadeDispatcher
from clock import FixedClock
from database import build_session_factory, create_tables
from emergency import EmergencyFailoverController
from escalation_engine import EscalationStateMachine
from models import NotificationMethod
from reporter import EscalationReporter
from repository import Repository
from sla import SLAResolver
from supervisors import SupervisorDirectory

from factories import NOW, build_tiers


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def repo(session_factory):
    return Repository(session_factory)


@pytest.fixture
def seed(session_factory):
    """Insert ORM rows (lists are flattened) in one transaction"""
    async def _seed(*rows):
        flat = []
        for row in rows:
            flat.extend(row if isinstance(row, list) else [row])
        async with session_factory() as session:
            session.add_all(flat)
            await session.commit()
    return _seed


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def emergency_client():
    client = AsyncMock()
    client.contact = AsyncMock(return_value=True)
    client.activate_protocol = AsyncMock(return_value=True)
    return client


@pytest.fixture
def build_machine(repo, clock, emergency_client):
    """Wire a state machine over the test database with scripted channels"""
    def _build(channels=None, protocols=("notify_emergency_services", "deploy_emergency_staff")):
        return EscalationStateMachine(
            repo=repo,
            sla=SLAResolver(repo),
            directory=SupervisorDirectory(repo),
            dispatcher=CascadeDispatcher(
                channels if channels is not None else build_tiers({NotificationMethod.PUSH}),
                clock,
                timeout_seconds=0.5,
            ),
            failover=EmergencyFailoverController(repo, emergency_client, list(protocols)),
            reporter=EscalationReporter(repo),
        )
    return _build
