"""
Pytest configuration and fixtures.

Every test gets its own file-backed SQLite database so concurrent units of
work run on separate connections, the way they do against PostgreSQL.
"""
import os
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./evently-test.db")
os.environ.setdefault("STORE_RETRY_BASE_DELAY", "0.01")
os.environ.setdefault("STORE_RETRY_MAX_DELAY", "0.2")
os.environ.setdefault("NOTIFICATION_TIMEOUT_SECONDS", "0.5")

from evently.config import get_settings  # noqa: E402
from evently.core.counter_audit import CounterAuditor  # noqa: E402
from evently.core.payment_reconciliation import PaymentReconciliationEngine  # noqa: E402
from evently.core.registration_engine import RegistrationEngine  # noqa: E402
from evently.database.connection import (  # noqa: E402
    build_session_factory,
    configure_sqlite,
    init_db,
)
from evently.integrations.notification_sink import RecordingNotificationSink  # noqa: E402

ORGANIZER_ID = "organizer-1"


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests of a single component")
    config.addinivalue_line("markers", "race: concurrent requests against one event")
    config.addinivalue_line("markers", "integration: HTTP-level tests through the FastAPI app")


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Any:
    """Reload settings for every test so monkeypatched env vars apply."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db_engine(tmp_path: Any) -> AsyncGenerator[AsyncEngine, Any]:
    """Create a fresh database with all tables."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'evently-test.db'}",
        poolclass=NullPool,
    )
    configure_sqlite(engine, busy_timeout_ms=15000)
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(db_engine)


@pytest.fixture
def notification_sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def registration_engine(
    session_factory: async_sessionmaker[AsyncSession],
    notification_sink: RecordingNotificationSink,
) -> RegistrationEngine:
    return RegistrationEngine(session_factory=session_factory, notification_sink=notification_sink)


@pytest.fixture
def payment_engine(
    session_factory: async_sessionmaker[AsyncSession],
    notification_sink: RecordingNotificationSink,
) -> PaymentReconciliationEngine:
    return PaymentReconciliationEngine(
        session_factory=session_factory, notification_sink=notification_sink
    )


@pytest.fixture
def counter_auditor(session_factory: async_sessionmaker[AsyncSession]) -> CounterAuditor:
    return CounterAuditor(session_factory=session_factory)


@pytest.fixture
def make_event(
    registration_engine: RegistrationEngine,
) -> Callable[..., Awaitable[Dict[str, Any]]]:
    """Factory creating events owned by ORGANIZER_ID."""

    async def _make(
        capacity: int | None = None,
        require_approval: bool = False,
        ticket_price: int = 0,
        name: str = "Test Event",
        organizer_id: str = ORGANIZER_ID,
    ) -> Dict[str, Any]:
        return await registration_engine.create_event(
            organizer_id=organizer_id,
            name=name,
            capacity=capacity,
            require_approval=require_approval,
            ticket_price=ticket_price,
        )

    return _make
