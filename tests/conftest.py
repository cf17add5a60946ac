"""Shared fixtures: a temporary SQLite database and event helpers."""

from datetime import datetime, timedelta
from typing import Callable, Optional

import pytest

from agregator_cli.database.connection import create_db_engine, make_session_factory, session_scope
from agregator_cli.database.models import Base, Event, utcnow


@pytest.fixture
def db_url(tmp_path) -> str:
    """URL of a file-backed SQLite database, shared by worker threads."""
    return f"sqlite:///{tmp_path / 'agregator-test.db'}"


@pytest.fixture
def engine(db_url):
    engine = create_db_engine(db_url)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def now() -> datetime:
    """Fixed naive UTC reference time."""
    return datetime(2025, 6, 15, 12, 0, 0)


@pytest.fixture
def add_event(session_factory) -> Callable[..., int]:
    """Insert an event and return its ID."""
    counter = {"n": 0}

    def _add(
        status: str = "ACTIVE",
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        title: Optional[str] = None,
    ) -> int:
        counter["n"] += 1
        start = start_date or utcnow() + timedelta(days=1)
        with session_scope(session_factory) as session:
            event = Event(
                title=title or f"Event {counter['n']}",
                start_date=start,
                end_date=end_date,
                status=status,
            )
            session.add(event)
            session.flush()
            return event.id

    return _add


@pytest.fixture
def get_status(session_factory) -> Callable[[int], Optional[str]]:
    """Read an event's stored status."""

    def _get(event_id: int) -> Optional[str]:
        with session_scope(session_factory) as session:
            event = session.get(Event, event_id)
            return event.status if event else None

    return _get
