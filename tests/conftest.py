"""Shared fixtures: in-memory SQLite database and signal builders."""

from collections.abc import Generator
from contextlib import contextmanager
from datetime import timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest
from factories import BASE_TIME, make_tags
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import hotspots.models  # noqa: F401  (registers tables)
from hotspots.core.database import Base
from hotspots.models.signal import Signal


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Same commit-or-rollback contract as get_sync_session, on SQLite."""
    maker = sessionmaker(engine, class_=Session, expire_on_commit=False, autoflush=False)

    @contextmanager
    def factory() -> Generator[Session, None, None]:
        session = maker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return factory


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture
def add_signal(session_factory):
    """Insert a signal and return it; ``position`` orders received_at."""
    counter = {"n": 0}

    def _add(
        position: int | None = None,
        title: str = "Coordination issue",
        description: str = "Client approval delayed the drawing review meeting again.",
        severity: str | None = "HIGH",
        tags: dict[str, Any] | None = None,
        features: dict[str, Any] | None = None,
        ai_processed: bool = True,
        **fields: Any,
    ) -> Signal:
        if position is None:
            position = counter["n"]
        counter["n"] = max(counter["n"], position) + 1
        with session_factory() as session:
            signal = Signal(
                title=title,
                description=description,
                severity=severity,
                enhanced_tags=tags if tags is not None else make_tags(),
                clustering_features=features,
                features_version=1 if features else 0,
                ai_processed=ai_processed,
                received_at=BASE_TIME + timedelta(minutes=position),
                **fields,
            )
            session.add(signal)
        return signal

    return _add


@pytest.fixture
def lock():
    lock = MagicMock()
    lock.acquire.return_value = True
    return lock
