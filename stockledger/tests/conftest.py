from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from stockledger.app.config import Settings
from stockledger.app.db.base import Base
from stockledger.app.db.immutability import register_guards
from stockledger.app.db.models import models_v1  # noqa: F401  (tables)
from stockledger.app.db.session import make_engine, make_session_factory
from stockledger.app.logging_config import LogContext, reset_logging
from stockledger.services.registry import build_services


T0 = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Horloge déterministe : +1 minute à chaque lecture."""

    def __init__(self, start: datetime = T0, step: timedelta = timedelta(minutes=1)):
        self.current = start - step
        self.step = step

    def __call__(self) -> datetime:
        self.current += self.step
        return self.current


@pytest.fixture(autouse=True)
def _plain_logging():
    # caplog lit via le logger racine : on rétablit la propagation
    reset_logging()
    LogContext.clear()
    yield
    reset_logging()


@pytest.fixture
def settings() -> Settings:
    return Settings(database_url="sqlite://", allow_negative_stock=False, write_retry_attempts=3)


@pytest.fixture
def engine():
    """
    SQLite en mémoire, une connexion partagée (StaticPool) :
    base vierge à chaque test.
    """
    register_guards()
    eng = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def services(db_session, settings, clock):
    return build_services(db_session, settings, clock=clock)


@pytest.fixture
def ledger(services):
    return services.ledger


@pytest.fixture
def projector(services):
    return services.projector


@pytest.fixture
def po_manager(services):
    return services.purchase_orders


@pytest.fixture
def adjustments(services):
    return services.adjustments


@pytest.fixture
def queries(services):
    return services.queries


@pytest.fixture
def client(session_factory, settings):
    """TestClient FastAPI branché sur la base SQLite du test."""
    from fastapi.testclient import TestClient

    from stockledger.app.api.deps import get_app_settings, get_db
    from stockledger.app.main import app

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_app_settings] = lambda: settings
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
