"""Pytest configuration and fixtures."""

import os
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from forj_api.auth.policy import Actor, Role
from forj_api.core import ForjCore
from forj_api.db.base import Base
from forj_api.db.session import build_engine, build_session_factory
from forj_api.ledger.signer import LocalSigner
from forj_api.pipeline.states import FORGE_STATES
from forj_api.settings import Settings

# File-backed SQLite by default so worker threads share one database.
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

START = datetime(2026, 1, 15, 12, 0, 0)


class FakeClock:
    """Controllable clock; call it to read, ``advance`` to move forward."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    Create a test database engine.

    Set TEST_DATABASE_URL to run against a real PostgreSQL instance.
    """
    url = TEST_DATABASE_URL or f"sqlite:///{tmp_path / 'forj.db'}"
    engine = build_engine(url)
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory) -> Session:
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session")
def signer(tmp_path_factory) -> LocalSigner:
    """One RSA key for the whole run; generating keys is slow."""
    return LocalSigner(str(tmp_path_factory.mktemp("keys") / "signing.pem"), key_id="test-key-1")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        database_url="sqlite://",
        secret_key="test-secret-key",
        auto_issue_certificate=True,
        license_requires_active_certificate=True,
    )


@pytest.fixture
def core(session_factory, settings, clock, signer) -> ForjCore:
    return ForjCore(session_factory, settings=settings, clock=clock, signer=signer)


@pytest.fixture
def admin() -> Actor:
    return Actor(actor_id="admin_1", actor_name="Ada Admin", role=Role.ADMIN)


@pytest.fixture
def operator() -> Actor:
    return Actor(actor_id="operator_1", actor_name="Otto Operator", role=Role.OPERATOR)


@pytest.fixture
def model_actor() -> Actor:
    return Actor(actor_id="model_1", actor_name="Mia Model", role=Role.MODEL)


@pytest.fixture
def client_actor() -> Actor:
    return Actor(actor_id="client_1", actor_name="Cora Client", role=Role.CLIENT)


def advance_to_certified(core: ForjCore, forge_id: str, actor: Actor):
    """Walk a forge through every remaining state."""
    forge = core.get_entity(forge_id, actor)
    for state in FORGE_STATES[forge.state.position + 1:]:
        forge = core.transition_entity(forge_id, state, actor)
    return forge


@pytest.fixture
def certified_forge(core, operator):
    """A forge owned by model_1 that has reached CERTIFIED."""
    forge = core.create_entity("model_1", operator)
    return advance_to_certified(core, forge.id, operator)


@pytest.fixture
def license_factory(core, operator, clock, certified_forge):
    """Create licenses against ``certified_forge`` with sensible defaults."""

    def create(**overrides):
        params = {
            "digital_twin_id": certified_forge.digital_twin_id,
            "grantee_id": "client_1",
            "usage_type": "COMMERCIAL",
            "territories": ["US"],
            "valid_from": clock(),
            "valid_until": clock() + timedelta(days=30),
            "max_downloads": 5,
        }
        params.update(overrides)
        return core.create_license(operator, **params)

    return create
