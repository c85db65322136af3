"""Pytest configuration and fixtures for ledger tests."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker

import donation_ledger.services.database as db_module
from donation_ledger.models import Child, Location
from donation_ledger.models.base import Base
from donation_ledger.services.authorization import Actor
from donation_ledger.utils.config import reset_config
from donation_ledger.utils.constants import GIFT_CATEGORY, ROLE_ADMIN


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Keep environment overrides from leaking between tests."""
    for name in (
        "DONATION_LEDGER_ENV",
        "DONATION_LEDGER_DATABASE_URL",
        "DONATION_LEDGER_DATA_DIR",
        "DONATION_LEDGER_LOCK_TIMEOUT",
        "DONATION_LEDGER_CONFLICT_RETRIES",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture(scope="function")
def test_db():
    """Provide a clean test database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database
    2. Creates all tables
    3. Provides the database to the test
    4. Drops all tables after the test completes
    """
    engine = create_engine("sqlite:///:memory:", echo=False)

    Base.metadata.create_all(engine)

    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    def fresh_session():
        # Services begin their own transaction; end the read a test left open
        # so ledger_scope() still starts with BEGIN IMMEDIATE.
        session = Session()
        if session.in_transaction():
            session.commit()
        return session

    # Monkey-patch the global session factory for tests
    original_get_session = db_module.get_session_factory
    db_module.get_session_factory = lambda: fresh_session

    yield Session

    Session.remove()
    Base.metadata.drop_all(engine)
    engine.dispose()

    db_module.get_session_factory = original_get_session


@pytest.fixture(scope="function")
def file_db(tmp_path, monkeypatch):
    """Provide a file-backed database with one session per thread.

    Needed wherever separate connections must contend for the write lock.
    Yields the database path.
    """
    db_path = tmp_path / "ledger.db"
    engine = db_module.create_database_engine(f"sqlite:///{db_path}", lock_timeout=5.0)
    db_module.init_database(engine)

    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    monkeypatch.setattr(db_module, "get_session_factory", lambda: session_factory)

    yield db_path

    engine.dispose()


# =============================================================================
# Collaborator Entities
# =============================================================================


def _seed_locations_and_children(session):
    north = Location(name="North Hall", address="1 North St")
    south = Location(name="South Hall")
    session.add_all([north, south])
    session.flush()

    children = [
        Child(name="Ana", location_id=north.id),
        Child(name="Bruno", location_id=north.id),
        Child(name="Carla", location_id=north.id),
        Child(name="Davi", location_id=north.id, active=False),
        Child(name="Elisa", location_id=south.id),
    ]
    session.add_all(children)
    session.commit()

    class SeedData:
        def __init__(self):
            self.north = north
            self.south = south
            self.ana, self.bruno, self.carla, self.davi, self.elisa = children

    return SeedData()


@pytest.fixture
def seed(test_db):
    """Two locations; North has three active children and one inactive child, South has one."""
    return _seed_locations_and_children(test_db())


@pytest.fixture
def file_seed(file_db):
    """Same entities as ``seed``, in the file-backed database."""
    with db_module.session_scope() as session:
        return _seed_locations_and_children(session)


@pytest.fixture
def admin():
    return Actor(user_id="admin-1", role=ROLE_ADMIN)


@pytest.fixture
def north_user(seed):
    """Collaborator with access to North Hall only."""
    return Actor(user_id="user-north", location_ids={seed.north.id})


# =============================================================================
# Donations
# =============================================================================


@pytest.fixture
def make_donation(test_db, seed):
    """Factory creating a donation at North Hall through the service layer."""
    from donation_ledger.services import donation_service

    def _make(total_capacity=None, category="Food", recipients=None, location=None, **extra):
        data = {
            "location_id": (location or seed.north).id,
            "donor_name": "Neighborhood Market",
            "category": category,
            "total_capacity": total_capacity,
            "unit": "units",
        }
        if recipients is not None:
            data["recipient_child_ids"] = [child.id for child in recipients]
        data.update(extra)
        return donation_service.create_donation(data, Actor(user_id="seed", role=ROLE_ADMIN))

    return _make


@pytest.fixture
def stock_donation(make_donation):
    """Tracked stock donation with a capacity of 10."""
    return make_donation(total_capacity=10)


@pytest.fixture
def untracked_donation(make_donation):
    """Stock donation with no capacity."""
    return make_donation(total_capacity=None, category="Clothing")


@pytest.fixture
def gift_donation(make_donation, seed):
    """Birthday gift declared for Ana and Bruno, capacity 2."""
    return make_donation(
        total_capacity=2, category=GIFT_CATEGORY, recipients=[seed.ana, seed.bruno]
    )
