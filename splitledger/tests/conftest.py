import os

# Point the app's own engine (used by startup and the cron entry point) at the test database
os.environ.setdefault("SPLITLEDGER_DATABASE_URL", "sqlite:///./test.db")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient
from uuid import uuid4

from splitledger.app.models.models import (
    Base, BudgetEntry, BudgetTotal, Group, ScheduledAction, ScheduledActionHistory,
    Transaction, TransactionShare, User, UserBalance
)
from splitledger.app.database import get_db_session
from splitledger.app.main import app

# Use a test database
TEST_DATABASE_URL = os.environ["SPLITLEDGER_DATABASE_URL"]

@pytest.fixture(scope="session")
def db_engine():
    engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield engine
    # Teardown - drop all tables
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    if os.path.exists("./test.db"):
        os.remove("./test.db")

@pytest.fixture(scope="function")
def db_session(db_engine):
    """Returns a fresh SQLAlchemy session for each test"""
    Session = sessionmaker(bind=db_engine)
    session = Session()

    # Clear out test data from previous run
    session.query(ScheduledActionHistory).delete()
    session.query(ScheduledAction).delete()
    session.query(UserBalance).delete()
    session.query(TransactionShare).delete()
    session.query(Transaction).delete()
    session.query(BudgetTotal).delete()
    session.query(BudgetEntry).delete()
    session.query(User).delete()
    session.query(Group).delete()
    session.commit()

    yield session
    session.close()

@pytest.fixture
def client(db_session):
    """Test client fixture that uses the db_session fixture"""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db_session] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

@pytest.fixture
def test_group(db_session):
    """Creates a group with a single 'house' budget category"""
    group = Group(id=str(uuid4()), name="Flat 4B", budgets=["house"])
    db_session.add(group)
    db_session.commit()
    db_session.refresh(group)
    return group

def _member(db_session, group, name):
    user = User(id=str(uuid4()), display_name=name, group_id=group.id)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user

@pytest.fixture
def test_user(db_session, test_group):
    return _member(db_session, test_group, "Alice")

@pytest.fixture
def test_user2(db_session, test_group):
    return _member(db_session, test_group, "Bob")

@pytest.fixture
def test_user3(db_session, test_group):
    return _member(db_session, test_group, "Carol")

@pytest.fixture
def outsider(db_session):
    """A user in a different group"""
    other = Group(id=str(uuid4()), name="Elsewhere", budgets=[])
    db_session.add(other)
    db_session.commit()
    return _member(db_session, other, "Mallory")
