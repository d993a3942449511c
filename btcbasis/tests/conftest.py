"""
Shared pytest fixtures for the btcbasis test suite.

Uses FastAPI TestClient with an isolated temporary database so tests
never touch the real database. Every calculation test pins 'as_of' so
holding periods and monthly series do not depend on the wall clock.
"""

import os
import pytest
import tempfile
from datetime import datetime, timezone
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from btcbasis.database import Base, get_db
from btcbasis.main import app

# Import all models so Base.metadata knows about them
from btcbasis.models.transaction import Transaction, Order   # noqa: F401
from btcbasis.models.price import SpotPrice, MonthlyClose    # noqa: F401

AS_OF = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def test_engine():
    """Create a temporary SQLite database for the entire test session."""
    tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    tmp.close()
    engine = create_engine(
        f"sqlite:///{tmp.name}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()
    os.unlink(tmp.name)


@pytest.fixture
def test_db(test_engine):
    """Direct SQLAlchemy session on an emptied database."""
    TestSessionLocal = sessionmaker(bind=test_engine)
    db = TestSessionLocal()
    for table in reversed(Base.metadata.sorted_tables):
        db.execute(table.delete())
    db.commit()
    yield db
    db.close()


@pytest.fixture
def client(test_db, test_engine):
    """TestClient whose get_db yields sessions on the test database."""
    TestSessionLocal = sessionmaker(bind=test_engine)

    def override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def as_of():
    return AS_OF
