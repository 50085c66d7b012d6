"""
Pytest configuration for admixer tests.

Sets up import paths and a throwaway SQLite database per test.
"""

import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Add the repository root to the path so `admixer` imports work
repo_dir = Path(__file__).parent.parent.parent.absolute()
if str(repo_dir) not in sys.path:
    sys.path.insert(0, str(repo_dir))

from admixer.database import Base  # noqa: E402

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test"
    )


@pytest.fixture
def db_engine(tmp_path):
    """Engine bound to a temporary database file."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'admixer-test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(db_engine):
    """Database session for one test."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()

