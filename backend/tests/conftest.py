import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("ANALYTICS_JWT_SECRET", "test-signing-secret-with-at-least-32-bytes")
os.environ.setdefault("ANALYTICS_BCRYPT_ROUNDS", "4")

from backend.app.database import Database  # noqa: E402  pylint: disable=wrong-import-position


@pytest.fixture
def database(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'analytics.db'}")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def db(database):
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()
