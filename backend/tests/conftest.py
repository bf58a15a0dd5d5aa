import os
import tempfile
from pathlib import Path

import pytest

# Point the app at a throwaway SQLite file before anything imports it.
_TMP_DIR = Path(tempfile.mkdtemp(prefix="quizweb-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'test.db'}"
os.environ["ENV"] = "dev"

from sqlmodel import SQLModel  # noqa: E402

from quizweb.main import app  # noqa: E402,F401
from quizweb.database import engine  # noqa: E402
from quizweb.routers.auth import signin_limiter  # noqa: E402
from quizweb.utils.realtime import get_hub  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    """Recreate every table and reset in-memory state for each test."""
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    signin_limiter.reset()
    get_hub().clear()
    yield
