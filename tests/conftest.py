import os
import tempfile
from pathlib import Path

import pytest

# The app builds its engine from DATABASE_URL at import time, so point it
# at a fresh database before any `pdfqr` module is imported.
_TEST_DIR = Path(tempfile.mkdtemp(prefix="pdfqr-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR / 'app.db'}"
os.environ["ENV"] = "dev"
os.environ["RUN_MIGRATIONS_ON_STARTUP"] = "true"

from pdfqr.database import create_app_engine  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    """A fresh, empty SQLite database per test."""
    eng = create_app_engine(f"sqlite:///{tmp_path / 'test.db'}")
    yield eng
    eng.dispose()
