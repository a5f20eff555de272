"""Pytest configuration for Lazyfill test suite."""

import os
import sys
from pathlib import Path
from typing import Generator

import pytest


def _ensure_test_env() -> None:
    """Seed required environment variables for tests."""
    os.environ.setdefault("LOG_JSON", "false")
    os.environ.setdefault("LLM_API_KEY", "test-key")
    os.environ.setdefault("OUTBOX_WEBHOOK_URL", "")


_ensure_test_env()

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from sqlalchemy.orm import sessionmaker  # noqa: E402

from models import Base  # noqa: E402
from services.database import create_sync_engine  # noqa: E402


@pytest.fixture()
def sqlite_session_factory(tmp_path: Path) -> Generator[sessionmaker, None, None]:
    """Provide a sqlite session factory backed by a temp file.

    File databases with BEGIN IMMEDIATE let threaded tests contend for the
    write lock the way concurrent workers do.
    """
    engine = create_sync_engine(f"sqlite:///{tmp_path / 'lazyfill.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    yield factory
    engine.dispose()
