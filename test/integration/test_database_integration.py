"""Integration tests for database migrations and persistence."""

from __future__ import annotations

import threading
from contextlib import closing
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from config import settings
from ledger import CreditLedger, InsufficientCredits
from outbox import Claimed, NoneAvailable, OutboxStore
from services import database

_ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"
_TABLES = {"field_records", "user_balances", "credit_usage", "outbox_entries", "autofills"}


def _ensure_database_ready() -> None:
    """Skip tests when the integration database is not configured or reachable."""
    if not settings.database.url and not settings.database.postgres_password:
        pytest.skip("Integration DB not configured (set DATABASE_URL or POSTGRES_PASSWORD).")
    try:
        with closing(database.get_sync_engine().connect()) as conn:
            conn.execute(text("SELECT 1"))
    except Exception as exc:
        pytest.skip(f"Integration DB not reachable: {exc}")


@pytest.fixture()
def sqlite_url(tmp_path, monkeypatch) -> str:
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    monkeypatch.setattr(database, "_get_sync_db_url", lambda: url)
    return url


def test_migrations_create_schema_on_sqlite(sqlite_url: str) -> None:
    """run_migrations_sync builds every table on a fresh database."""
    database.run_migrations_sync()

    engine = database.create_sync_engine(sqlite_url)
    try:
        assert _TABLES <= set(inspect(engine).get_table_names())
        columns = {column["name"] for column in inspect(engine).get_columns("autofills")}
        assert "llm_usage" in columns
        with pytest.raises(IntegrityError):
            with engine.begin() as conn:
                conn.execute(
                    text(
                        "INSERT INTO user_balances (user_id, credit_balance, created_at, updated_at)"
                        " VALUES ('u1', -1, '2026-01-01', '2026-01-01')"
                    )
                )
    finally:
        engine.dispose()


def test_migrations_downgrade_to_base(sqlite_url: str) -> None:
    """The initial revision can be rolled back cleanly."""
    database.run_migrations_sync()
    cfg = Config(str(_ALEMBIC_INI))
    cfg.set_main_option("sqlalchemy.url", sqlite_url)
    cfg.attributes["configure_logger"] = False

    command.downgrade(cfg, "base")

    engine = database.create_sync_engine(sqlite_url)
    try:
        assert not _TABLES & set(inspect(engine).get_table_names())
    finally:
        engine.dispose()


def test_migrated_schema_supports_ledger_and_outbox(sqlite_url: str) -> None:
    """Repositories work against the migrated schema, not just metadata."""
    database.run_migrations_sync()
    engine = database.create_sync_engine(sqlite_url)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    try:
        ledger = CreditLedger(factory)
        ledger.provision("u1", 5)
        assert ledger.update_balance("u1", -5, kind="autofill") == 0
        with pytest.raises(InsufficientCredits):
            ledger.update_balance("u1", -1, kind="autofill")

        store = OutboxStore(factory)
        log_id = store.enqueue("autofill.completed", {"a": 1}, dedupe_key="autofill:1")
        claim = store.claim_next()
        assert isinstance(claim, Claimed)
        store.complete(log_id, claim_token=claim.claim_token)
        assert store.get(log_id).status == "done"
    finally:
        engine.dispose()


def test_postgres_concurrent_claims_skip_locked_rows() -> None:
    """Concurrent claimers on Postgres never share an entry."""
    _ensure_database_ready()
    database.run_migrations_sync()
    store = OutboxStore(database.get_sync_session)
    ids = {store.enqueue("integration.test", {"n": n}) for n in range(20)}
    claimed: list[str] = []
    lock = threading.Lock()

    def worker() -> None:
        while True:
            result = store.claim_next()
            if isinstance(result, NoneAvailable):
                return
            with lock:
                claimed.append(result.entry.log_id)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    ours = [log_id for log_id in claimed if log_id in ids]
    assert sorted(ours) == sorted(ids)


def test_postgres_concurrent_debits_never_overdraw() -> None:
    """Racing debits on Postgres admit exactly what the balance allows."""
    _ensure_database_ready()
    database.run_migrations_sync()
    ledger = CreditLedger(database.get_sync_session)
    user_id = f"integration-{threading.get_ident()}-{id(ledger)}"
    ledger.provision(user_id, 10)
    outcomes: list[bool] = []
    lock = threading.Lock()

    def debit() -> None:
        try:
            ledger.update_balance(user_id, -3, kind="autofill")
            ok = True
        except InsufficientCredits:
            ok = False
        with lock:
            outcomes.append(ok)

    threads = [threading.Thread(target=debit) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count(True) == 3
    assert ledger.get_balance(user_id).credit_balance == 1
