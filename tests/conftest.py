"""Pytest configuration shared by the fuel invoicing tests.

Every DB-backed test gets its own SQLite file under ``tmp_path`` and the
engine cache is cleared afterwards so no state leaks between tests. Ledger
access settings from the developer's environment are removed for the same
reason.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from db.client import dispose_engines

from fuel_invoicing.access import Actor, allow_identities
from tests.helpers.db import bootstrap_sqlite_db


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in (
        "DATABASE_URL",
        "FUEL_LEDGER_OPERATORS",
        "FUEL_LEDGER_ROLES",
        "FUEL_STATION_VAT_NUMBER",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def db_url(tmp_path: Path):
    url = bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")
    yield url
    dispose_engines()


@pytest.fixture
def operator() -> Actor:
    return Actor(id="op-1", email="operator@station.example")


@pytest.fixture
def policy(operator: Actor):
    return allow_identities([operator.id])
