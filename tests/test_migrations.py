from __future__ import annotations

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from db import metadata

_DB_DIR = Path(__file__).resolve().parents[1] / "libs" / "db"


def _alembic_config() -> Config:
    cfg = Config(str(_DB_DIR / "alembic.ini"))
    cfg.set_main_option("script_location", str(_DB_DIR / "alembic"))
    return cfg


def test_upgrade_creates_the_orm_schema(tmp_path, monkeypatch: pytest.MonkeyPatch):
    url = f"sqlite+pysqlite:///{tmp_path / 'migrated.sqlite3'}"
    monkeypatch.setenv("DATABASE_URL", url)

    command.upgrade(_alembic_config(), "head")

    engine = create_engine(url)
    try:
        insp = inspect(engine)
        tables = set(insp.get_table_names())
        assert {
            "fp_products",
            "fp_price_records",
            "fp_price_edits",
            "fp_invoice_counters",
        } <= tables
        for table in metadata.sorted_tables:
            migrated = {c["name"] for c in insp.get_columns(table.name)}
            assert migrated == {c.name for c in table.columns}, table.name
        indexes = {ix["name"]: ix for ix in insp.get_indexes("fp_price_records")}
        assert indexes["uq_fp_price_records_one_open"]["unique"]
    finally:
        engine.dispose()


def test_downgrade_removes_everything(tmp_path, monkeypatch: pytest.MonkeyPatch):
    url = f"sqlite+pysqlite:///{tmp_path / 'roundtrip.sqlite3'}"
    monkeypatch.setenv("DATABASE_URL", url)
    cfg = _alembic_config()

    command.upgrade(cfg, "head")
    command.downgrade(cfg, "base")

    engine = create_engine(url)
    try:
        assert set(inspect(engine).get_table_names()) <= {"alembic_version"}
    finally:
        engine.dispose()
