"""Shared fixtures: in-memory metrics store and community source tables."""
import sqlite3
from typing import Iterable

import pytest

from src.pulse_core.metrics.schema import init_database
from src.pulse_core.metrics.sources import SqliteSourceCounter


SOURCE_TABLES = {"users": "profiles", "posts": "posts", "comments": "comments"}


def create_source_tables(conn: sqlite3.Connection) -> None:
    for table in SOURCE_TABLES.values():
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL
            )
            """
        )
    conn.commit()


def add_records(conn: sqlite3.Connection, table: str, timestamps: Iterable[str]) -> None:
    conn.executemany(
        f"INSERT INTO {table} (created_at) VALUES (?)",
        [(ts,) for ts in timestamps],
    )
    conn.commit()


@pytest.fixture
def metrics_conn():
    """Create in-memory metrics database."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    init_database(conn)
    yield conn
    conn.close()


@pytest.fixture
def source_conn():
    """Create in-memory community database with empty source tables."""
    conn = sqlite3.connect(":memory:")
    create_source_tables(conn)
    yield conn
    conn.close()


@pytest.fixture
def source(source_conn):
    return SqliteSourceCounter(source_conn, SOURCE_TABLES)


@pytest.fixture
def seed(source_conn):
    """Insert source records: seed("posts", ["2024-01-01T10:00:00"])."""

    def _seed(table: str, timestamps: Iterable[str]) -> None:
        add_records(source_conn, table, timestamps)

    return _seed
