"""
Integration test fixtures — PostgreSQL testcontainer and schema setup.

Provides a real PostgreSQL instance for each test session via testcontainers.
Creates the environments, dfsps and endpoint_items tables matching the
production schema. Each test gets a clean database via truncation, seeded
with environment 1 ("dev") and environment 2 ("test").
"""

from __future__ import annotations

from collections.abc import Callable

import psycopg
import pytest
from testcontainers.postgres import PostgresContainer

DDL = """
CREATE TABLE environments (
    id    INTEGER PRIMARY KEY,
    name  TEXT NOT NULL
);

CREATE TABLE dfsps (
    id       SERIAL PRIMARY KEY,
    env_id   INTEGER NOT NULL REFERENCES environments(id),
    dfsp_id  TEXT NOT NULL,
    name     TEXT NOT NULL,
    UNIQUE (env_id, dfsp_id)
);

CREATE TABLE endpoint_items (
    id          SERIAL PRIMARY KEY,
    env_id      INTEGER NOT NULL REFERENCES environments(id),
    dfsp_id     INTEGER REFERENCES dfsps(id) ON DELETE CASCADE,
    direction   TEXT NOT NULL,
    type        TEXT NOT NULL,
    value       JSONB NOT NULL,
    state       TEXT NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
);
"""

TRUNCATE_ALL = """
TRUNCATE endpoint_items, dfsps, environments RESTART IDENTITY CASCADE;
"""

SEED_ENVIRONMENTS = "INSERT INTO environments (id, name) VALUES (1, 'dev'), (2, 'test')"


@pytest.fixture(scope="session")
def postgres_container() -> PostgresContainer:
    """Start a PostgreSQL container for the entire test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        dsn = pg.get_connection_url().replace("postgresql+psycopg2", "postgresql")
        with psycopg.connect(dsn) as conn:
            conn.execute(DDL)
            conn.commit()
        yield pg


@pytest.fixture()
def dsn(postgres_container: PostgresContainer) -> str:
    """Return a psycopg-compatible DSN over a truncated, freshly seeded schema."""
    connection_url = postgres_container.get_connection_url().replace(
        "postgresql+psycopg2", "postgresql"
    )
    with psycopg.connect(connection_url) as conn:
        conn.execute(TRUNCATE_ALL)
        conn.execute(SEED_ENVIRONMENTS)
        conn.commit()
    return connection_url


@pytest.fixture()
def add_dfsp(dsn: str) -> Callable[..., int]:
    """Insert a DFSP row and return its internal id."""

    def _add(dfsp_id: str, env_id: int = 1, name: str | None = None) -> int:
        with psycopg.connect(dsn) as conn:
            row = conn.execute(
                "INSERT INTO dfsps (env_id, dfsp_id, name) VALUES (%s, %s, %s) RETURNING id",
                (env_id, dfsp_id, name or dfsp_id.upper()),
            ).fetchone()
            conn.commit()
        assert row is not None
        return row[0]

    return _add
