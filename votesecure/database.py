"""
Async database utilities.
Uses asyncpg for non-blocking PostgreSQL access with connection pooling,
plus the idempotent schema bootstrap run at service startup.
"""
import logging
from contextlib import asynccontextmanager

import asyncpg

from . import config

logger = logging.getLogger(__name__)

# Tables are created only if missing; existing data is preserved. Votes
# reference elections, candidates and voters with RESTRICT so a vote can never
# disappear through a cascade, while candidates cascade with their election.
SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id              SERIAL PRIMARY KEY,
    name            VARCHAR(255) NOT NULL,
    email           VARCHAR(255) UNIQUE NOT NULL,
    role            VARCHAR(10) NOT NULL CHECK (role IN ('admin', 'voter')),
    ledger_address  VARCHAR(66),
    created_at      TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS elections (
    id              SERIAL PRIMARY KEY,
    title           VARCHAR(255) NOT NULL,
    description     TEXT,
    start_date      TIMESTAMPTZ NOT NULL,
    end_date        TIMESTAMPTZ NOT NULL,
    status          VARCHAR(10) NOT NULL DEFAULT 'upcoming'
                    CHECK (status IN ('upcoming', 'active', 'completed')),
    integrity_hash  VARCHAR(128) NOT NULL,
    content_hash    CHAR(64) NOT NULL,
    anchored        BOOLEAN NOT NULL DEFAULT FALSE,
    created_by      INT REFERENCES users(id),
    created_at      TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT election_window CHECK (end_date > start_date)
);

CREATE TABLE IF NOT EXISTS candidates (
    id              SERIAL PRIMARY KEY,
    election_id     INT NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
    name            VARCHAR(255) NOT NULL,
    description     TEXT,
    integrity_hash  CHAR(64) NOT NULL,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS votes (
    id              SERIAL PRIMARY KEY,
    election_id     INT NOT NULL CONSTRAINT votes_election_id_fkey
                    REFERENCES elections(id) ON DELETE RESTRICT,
    candidate_id    INT NOT NULL CONSTRAINT votes_candidate_id_fkey
                    REFERENCES candidates(id) ON DELETE RESTRICT,
    voter_id        INT NOT NULL CONSTRAINT votes_voter_id_fkey
                    REFERENCES users(id) ON DELETE RESTRICT,
    vote_hash       CHAR(64) NOT NULL,
    integrity_hash  VARCHAR(128) NOT NULL,
    content_hash    CHAR(64) NOT NULL,
    anchored        BOOLEAN NOT NULL DEFAULT FALSE,
    cast_at         TIMESTAMPTZ NOT NULL,
    CONSTRAINT unique_vote UNIQUE (election_id, voter_id)
);

CREATE INDEX IF NOT EXISTS idx_candidates_election ON candidates (election_id);
CREATE INDEX IF NOT EXISTS idx_votes_candidate ON votes (candidate_id);
CREATE INDEX IF NOT EXISTS idx_votes_voter ON votes (voter_id);
"""


class Database:
    """Process-wide asyncpg pool.

    Pool bounds and credentials come from ``config`` (``DB_POOL_MIN`` /
    ``DB_POOL_MAX``). The pool is created on first use, so ``ensure_schema``
    and the store share it; ``PostgresStore.close`` releases it at shutdown.
    ``connection()`` runs statements in autocommit, ``transaction()`` wraps
    them in one transaction.
    """

    _pool: asyncpg.Pool | None = None

    @classmethod
    async def get_pool(cls) -> asyncpg.Pool:
        """Return the existing pool or create one lazily."""
        if cls._pool is None:
            cls._pool = await asyncpg.create_pool(
                host=config.DB_HOST,
                port=config.DB_PORT,
                database=config.DB_NAME,
                user=config.DB_USER,
                password=config.DB_PASSWORD,
                min_size=config.DB_POOL_MIN,
                max_size=config.DB_POOL_MAX,
            )
        return cls._pool

    @classmethod
    async def close(cls) -> None:
        """Gracefully close the pool (called on app shutdown)."""
        if cls._pool is not None:
            await cls._pool.close()
            cls._pool = None

    @classmethod
    @asynccontextmanager
    async def connection(cls):
        """Acquire a connection from the pool (auto-released on exit)."""
        pool = await cls.get_pool()
        async with pool.acquire() as conn:
            yield conn

    @classmethod
    @asynccontextmanager
    async def transaction(cls):
        """Acquire a connection and open a transaction (auto-committed/rolled-back)."""
        pool = await cls.get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield conn


async def ensure_schema() -> None:
    """Create any missing tables, constraints and indexes."""
    async with Database.connection() as conn:
        await conn.execute(SCHEMA)
    logger.info("Database schema ready")
