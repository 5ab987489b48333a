"""
PostgreSQL implementation of the store interface, on top of the asyncpg
pool in ``database.py``.

Driver errors never leave this module as-is: constraint violations become
``ConstraintViolation`` (carrying the constraint name) and everything else
becomes an opaque ``StorageFailure``. The original error is logged, not
returned, so no query text reaches callers.
"""
import functools
import logging
from contextlib import asynccontextmanager

import asyncpg

from .database import Database
from .errors import ConstraintViolation, StorageFailure
from .models import (
    Candidate, Election, ElectionStatus, Vote,
    VoteHistoryEntry, VoterSummary,
)
from .security import normalize_timestamp
from .store import LedgerSession, LedgerStore

logger = logging.getLogger(__name__)

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

_ELECTION_COLUMNS = """
    id, title, description, start_date, end_date, status, created_by,
    integrity_hash, content_hash, anchored, created_at
"""
_VOTE_COLUMNS = """
    id, election_id, candidate_id, voter_id, vote_hash,
    integrity_hash, content_hash, anchored, cast_at
"""


def _storage_failure(e: Exception) -> StorageFailure:
    logger.error(f"Storage failure: {type(e).__name__}: {e}")
    return StorageFailure()


def _translated(method):
    """Translate asyncpg errors raised by a session method."""

    @functools.wraps(method)
    async def wrapper(*args, **kwargs):
        try:
            return await method(*args, **kwargs)
        except (asyncpg.UniqueViolationError, asyncpg.ForeignKeyViolationError) as e:
            raise ConstraintViolation(e.constraint_name)
        except _DRIVER_ERRORS as e:
            raise _storage_failure(e)

    return wrapper


# -- Row mapping --------------------------------------------------------------

def _election(r) -> Election:
    return Election(
        id=r["id"],
        title=r["title"],
        description=r["description"],
        start=normalize_timestamp(r["start_date"]),
        end=normalize_timestamp(r["end_date"]),
        status=ElectionStatus(r["status"]),
        created_by=r["created_by"],
        integrity_hash=r["integrity_hash"],
        content_hash=r["content_hash"],
        anchored=r["anchored"],
        created_at=r["created_at"],
    )


def _candidate(r) -> Candidate:
    return Candidate(
        id=r["id"],
        election_id=r["election_id"],
        name=r["name"],
        description=r["description"],
        integrity_hash=r["integrity_hash"],
        created_at=r["created_at"],
    )


def _vote(r) -> Vote:
    return Vote(
        id=r["id"],
        election_id=r["election_id"],
        candidate_id=r["candidate_id"],
        voter_id=r["voter_id"],
        vote_hash=r["vote_hash"],
        integrity_hash=r["integrity_hash"],
        content_hash=r["content_hash"],
        anchored=r["anchored"],
        cast_at=normalize_timestamp(r["cast_at"]),
    )


class PostgresSession(LedgerSession):

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    # -- Elections ------------------------------------------------------------

    @_translated
    async def insert_election(self, title, description, start, end, status,
                              created_by, integrity_hash, content_hash, anchored):
        return await self.conn.fetchval(
            """
            INSERT INTO elections
                (title, description, start_date, end_date, status, created_by,
                 integrity_hash, content_hash, anchored)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING id
            """,
            title, description, start, end, status.value, created_by,
            integrity_hash, content_hash, anchored,
        )

    @_translated
    async def get_election(self, election_id):
        row = await self.conn.fetchrow(
            f"SELECT {_ELECTION_COLUMNS} FROM elections WHERE id = $1", election_id
        )
        return _election(row) if row else None

    @_translated
    async def list_elections(self):
        rows = await self.conn.fetch(
            f"SELECT {_ELECTION_COLUMNS} FROM elections ORDER BY created_at DESC, id DESC"
        )
        return [_election(r) for r in rows]

    @_translated
    async def update_election_status(self, election_id, status):
        await self.conn.execute(
            "UPDATE elections SET status = $2 WHERE id = $1 AND status <> $2",
            election_id, status.value,
        )

    @_translated
    async def delete_election(self, election_id):
        result = await self.conn.execute("DELETE FROM elections WHERE id = $1", election_id)
        return result != "DELETE 0"

    # -- Candidates -----------------------------------------------------------

    @_translated
    async def insert_candidate(self, election_id, name, description, integrity_hash):
        return await self.conn.fetchval(
            """
            INSERT INTO candidates (election_id, name, description, integrity_hash)
            VALUES ($1, $2, $3, $4)
            RETURNING id
            """,
            election_id, name, description, integrity_hash,
        )

    @_translated
    async def get_candidate(self, candidate_id):
        row = await self.conn.fetchrow(
            """
            SELECT id, election_id, name, description, integrity_hash, created_at
            FROM candidates WHERE id = $1
            """,
            candidate_id,
        )
        return _candidate(row) if row else None

    @_translated
    async def list_candidates(self, election_id):
        rows = await self.conn.fetch(
            """
            SELECT id, election_id, name, description, integrity_hash, created_at
            FROM candidates WHERE election_id = $1
            ORDER BY id
            """,
            election_id,
        )
        return [_candidate(r) for r in rows]

    # -- Votes ----------------------------------------------------------------

    @_translated
    async def find_vote(self, election_id, voter_id):
        row = await self.conn.fetchrow(
            f"SELECT {_VOTE_COLUMNS} FROM votes WHERE election_id = $1 AND voter_id = $2",
            election_id, voter_id,
        )
        return _vote(row) if row else None

    @_translated
    async def insert_vote(self, election_id, candidate_id, voter_id, vote_hash,
                          integrity_hash, content_hash, anchored, cast_at):
        row = await self.conn.fetchrow(
            f"""
            INSERT INTO votes
                (election_id, candidate_id, voter_id, vote_hash,
                 integrity_hash, content_hash, anchored, cast_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING {_VOTE_COLUMNS}
            """,
            election_id, candidate_id, voter_id, vote_hash,
            integrity_hash, content_hash, anchored, cast_at,
        )
        return _vote(row)

    @_translated
    async def get_vote(self, vote_id):
        row = await self.conn.fetchrow(f"SELECT {_VOTE_COLUMNS} FROM votes WHERE id = $1", vote_id)
        return _vote(row) if row else None

    @_translated
    async def list_votes(self, election_id):
        rows = await self.conn.fetch(
            f"SELECT {_VOTE_COLUMNS} FROM votes WHERE election_id = $1 ORDER BY id",
            election_id,
        )
        return [_vote(r) for r in rows]

    @_translated
    async def count_votes(self, election_id=None, voter_id=None):
        return await self.conn.fetchval(
            """
            SELECT COUNT(*) FROM votes
            WHERE ($1::int IS NULL OR election_id = $1)
              AND ($2::int IS NULL OR voter_id = $2)
            """,
            election_id, voter_id,
        )

    @_translated
    async def vote_counts(self, election_id):
        # One statement, one snapshot. The () grouping set is the grand total
        # row, told apart by its NULL candidate_id.
        rows = await self.conn.fetch(
            """
            SELECT candidate_id, COUNT(*) AS vote_count,
                   COUNT(DISTINCT voter_id) AS voter_count
            FROM votes WHERE election_id = $1
            GROUP BY GROUPING SETS ((candidate_id), ())
            """,
            election_id,
        )
        counts, voters = {}, 0
        for r in rows:
            if r["candidate_id"] is None:
                voters = r["voter_count"]
            else:
                counts[r["candidate_id"]] = r["vote_count"]
        return counts, voters

    @_translated
    async def voting_history(self, voter_id):
        rows = await self.conn.fetch(
            """
            SELECT v.id, v.election_id, v.candidate_id, v.voter_id, v.vote_hash,
                   v.integrity_hash, v.content_hash, v.anchored, v.cast_at,
                   e.title AS election_title, e.description AS election_description
            FROM votes v
            JOIN elections e ON v.election_id = e.id
            WHERE v.voter_id = $1
            ORDER BY v.cast_at DESC, v.id DESC
            """,
            voter_id,
        )
        return [
            VoteHistoryEntry(
                vote=_vote(r),
                election_title=r["election_title"],
                election_description=r["election_description"],
            )
            for r in rows
        ]

    # -- Users ----------------------------------------------------------------

    @_translated
    async def count_users(self, role):
        return await self.conn.fetchval("SELECT COUNT(*) FROM users WHERE role = $1", role.value)

    @_translated
    async def list_voters(self):
        rows = await self.conn.fetch(
            """
            SELECT u.id, u.name, u.email, u.created_at, COUNT(v.id) AS votes_cast
            FROM users u
            LEFT JOIN votes v ON u.id = v.voter_id
            WHERE u.role = 'voter'
            GROUP BY u.id, u.name, u.email, u.created_at
            ORDER BY u.created_at DESC
            """
        )
        return [
            VoterSummary(id=r["id"], name=r["name"], email=r["email"],
                         votes_cast=r["votes_cast"], created_at=r["created_at"])
            for r in rows
        ]

    @_translated
    async def delete_user(self, user_id, role):
        result = await self.conn.execute(
            "DELETE FROM users WHERE id = $1 AND role = $2", user_id, role.value
        )
        return result != "DELETE 0"


class PostgresStore(LedgerStore):
    """Store backed by the shared ``Database`` pool."""

    @asynccontextmanager
    async def connection(self):
        try:
            async with Database.connection() as conn:
                yield PostgresSession(conn)
        except _DRIVER_ERRORS as e:
            raise _storage_failure(e)

    @asynccontextmanager
    async def transaction(self):
        try:
            async with Database.transaction() as conn:
                yield PostgresSession(conn)
        except _DRIVER_ERRORS as e:
            raise _storage_failure(e)

    async def close(self) -> None:
        await Database.close()
