"""
Store interface.

The ledger talks to persistence only through these two abstractions, so the
relational backend can be swapped (``postgres.PostgresStore`` in production,
an in-memory double in the test suite).

Contract every implementation must honour:
  - ``transaction()`` yields a session whose writes commit together on a
    clean exit and are all discarded if the block raises.
  - ``connection()`` yields a session whose statements commit individually.
  - ``insert_vote`` is guarded by a uniqueness constraint on
    ``(election_id, voter_id)``; a violation raises
    ``ConstraintViolation(VOTE_UNIQUE_CONSTRAINT)``; a vote whose election,
    candidate or voter no longer exists raises ``ConstraintViolation`` with
    the matching foreign key name.
  - Deleting an election cascades to its candidates.
  - Infrastructure errors surface as ``StorageFailure``.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime

from .models import (
    Candidate, Election, ElectionStatus, Role, Vote,
    VoteHistoryEntry, VoterSummary,
)

VOTE_UNIQUE_CONSTRAINT = "unique_vote"
# Foreign keys guarding a vote insert (PostgreSQL default names)
VOTE_ELECTION_FK = "votes_election_id_fkey"
VOTE_CANDIDATE_FK = "votes_candidate_id_fkey"
VOTE_VOTER_FK = "votes_voter_id_fkey"


class LedgerSession(ABC):
    """Unit of work against the store."""

    # -- Elections ------------------------------------------------------------

    @abstractmethod
    async def insert_election(self, title: str, description: str | None,
                              start: datetime, end: datetime,
                              status: ElectionStatus, created_by: int,
                              integrity_hash: str, content_hash: str,
                              anchored: bool) -> int:
        ...

    @abstractmethod
    async def get_election(self, election_id: int) -> Election | None:
        ...

    @abstractmethod
    async def list_elections(self) -> list[Election]:
        """All elections, newest first."""

    @abstractmethod
    async def update_election_status(self, election_id: int, status: ElectionStatus) -> None:
        ...

    @abstractmethod
    async def delete_election(self, election_id: int) -> bool:
        """Delete the election and its candidates; False if it did not exist."""

    # -- Candidates -----------------------------------------------------------

    @abstractmethod
    async def insert_candidate(self, election_id: int, name: str,
                               description: str | None, integrity_hash: str) -> int:
        ...

    @abstractmethod
    async def get_candidate(self, candidate_id: int) -> Candidate | None:
        ...

    @abstractmethod
    async def list_candidates(self, election_id: int) -> list[Candidate]:
        """Candidates of an election in creation order."""

    # -- Votes ----------------------------------------------------------------

    @abstractmethod
    async def find_vote(self, election_id: int, voter_id: int) -> Vote | None:
        ...

    @abstractmethod
    async def insert_vote(self, election_id: int, candidate_id: int, voter_id: int,
                          vote_hash: str, integrity_hash: str, content_hash: str,
                          anchored: bool, cast_at: datetime) -> Vote:
        ...

    @abstractmethod
    async def get_vote(self, vote_id: int) -> Vote | None:
        ...

    @abstractmethod
    async def list_votes(self, election_id: int) -> list[Vote]:
        """Votes of an election in insertion order."""

    @abstractmethod
    async def count_votes(self, election_id: int | None = None,
                          voter_id: int | None = None) -> int:
        ...

    @abstractmethod
    async def vote_counts(self, election_id: int) -> tuple[dict[int, int], int]:
        """Vote count per candidate id and the number of distinct voters.

        Both come from one read of the votes, so they describe the same
        moment. Candidates without votes may be omitted from the mapping.
        """

    @abstractmethod
    async def voting_history(self, voter_id: int) -> list[VoteHistoryEntry]:
        """Votes cast by *voter_id*, newest first."""

    # -- Users ----------------------------------------------------------------

    @abstractmethod
    async def count_users(self, role: Role) -> int:
        ...

    @abstractmethod
    async def list_voters(self) -> list[VoterSummary]:
        """Voters with their vote counts, newest first."""

    @abstractmethod
    async def delete_user(self, user_id: int, role: Role) -> bool:
        """Delete a user holding *role*; False if no such user."""


class LedgerStore(ABC):

    @abstractmethod
    def connection(self) -> AbstractAsyncContextManager[LedgerSession]:
        ...

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[LedgerSession]:
        ...

    async def close(self) -> None:
        pass
