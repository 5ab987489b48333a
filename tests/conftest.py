"""
Shared fixtures.

The core is exercised against ``MemoryStore``, an in-memory double of the
relational store that honours the same contract as ``PostgresStore``:
transactions roll back on error, ``unique_vote`` guards (election, voter),
candidates cascade with their election and votes block deletion of the rows
they reference. Every session call yields to the event loop first, so
concurrent ``cast_vote`` calls genuinely interleave between the duplicate
pre-check and the insert.
"""
import asyncio
import itertools
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from votesecure.anchoring import LocalAnchoring
from votesecure.errors import ConstraintViolation, StorageFailure
from votesecure.ledger import VoteLedger
from votesecure.models import (
    Candidate, Election, Identity, Role, User, Vote, VoteHistoryEntry, VoterSummary,
)
from votesecure.store import (
    VOTE_CANDIDATE_FK, VOTE_ELECTION_FK, VOTE_UNIQUE_CONSTRAINT, VOTE_VOTER_FK,
    LedgerSession, LedgerStore,
)

T = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


class MemorySession(LedgerSession):

    def __init__(self, store: "MemoryStore", undo: list | None):
        self.store = store
        self.undo = undo

    def _on_rollback(self, fn):
        if self.undo is not None:
            self.undo.append(fn)

    # -- Elections ------------------------------------------------------------

    async def insert_election(self, title, description, start, end, status,
                              created_by, integrity_hash, content_hash, anchored):
        await asyncio.sleep(0)
        s = self.store
        election_id = next(s.election_ids)
        s.elections[election_id] = Election(
            id=election_id, title=title, description=description, start=start, end=end,
            status=status, created_by=created_by, integrity_hash=integrity_hash,
            content_hash=content_hash, anchored=anchored, created_at=s.tick(),
        )
        self._on_rollback(lambda: s.elections.pop(election_id, None))
        return election_id

    async def get_election(self, election_id):
        await asyncio.sleep(0)
        e = self.store.elections.get(election_id)
        return replace(e) if e else None

    async def list_elections(self):
        await asyncio.sleep(0)
        return [replace(e) for e in sorted(self.store.elections.values(),
                                           key=lambda e: e.id, reverse=True)]

    async def update_election_status(self, election_id, status):
        await asyncio.sleep(0)
        s = self.store
        if s.fail_status_updates:
            raise StorageFailure()
        s.status_writes += 1
        e = s.elections[election_id]
        previous = e.status
        e.status = status
        self._on_rollback(lambda: setattr(e, "status", previous))

    async def delete_election(self, election_id):
        await asyncio.sleep(0)
        s = self.store
        if election_id not in s.elections:
            return False
        if any(v.election_id == election_id for v in s.votes.values()):
            raise ConstraintViolation(VOTE_ELECTION_FK)
        election = s.elections.pop(election_id)
        removed = {cid: c for cid, c in s.candidates.items() if c.election_id == election_id}
        for cid in removed:
            del s.candidates[cid]

        def restore():
            s.elections[election_id] = election
            s.candidates.update(removed)

        self._on_rollback(restore)
        return True

    # -- Candidates -----------------------------------------------------------

    async def insert_candidate(self, election_id, name, description, integrity_hash):
        await asyncio.sleep(0)
        s = self.store
        s.candidate_inserts += 1
        if s.fail_candidate_insert_at == s.candidate_inserts:
            raise StorageFailure()
        if election_id not in s.elections:
            raise ConstraintViolation("candidates_election_id_fkey")
        candidate_id = next(s.candidate_ids)
        s.candidates[candidate_id] = Candidate(
            id=candidate_id, election_id=election_id, name=name, description=description,
            integrity_hash=integrity_hash, created_at=s.tick(),
        )
        self._on_rollback(lambda: s.candidates.pop(candidate_id, None))
        return candidate_id

    async def get_candidate(self, candidate_id):
        await asyncio.sleep(0)
        c = self.store.candidates.get(candidate_id)
        return replace(c) if c else None

    async def list_candidates(self, election_id):
        await asyncio.sleep(0)
        return [replace(c) for c in sorted(self.store.candidates.values(), key=lambda c: c.id)
                if c.election_id == election_id]

    # -- Votes ----------------------------------------------------------------

    async def find_vote(self, election_id, voter_id):
        await asyncio.sleep(0)
        for v in self.store.votes.values():
            if v.election_id == election_id and v.voter_id == voter_id:
                return replace(v)
        return None

    async def insert_vote(self, election_id, candidate_id, voter_id, vote_hash,
                          integrity_hash, content_hash, anchored, cast_at):
        await asyncio.sleep(0)
        s = self.store
        # check and insert without yielding: this is the storage-layer guard
        if election_id not in s.elections:
            raise ConstraintViolation(VOTE_ELECTION_FK)
        if candidate_id not in s.candidates:
            raise ConstraintViolation(VOTE_CANDIDATE_FK)
        if voter_id not in s.users:
            raise ConstraintViolation(VOTE_VOTER_FK)
        if any(v.election_id == election_id and v.voter_id == voter_id for v in s.votes.values()):
            s.unique_rejections += 1
            raise ConstraintViolation(VOTE_UNIQUE_CONSTRAINT)
        vote_id = next(s.vote_ids)
        vote = Vote(
            id=vote_id, election_id=election_id, candidate_id=candidate_id, voter_id=voter_id,
            vote_hash=vote_hash, integrity_hash=integrity_hash, content_hash=content_hash,
            anchored=anchored, cast_at=cast_at,
        )
        s.votes[vote_id] = vote
        self._on_rollback(lambda: s.votes.pop(vote_id, None))
        return replace(vote)

    async def get_vote(self, vote_id):
        await asyncio.sleep(0)
        v = self.store.votes.get(vote_id)
        return replace(v) if v else None

    async def list_votes(self, election_id):
        await asyncio.sleep(0)
        return [replace(v) for v in sorted(self.store.votes.values(), key=lambda v: v.id)
                if v.election_id == election_id]

    async def count_votes(self, election_id=None, voter_id=None):
        await asyncio.sleep(0)
        return sum(
            1 for v in self.store.votes.values()
            if (election_id is None or v.election_id == election_id)
            and (voter_id is None or v.voter_id == voter_id)
        )

    async def vote_counts(self, election_id):
        await asyncio.sleep(0)
        counts, voters = {}, set()
        for v in self.store.votes.values():
            if v.election_id == election_id:
                counts[v.candidate_id] = counts.get(v.candidate_id, 0) + 1
                voters.add(v.voter_id)
        return counts, len(voters)

    async def voting_history(self, voter_id):
        await asyncio.sleep(0)
        s = self.store
        votes = sorted((v for v in s.votes.values() if v.voter_id == voter_id),
                       key=lambda v: (v.cast_at, v.id), reverse=True)
        return [
            VoteHistoryEntry(
                vote=replace(v),
                election_title=s.elections[v.election_id].title,
                election_description=s.elections[v.election_id].description,
            )
            for v in votes
        ]

    # -- Users ----------------------------------------------------------------

    async def count_users(self, role):
        await asyncio.sleep(0)
        return sum(1 for u in self.store.users.values() if u.role == role)

    async def list_voters(self):
        await asyncio.sleep(0)
        s = self.store
        voters = sorted((u for u in s.users.values() if u.role == Role.VOTER),
                        key=lambda u: u.id, reverse=True)
        return [
            VoterSummary(
                id=u.id, name=u.name, email=u.email, created_at=u.created_at,
                votes_cast=sum(1 for v in s.votes.values() if v.voter_id == u.id),
            )
            for u in voters
        ]

    async def delete_user(self, user_id, role):
        await asyncio.sleep(0)
        s = self.store
        user = s.users.get(user_id)
        if user is None or user.role != role:
            return False
        if any(v.voter_id == user_id for v in s.votes.values()):
            raise ConstraintViolation(VOTE_VOTER_FK)
        del s.users[user_id]
        self._on_rollback(lambda: s.users.__setitem__(user_id, user))
        return True


class MemoryStore(LedgerStore):

    def __init__(self):
        self.users: dict[int, User] = {}
        self.elections: dict[int, Election] = {}
        self.candidates: dict[int, Candidate] = {}
        self.votes: dict[int, Vote] = {}
        self.user_ids = itertools.count(1)
        self.election_ids = itertools.count(1)
        self.candidate_ids = itertools.count(1)
        self.vote_ids = itertools.count(1)
        self._ticks = itertools.count()

        # failure injection and counters
        self.fail_candidate_insert_at: int | None = None
        self.fail_status_updates = False
        self.candidate_inserts = 0
        self.status_writes = 0
        self.unique_rejections = 0

    def tick(self) -> datetime:
        return T - timedelta(days=30) + timedelta(seconds=next(self._ticks))

    def add_user(self, name: str, role: Role) -> Identity:
        user_id = next(self.user_ids)
        self.users[user_id] = User(
            id=user_id, name=name, email=f"{name.lower()}@example.org",
            role=role, created_at=self.tick(),
        )
        return Identity(user_id=user_id, role=role)

    def snapshot(self):
        return (
            {k: replace(v) for k, v in self.elections.items()},
            {k: replace(v) for k, v in self.candidates.items()},
            {k: replace(v) for k, v in self.votes.items()},
        )

    @asynccontextmanager
    async def connection(self):
        yield MemorySession(self, None)

    @asynccontextmanager
    async def transaction(self):
        undo = []
        try:
            yield MemorySession(self, undo)
        except BaseException:
            for fn in reversed(undo):
                fn()
            raise


class Clock:
    """Settable clock handed to the ledger."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def run():
    return asyncio.run


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return Clock(T - HOUR)


@pytest.fixture
def ledger(store, clock):
    return VoteLedger(store, LocalAnchoring(), clock=clock)


@pytest.fixture
def admin(store):
    return store.add_user("Admin", Role.ADMIN)


@pytest.fixture
def voters(store):
    return [store.add_user(f"Voter{i}", Role.VOTER) for i in range(1, 6)]
