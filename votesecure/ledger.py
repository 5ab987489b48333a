"""
Vote ledger - election creation, vote casting and the admin operations
around them.

Concurrency model
-----------------
The store is the only serialisation point; no in-process locks are held
across requests, so several service instances can share one database.

Casting a vote is check-then-insert:

    1. refresh status, reject unless active
    2. candidate must belong to the election
    3. reject if (election, voter) already has a vote     <- optimistic
    4. anchor (no transaction open while the oracle is contacted)
    5. insert the vote in its own transaction              <- authoritative

Two requests from the same voter can both pass step 3. The ``unique_vote``
constraint then rejects the second insert, and that violation is reported as
``DuplicateVote`` exactly like the pre-check would have. An election or
candidate deleted between steps 2 and 5 trips a foreign key instead, and
is reported as ``NotFound`` or ``InvalidCandidate``.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from . import tally as tallying
from . import verifier
from .anchoring import AnchoringProvider
from .errors import (
    ConstraintViolation, DuplicateVote, ElectionHasVotes, ElectionNotActive,
    Forbidden, InvalidCandidate, NotFound, ValidationError, VoterHasVotes,
)
from .models import (
    Candidate, Election, ElectionStatus, Identity, NewCandidate, Role,
    TallyResult, Verification, Vote, VoteHistoryEntry, VoterSummary,
)
from .security import candidate_digest, normalize_timestamp, require_role, utcnow, vote_fingerprint
from .status import refresh, refresh_all, resolve
from .store import (
    VOTE_CANDIDATE_FK, VOTE_ELECTION_FK, VOTE_UNIQUE_CONSTRAINT, VOTE_VOTER_FK, LedgerStore,
)
from .verifier import ElectionAudit

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"[-\s]*")


@dataclass
class ElectionView:
    """An election with fresh status, its candidates and live counts."""

    election: Election
    candidates: list[Candidate] = field(default_factory=list)
    tally: TallyResult | None = None


# -- Input validation ---------------------------------------------------------

def is_placeholder(value: str | None) -> bool:
    """True for missing text or text made only of dashes and whitespace."""
    return value is None or _PLACEHOLDER.fullmatch(value) is not None


def _clean_description(value: str | None, message: str) -> str | None:
    """Blank descriptions are stored as NULL; placeholder ones are rejected."""
    if value is None or not value.strip():
        return None
    if is_placeholder(value):
        raise ValidationError(message)
    return value.strip()


def _clean_candidates(candidates) -> list[NewCandidate]:
    if not candidates:
        raise ValidationError("At least one candidate is required")

    cleaned = []
    for c in candidates:
        if isinstance(c, str):
            c = NewCandidate(name=c)
        if is_placeholder(c.name):
            raise ValidationError("All candidates must have valid names")
        description = _clean_description(
            c.description, "Candidate descriptions must be valid or empty"
        )
        cleaned.append(NewCandidate(name=c.name.strip(), description=description))
    return cleaned


class VoteLedger:
    """Entry point for every operation of the core.

    *clock* returns the current time; tests pass a fixed clock.
    """

    def __init__(self, store: LedgerStore, anchoring: AnchoringProvider,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.anchoring = anchoring
        self.clock = clock

    def _now(self) -> datetime:
        return normalize_timestamp(self.clock())

    # ------------------------------------------------------------------
    # Elections
    # ------------------------------------------------------------------

    async def create_election(self, actor: Identity, title: str, description: str | None,
                              start: datetime, end: datetime, candidates) -> int:
        """Validate, anchor, then persist an election and its candidates atomically."""
        require_role(actor, Role.ADMIN)

        if is_placeholder(title):
            raise ValidationError("Valid election title is required")
        title = title.strip()
        description = _clean_description(
            description, "Valid description required or leave empty"
        )
        if start is None or end is None:
            raise ValidationError("Start and end dates are required")
        start = normalize_timestamp(start)
        end = normalize_timestamp(end)
        if end <= start:
            raise ValidationError("End date must be after start date")
        new_candidates = _clean_candidates(candidates)

        anchor = await self.anchoring.anchor_election(
            title, description, start, end, actor.user_id
        )
        status = resolve(self._now(), start, end)

        async with self.store.transaction() as session:
            election_id = await session.insert_election(
                title, description, start, end, status, actor.user_id,
                anchor.integrity_hash, anchor.content_hash, anchor.anchored,
            )
            for c in new_candidates:
                await session.insert_candidate(
                    election_id, c.name, c.description,
                    candidate_digest(c.name, election_id),
                )

        logger.info(
            f"Election {election_id} created by user {actor.user_id} "
            f"with {len(new_candidates)} candidates (anchored={anchor.anchored})"
        )
        return election_id

    async def get_election(self, election_id: int) -> ElectionView:
        async with self.store.connection() as session:
            election = await session.get_election(election_id)
            if election is None:
                raise NotFound("Election not found")
            return await self._view(session, election)

    async def list_elections(self) -> list[ElectionView]:
        async with self.store.connection() as session:
            elections = await refresh_all(session, self._now())
            return [await self._view(session, e, refreshed=True) for e in elections]

    async def refresh_statuses(self) -> list[Election]:
        """Recompute and persist the status of every election."""
        async with self.store.connection() as session:
            return await refresh_all(session, self._now())

    async def _view(self, session, election: Election, refreshed: bool = False) -> ElectionView:
        if not refreshed:
            await refresh(session, election, self._now())
        return ElectionView(
            election=election,
            candidates=await session.list_candidates(election.id),
            tally=await tallying.tally(session, election.id),
        )

    async def delete_election(self, actor: Identity, election_id: int) -> None:
        """Delete an election without votes; its candidates go with it."""
        require_role(actor, Role.ADMIN)
        try:
            async with self.store.transaction() as session:
                if await session.get_election(election_id) is None:
                    raise NotFound("Election not found")
                if await session.count_votes(election_id=election_id) > 0:
                    raise ElectionHasVotes()
                await session.delete_election(election_id)
        except ConstraintViolation:
            # a vote committed between the count and the delete
            raise ElectionHasVotes()
        logger.info(f"Election {election_id} deleted by user {actor.user_id}")

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    async def cast_vote(self, actor: Identity, election_id: int, candidate_id: int) -> Vote:
        require_role(actor, Role.VOTER)
        voter_id = actor.user_id
        cast_at = self._now()

        async with self.store.connection() as session:
            election = await session.get_election(election_id)
            if election is None:
                raise NotFound("Election not found")
            status = await refresh(session, election, cast_at)
            if status != ElectionStatus.ACTIVE:
                raise ElectionNotActive(status.value)

            candidate = await session.get_candidate(candidate_id)
            if candidate is None or candidate.election_id != election_id:
                raise InvalidCandidate()

            if await session.find_vote(election_id, voter_id) is not None:
                raise DuplicateVote()

        vote_hash = vote_fingerprint(voter_id, candidate_id, cast_at)
        anchor = await self.anchoring.anchor_vote(election_id, candidate_id, voter_id, cast_at)

        try:
            async with self.store.transaction() as session:
                vote = await session.insert_vote(
                    election_id, candidate_id, voter_id, vote_hash,
                    anchor.integrity_hash, anchor.content_hash, anchor.anchored, cast_at,
                )
        except ConstraintViolation as e:
            # rows removed between the pre-checks and the insert
            if e.constraint == VOTE_ELECTION_FK:
                raise NotFound("Election not found")
            if e.constraint == VOTE_CANDIDATE_FK:
                raise InvalidCandidate()
            if e.constraint == VOTE_VOTER_FK:
                raise NotFound("Voter not found")
            if e.constraint != VOTE_UNIQUE_CONSTRAINT:
                raise
            logger.warning(
                f"Concurrent duplicate vote by user {voter_id} in election {election_id} "
                f"rejected by {VOTE_UNIQUE_CONSTRAINT}"
            )
            raise DuplicateVote()

        logger.info(
            f"Vote {vote.id} cast in election {election_id} (anchored={anchor.anchored})"
        )
        return vote

    async def tally(self, election_id: int) -> TallyResult:
        async with self.store.connection() as session:
            election = await session.get_election(election_id)
            if election is None:
                raise NotFound("Election not found")
            await refresh(session, election, self._now())
            return await tallying.tally(session, election_id)

    async def voting_history(self, actor: Identity) -> list[VoteHistoryEntry]:
        async with self.store.connection() as session:
            return await session.voting_history(actor.user_id)

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    async def verify_vote(self, actor: Identity, vote_id: int) -> tuple[Vote, Verification]:
        """Voters may verify their own votes; admins may verify any."""
        async with self.store.connection() as session:
            vote = await session.get_vote(vote_id)
        if vote is None:
            raise NotFound("Vote not found")
        if actor.role != Role.ADMIN and vote.voter_id != actor.user_id:
            raise Forbidden(Role.ADMIN.value)
        return vote, verifier.verify_vote(vote)

    async def audit_election(self, actor: Identity, election_id: int) -> ElectionAudit:
        require_role(actor, Role.ADMIN)
        async with self.store.connection() as session:
            election = await session.get_election(election_id)
            if election is None:
                raise NotFound("Election not found")
            votes = await session.list_votes(election_id)
        return verifier.audit_election(election, votes)

    # ------------------------------------------------------------------
    # Admin views
    # ------------------------------------------------------------------

    async def dashboard_stats(self, actor: Identity) -> dict:
        require_role(actor, Role.ADMIN)
        async with self.store.connection() as session:
            elections = await refresh_all(session, self._now())
            return await tallying.dashboard_stats(session, elections)

    async def list_voters(self, actor: Identity) -> list[VoterSummary]:
        require_role(actor, Role.ADMIN)
        async with self.store.connection() as session:
            return await session.list_voters()

    async def delete_voter(self, actor: Identity, voter_id: int) -> None:
        """Delete a voter account, refused once the voter has cast any vote."""
        require_role(actor, Role.ADMIN)
        try:
            async with self.store.transaction() as session:
                if await session.count_votes(voter_id=voter_id) > 0:
                    raise VoterHasVotes()
                if not await session.delete_user(voter_id, Role.VOTER):
                    raise NotFound("Voter not found")
        except ConstraintViolation:
            raise VoterHasVotes()
        logger.info(f"Voter {voter_id} deleted by user {actor.user_id}")
