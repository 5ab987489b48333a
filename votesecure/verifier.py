"""
Integrity verification.

Recomputes the local digests of persisted elections and votes and compares
them with what was stored. A mismatch means the row was altered after it was
written (or a software defect); it is logged for operators and reported,
never repaired.
"""
import logging
from dataclasses import dataclass, field

from .models import Election, Verification, Vote
from .security import election_digest, vote_digest, vote_fingerprint

logger = logging.getLogger(__name__)


@dataclass
class VoteReport:
    vote_id: int
    result: Verification
    integrity_hash: str
    vote_hash: str


@dataclass
class ElectionAudit:
    election_id: int
    election: Verification
    votes: list[VoteReport] = field(default_factory=list)

    @property
    def summary(self) -> dict:
        counts = {v.value: 0 for v in Verification}
        for report in self.votes:
            counts[report.result.value] += 1
        counts["total_votes"] = len(self.votes)
        return counts

    @property
    def valid(self) -> bool:
        return self.election != Verification.MISMATCHED and all(
            r.result != Verification.MISMATCHED for r in self.votes
        )


def _classify(expected: str, content_hash: str, integrity_hash: str, anchored: bool) -> Verification:
    if expected != content_hash:
        return Verification.MISMATCHED
    if anchored:
        # an anchored record carries a transaction id, not its own digest
        if not integrity_hash or integrity_hash == expected:
            return Verification.MISMATCHED
        return Verification.ANCHORED
    if integrity_hash != expected:
        return Verification.MISMATCHED
    return Verification.LOCAL_ONLY


def verify_election(election: Election) -> Verification:
    expected = election_digest(
        election.title, election.description, election.start, election.end, election.created_by
    )
    result = _classify(expected, election.content_hash, election.integrity_hash, election.anchored)
    if result == Verification.MISMATCHED:
        logger.error(f"Integrity mismatch on election {election.id}")
    return result


def verify_vote(vote: Vote) -> Verification:
    if vote.vote_hash != vote_fingerprint(vote.voter_id, vote.candidate_id, vote.cast_at):
        logger.error(f"Vote fingerprint mismatch on vote {vote.id}")
        return Verification.MISMATCHED

    expected = vote_digest(vote.election_id, vote.candidate_id, vote.voter_id, vote.cast_at)
    result = _classify(expected, vote.content_hash, vote.integrity_hash, vote.anchored)
    if result == Verification.MISMATCHED:
        logger.error(f"Integrity mismatch on vote {vote.id}")
    return result


def audit_election(election: Election, votes: list[Vote]) -> ElectionAudit:
    """Verify an election and every vote cast in it."""
    return ElectionAudit(
        election_id=election.id,
        election=verify_election(election),
        votes=[
            VoteReport(
                vote_id=v.id,
                result=verify_vote(v),
                integrity_hash=v.integrity_hash,
                vote_hash=v.vote_hash,
            )
            for v in votes
        ],
    )
