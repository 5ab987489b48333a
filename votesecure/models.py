"""
Domain records.

Plain dataclasses populated by the store implementations. Timestamps are
always timezone-aware UTC datetimes truncated to millisecond precision (see
``security.normalize_timestamp``).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    VOTER = "voter"


class ElectionStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"


class Verification(str, Enum):
    ANCHORED = "anchored"
    LOCAL_ONLY = "local_only"
    MISMATCHED = "mismatched"


@dataclass(frozen=True)
class Identity:
    """Authenticated caller, as supplied by the identity collaborator."""

    user_id: int
    role: Role


@dataclass
class User:
    id: int
    name: str
    email: str
    role: Role
    ledger_address: str | None = None
    created_at: datetime | None = None


@dataclass
class Election:
    id: int
    title: str
    description: str | None
    start: datetime
    end: datetime
    status: ElectionStatus
    created_by: int
    integrity_hash: str
    content_hash: str
    anchored: bool = False
    created_at: datetime | None = None


@dataclass
class Candidate:
    id: int
    election_id: int
    name: str
    description: str | None
    integrity_hash: str
    created_at: datetime | None = None


@dataclass
class Vote:
    id: int
    election_id: int
    candidate_id: int
    voter_id: int
    vote_hash: str
    integrity_hash: str
    content_hash: str
    anchored: bool
    cast_at: datetime


@dataclass
class NewCandidate:
    """Candidate as submitted with a create-election request."""

    name: str
    description: str | None = None


@dataclass
class VoteHistoryEntry:
    vote: Vote
    election_title: str
    election_description: str | None


@dataclass
class VoterSummary:
    id: int
    name: str
    email: str
    votes_cast: int
    created_at: datetime | None = None


@dataclass
class AnchorResult:
    """Outcome of an anchoring attempt.

    ``integrity_hash`` is the oracle transaction id when ``anchored`` is true,
    otherwise the local digest. ``content_hash`` is always the local digest.
    """

    integrity_hash: str
    content_hash: str
    anchored: bool


@dataclass
class CandidateTally:
    candidate_id: int
    name: str
    vote_count: int
    percentage: float = 0.0


@dataclass
class TallyResult:
    election_id: int
    total_votes: int
    unique_voters: int
    candidates: list[CandidateTally] = field(default_factory=list)

    def as_counts(self) -> dict[int, int]:
        return {c.candidate_id: c.vote_count for c in self.candidates}
