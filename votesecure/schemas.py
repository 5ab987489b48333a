"""
Pydantic schemas - request validation and response serialisation.

Organised by bounded context:
    1. Election    - creation, listing, results
    2. Voting      - vote casting, history
    3. Integrity   - vote and election verification
    4. Admin       - dashboard statistics, voter management
    5. Common      - health, errors

Wire names are camelCase (``startDate``, ``candidateId``); the models accept
either spelling on input.
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ══════════════════════════════════════════════════════════════════════════════
# 1. ELECTION
# ══════════════════════════════════════════════════════════════════════════════

class CandidateIn(_Wire):
    name: str
    description: str | None = None


class ElectionCreate(_Wire):
    # Content rules (placeholder titles, empty candidate lists, date order)
    # are enforced by the ledger so they surface as validation errors.
    title: str
    description: str | None = None
    start_date: datetime = Field(alias="startDate")
    end_date: datetime = Field(alias="endDate")
    candidates: list[CandidateIn] = Field(default_factory=list)


class ElectionCreated(_Wire):
    message: str
    election_id: int = Field(alias="electionId")
    blockchain_hash: str = Field(alias="blockchainHash")
    anchored: bool


class CandidateOut(_Wire):
    id: int
    name: str
    description: str | None = None
    vote_count: int
    percentage: float
    integrity_hash: str = Field(alias="blockchainHash")


class ElectionOut(_Wire):
    id: int
    title: str
    description: str | None = None
    start_date: datetime = Field(alias="startDate")
    end_date: datetime = Field(alias="endDate")
    status: str
    created_by: int | None = Field(default=None, alias="createdBy")
    blockchain_hash: str = Field(alias="blockchainHash")
    anchored: bool
    total_votes: int = Field(alias="totalVotes")
    unique_voters: int = Field(alias="uniqueVoters")
    candidates: list[CandidateOut]


class ResultOption(_Wire):
    candidate_id: int = Field(alias="candidateId")
    name: str
    vote_count: int = Field(alias="voteCount")
    percentage: float


class ElectionResults(_Wire):
    election_id: int = Field(alias="electionId")
    status: str
    total_votes: int = Field(alias="totalVotes")
    unique_voters: int = Field(alias="uniqueVoters")
    results: list[ResultOption]


class StatusEntry(_Wire):
    id: int
    title: str
    status: str


class StatusRefresh(_Wire):
    message: str
    elections: list[StatusEntry]


# ══════════════════════════════════════════════════════════════════════════════
# 2. VOTING
# ══════════════════════════════════════════════════════════════════════════════

class CastVoteRequest(_Wire):
    election_id: int = Field(alias="electionId")
    candidate_id: int = Field(alias="candidateId")


class VoteResponse(_Wire):
    message: str
    vote_id: int = Field(alias="voteId")
    vote_hash: str = Field(alias="voteHash")
    blockchain_hash: str = Field(alias="blockchainHash")
    blockchain_tx: str | None = Field(default=None, alias="blockchainTx")


class VoteHistoryOut(_Wire):
    id: int
    election_id: int = Field(alias="electionId")
    candidate_id: int = Field(alias="candidateId")
    election_title: str = Field(alias="electionTitle")
    election_description: str | None = Field(default=None, alias="electionDescription")
    vote_hash: str = Field(alias="voteHash")
    blockchain_hash: str = Field(alias="blockchainHash")
    anchored: bool
    cast_at: datetime = Field(alias="castAt")


# ══════════════════════════════════════════════════════════════════════════════
# 3. INTEGRITY
# ══════════════════════════════════════════════════════════════════════════════

class VoteVerification(_Wire):
    vote_id: int = Field(alias="voteId")
    result: str
    vote_hash: str = Field(alias="voteHash")
    blockchain_hash: str = Field(alias="blockchainHash")


class ElectionVerification(_Wire):
    election_id: int = Field(alias="electionId")
    election: str
    valid: bool
    summary: dict[str, int]
    votes: list[VoteVerification]


# ══════════════════════════════════════════════════════════════════════════════
# 4. ADMIN
# ══════════════════════════════════════════════════════════════════════════════

class ElectionCounts(_Wire):
    total_elections: int
    active_elections: int
    completed_elections: int


class DashboardStats(_Wire):
    elections: ElectionCounts
    voters: int
    votes: int


class VoterOut(_Wire):
    id: int
    name: str
    email: str
    votes_cast: int
    created_at: datetime | None = None


# ══════════════════════════════════════════════════════════════════════════════
# 5. COMMON
# ══════════════════════════════════════════════════════════════════════════════

class HealthResponse(BaseModel):
    status: str
    service: str


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    error: str
    kind: str
