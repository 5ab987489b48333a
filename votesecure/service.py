"""
Ledger Service - JSON API over the vote ledger.

Thin transport layer: it authenticates the caller, parses the request and
hands off to ``VoteLedger``. All business rules live in the ledger.

Endpoint groups:
  1. Elections  - create, list, get, delete, results, forced status refresh
  2. Voting     - cast vote, voting history
  3. Integrity  - verify a vote, audit an election
  4. Admin      - dashboard statistics, voter listing and deletion

Callers present an HS256 bearer token carrying ``userId`` and ``role``;
tokens are issued by the identity service, this service only verifies them.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import config
from .anchoring import build_anchoring
from .database import Database, ensure_schema
from .errors import (
    DuplicateVote, ElectionHasVotes, ElectionNotActive, Forbidden,
    InvalidCandidate, NotFound, StorageFailure, Unauthorized,
    ValidationError, VoterHasVotes, VoteSecureError,
)
from .ledger import ElectionView, VoteLedger
from .models import Identity, NewCandidate
from .postgres import PostgresStore
from .schemas import (
    CandidateOut, CastVoteRequest, DashboardStats, ElectionCreate,
    ElectionCreated, ElectionOut, ElectionResults, ElectionVerification, ErrorResponse,
    HealthResponse, MessageResponse, ResultOption, StatusEntry, StatusRefresh,
    VoteHistoryOut, VoteResponse, VoterOut, VoteVerification,
)
from .security import decode_identity

logger = logging.getLogger("ledger-service")

_HTTP_STATUS = {
    ValidationError: 400,
    Unauthorized: 401,
    Forbidden: 403,
    NotFound: 404,
    ElectionNotActive: 400,
    InvalidCandidate: 400,
    DuplicateVote: 409,
    ElectionHasVotes: 400,
    VoterHasVotes: 400,
}


def _errors(*codes: int) -> dict:
    """OpenAPI entries for the error bodies a route can answer with."""
    return {code: {"model": ErrorResponse} for code in (401, *codes, 500)}


# -- Lifespan -----------------------------------------------------------------

@asynccontextmanager
async def lifespan(application: FastAPI):
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    await Database.get_pool()
    try:
        await ensure_schema()
    except Exception as e:
        # Keep serving; operations will surface storage errors on their own.
        logger.error(f"Schema bootstrap failed at startup: {e}")

    anchoring = build_anchoring(config.LEDGER_ORACLE_URL, config.LEDGER_ORACLE_TIMEOUT)
    store = PostgresStore()
    application.state.ledger = VoteLedger(store, anchoring)
    yield
    await anchoring.aclose()
    await store.close()


app = FastAPI(
    title="Ledger Service",
    description="Election lifecycle, one-vote-per-voter casting and integrity verification",
    lifespan=lifespan,
)


# -- Error handling -----------------------------------------------------------

@app.exception_handler(VoteSecureError)
async def vote_secure_error_handler(request: Request, exc: VoteSecureError):
    if isinstance(exc, StorageFailure):
        # message is already opaque; the cause was logged by the store
        return JSONResponse(status_code=500, content={"error": "Internal server error",
                                                      "kind": StorageFailure.kind})
    status_code = _HTTP_STATUS.get(type(exc), 400)
    return JSONResponse(status_code=status_code, content={"error": exc.message, "kind": exc.kind})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = sorted({".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()} - {""})
    msg = f"Invalid or missing fields: {', '.join(fields)}" if fields else "Invalid request"
    return JSONResponse(status_code=400, content={"error": msg, "kind": ValidationError.kind})


# -- Dependencies -------------------------------------------------------------

def get_ledger(request: Request) -> VoteLedger:
    return request.app.state.ledger


def current_identity(authorization: str | None = Header(default=None)) -> Identity:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthorized("Access token required")
    return decode_identity(authorization.split(" ", 1)[1].strip())


# -- Helpers ------------------------------------------------------------------

def _election_out(view: ElectionView) -> ElectionOut:
    e = view.election
    descriptions = {c.id: c.description for c in view.candidates}
    hashes = {c.id: c.integrity_hash for c in view.candidates}
    return ElectionOut(
        id=e.id,
        title=e.title,
        description=e.description,
        start_date=e.start,
        end_date=e.end,
        status=e.status.value,
        created_by=e.created_by,
        blockchain_hash=e.integrity_hash,
        anchored=e.anchored,
        total_votes=view.tally.total_votes,
        unique_voters=view.tally.unique_voters,
        candidates=[
            CandidateOut(
                id=c.candidate_id,
                name=c.name,
                description=descriptions.get(c.candidate_id),
                vote_count=c.vote_count,
                percentage=c.percentage,
                integrity_hash=hashes.get(c.candidate_id, ""),
            )
            for c in view.tally.candidates
        ],
    )


# ==========================================================================
# HEALTH
# ==========================================================================

@app.get("/health", response_model=HealthResponse)
async def health():
    return {"status": "healthy", "service": "ledger"}


# ==========================================================================
# 1. ELECTIONS
# ==========================================================================

@app.post("/api/elections", response_model=ElectionCreated, status_code=201,
          responses=_errors(400, 403))
async def create_election(data: ElectionCreate,
                          identity: Identity = Depends(current_identity),
                          ledger: VoteLedger = Depends(get_ledger)):
    election_id = await ledger.create_election(
        identity,
        title=data.title,
        description=data.description,
        start=data.start_date,
        end=data.end_date,
        candidates=[NewCandidate(name=c.name, description=c.description) for c in data.candidates],
    )
    view = await ledger.get_election(election_id)
    return ElectionCreated(
        message="Election created successfully",
        election_id=election_id,
        blockchain_hash=view.election.integrity_hash,
        anchored=view.election.anchored,
    )


@app.get("/api/elections", response_model=list[ElectionOut], responses=_errors())
async def list_elections(identity: Identity = Depends(current_identity),
                         ledger: VoteLedger = Depends(get_ledger)):
    """All elections with fresh statuses and real-time vote counts."""
    return [_election_out(v) for v in await ledger.list_elections()]


@app.post("/api/elections/update-status", response_model=StatusRefresh, responses=_errors())
async def update_statuses(identity: Identity = Depends(current_identity),
                          ledger: VoteLedger = Depends(get_ledger)):
    elections = await ledger.refresh_statuses()
    return StatusRefresh(
        message="Status updated",
        elections=[StatusEntry(id=e.id, title=e.title, status=e.status.value) for e in elections],
    )


@app.get("/api/elections/{election_id}", response_model=ElectionOut, responses=_errors(404))
async def get_election(election_id: int,
                       identity: Identity = Depends(current_identity),
                       ledger: VoteLedger = Depends(get_ledger)):
    return _election_out(await ledger.get_election(election_id))


@app.get("/api/elections/{election_id}/results", response_model=ElectionResults,
         responses=_errors(404))
async def get_results(election_id: int,
                      identity: Identity = Depends(current_identity),
                      ledger: VoteLedger = Depends(get_ledger)):
    view = await ledger.get_election(election_id)
    return ElectionResults(
        election_id=election_id,
        status=view.election.status.value,
        total_votes=view.tally.total_votes,
        unique_voters=view.tally.unique_voters,
        results=[
            ResultOption(candidate_id=c.candidate_id, name=c.name,
                         vote_count=c.vote_count, percentage=c.percentage)
            for c in view.tally.candidates
        ],
    )


@app.delete("/api/elections/{election_id}", response_model=MessageResponse,
            responses=_errors(400, 403, 404))
async def delete_election(election_id: int,
                          identity: Identity = Depends(current_identity),
                          ledger: VoteLedger = Depends(get_ledger)):
    await ledger.delete_election(identity, election_id)
    return {"message": "Election deleted successfully"}


# ==========================================================================
# 2. VOTING
# ==========================================================================

@app.post("/api/vote", response_model=VoteResponse, responses=_errors(400, 403, 404, 409))
async def cast_vote(data: CastVoteRequest,
                    identity: Identity = Depends(current_identity),
                    ledger: VoteLedger = Depends(get_ledger)):
    vote = await ledger.cast_vote(identity, data.election_id, data.candidate_id)
    return VoteResponse(
        message="Vote cast successfully",
        vote_id=vote.id,
        vote_hash=vote.vote_hash,
        blockchain_hash=vote.integrity_hash,
        blockchain_tx=vote.integrity_hash if vote.anchored else None,
    )


@app.get("/api/votes/history", response_model=list[VoteHistoryOut], responses=_errors())
async def voting_history(identity: Identity = Depends(current_identity),
                         ledger: VoteLedger = Depends(get_ledger)):
    return [
        VoteHistoryOut(
            id=h.vote.id,
            election_id=h.vote.election_id,
            candidate_id=h.vote.candidate_id,
            election_title=h.election_title,
            election_description=h.election_description,
            vote_hash=h.vote.vote_hash,
            blockchain_hash=h.vote.integrity_hash,
            anchored=h.vote.anchored,
            cast_at=h.vote.cast_at,
        )
        for h in await ledger.voting_history(identity)
    ]


# ==========================================================================
# 3. INTEGRITY
# ==========================================================================

@app.get("/api/votes/{vote_id}/verify", response_model=VoteVerification,
         responses=_errors(403, 404))
async def verify_vote(vote_id: int,
                      identity: Identity = Depends(current_identity),
                      ledger: VoteLedger = Depends(get_ledger)):
    vote, result = await ledger.verify_vote(identity, vote_id)
    return VoteVerification(
        vote_id=vote.id,
        result=result.value,
        vote_hash=vote.vote_hash,
        blockchain_hash=vote.integrity_hash,
    )


@app.get("/api/elections/{election_id}/verify", response_model=ElectionVerification,
         responses=_errors(403, 404))
async def verify_election(election_id: int,
                          identity: Identity = Depends(current_identity),
                          ledger: VoteLedger = Depends(get_ledger)):
    audit = await ledger.audit_election(identity, election_id)
    return ElectionVerification(
        election_id=audit.election_id,
        election=audit.election.value,
        valid=audit.valid,
        summary=audit.summary,
        votes=[
            VoteVerification(vote_id=r.vote_id, result=r.result.value,
                             vote_hash=r.vote_hash, blockchain_hash=r.integrity_hash)
            for r in audit.votes
        ],
    )


# ==========================================================================
# 4. ADMIN
# ==========================================================================

@app.get("/api/dashboard/stats", response_model=DashboardStats, responses=_errors(403))
async def dashboard_stats(identity: Identity = Depends(current_identity),
                          ledger: VoteLedger = Depends(get_ledger)):
    return await ledger.dashboard_stats(identity)


@app.get("/api/voters", response_model=list[VoterOut], responses=_errors(403))
async def list_voters(identity: Identity = Depends(current_identity),
                      ledger: VoteLedger = Depends(get_ledger)):
    return [
        VoterOut(id=v.id, name=v.name, email=v.email,
                 votes_cast=v.votes_cast, created_at=v.created_at)
        for v in await ledger.list_voters(identity)
    ]


@app.delete("/api/voters/{voter_id}", response_model=MessageResponse,
            responses=_errors(400, 403, 404))
async def delete_voter(voter_id: int,
                       identity: Identity = Depends(current_identity),
                       ledger: VoteLedger = Depends(get_ledger)):
    await ledger.delete_voter(identity, voter_id)
    return {"message": "Voter deleted successfully"}
