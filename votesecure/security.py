"""
Security utilities.

Covers:
  - Canonical timestamp handling (UTC, millisecond precision)
  - Local integrity digests (SHA-256 over canonical JSON) for elections,
    candidates and votes
  - The voter-side vote fingerprint (``vote_hash``)
  - Bearer-token identity verification (python-jose) and role checks

Digest format
-------------
Defining fields are encoded as compact JSON with sorted keys; datetimes
become integer milliseconds since the Unix epoch. The same fields therefore
always produce the same digest, whichever anchoring path was taken when the
record was written, so every local digest can be recomputed during audit.
"""
import hashlib
import json
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from . import config
from .errors import Forbidden, Unauthorized
from .models import Identity, Role

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

def normalize_timestamp(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime truncated to whole milliseconds.

    Naive datetimes are taken to be UTC already.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=value.microsecond - value.microsecond % 1000)


def to_millis(value: datetime) -> int:
    """Integer milliseconds since the epoch (exact, no float rounding)."""
    return (normalize_timestamp(value) - EPOCH) // _ONE_MS


def utcnow() -> datetime:
    return normalize_timestamp(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Local digests
# ---------------------------------------------------------------------------

def _canonical(value):
    if isinstance(value, datetime):
        return to_millis(value)
    return value


def canonical_digest(fields: dict) -> str:
    """SHA-256 hex digest over the compact, key-sorted JSON of *fields*."""
    payload = json.dumps(
        {k: _canonical(v) for k, v in fields.items()},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def election_fields(title, description, start, end, created_by) -> dict:
    return {
        "title": title,
        "description": description,
        "startDate": start,
        "endDate": end,
        "createdBy": created_by,
    }


def election_digest(title, description, start, end, created_by) -> str:
    return canonical_digest(election_fields(title, description, start, end, created_by))


def candidate_digest(name, election_id) -> str:
    return canonical_digest({"name": name, "electionId": election_id})


def vote_fields(election_id, candidate_id, voter_id, cast_at) -> dict:
    return {
        "electionId": election_id,
        "candidateId": candidate_id,
        "voterId": voter_id,
        "timestamp": cast_at,
    }


def vote_digest(election_id, candidate_id, voter_id, cast_at) -> str:
    return canonical_digest(vote_fields(election_id, candidate_id, voter_id, cast_at))


def vote_fingerprint(voter_id, candidate_id, cast_at) -> str:
    """Voter-side tamper-evident fingerprint: SHA-256 of ``voter-candidate-millis``."""
    data = f"{voter_id}-{candidate_id}-{to_millis(cast_at)}"
    return hashlib.sha256(data.encode()).hexdigest()


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

def decode_identity(token: str) -> Identity:
    """Verify a bearer token and return the caller's identity.

    Raises ``Unauthorized`` for a malformed or expired token.
    """
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError as e:
        msg = "Token expired" if "expired" in str(e).lower() else "Invalid token"
        raise Unauthorized(msg)

    try:
        return Identity(user_id=int(payload["userId"]), role=Role(payload["role"]))
    except (KeyError, TypeError, ValueError):
        raise Unauthorized("Invalid token")


def require_role(identity: Identity, role: Role) -> None:
    if identity.role != role:
        raise Forbidden(role.value)
