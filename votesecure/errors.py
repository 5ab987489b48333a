"""
Error taxonomy.

Every rejection carries a machine-readable ``kind`` and a human-readable
message. Business-rule errors are raised before any mutation; infrastructure
errors (``StorageFailure``) abort the enclosing transaction.
"""
from __future__ import annotations


class VoteSecureError(Exception):
    """Base class for all errors raised by the core."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# -- Caller errors ------------------------------------------------------------

class ValidationError(VoteSecureError):
    """Bad input shape or content; the operation was not attempted."""

    kind = "validation_error"


class Forbidden(VoteSecureError):
    """The caller's role does not match the operation's required role."""

    kind = "forbidden"

    def __init__(self, required_role: str):
        super().__init__(f"{required_role.capitalize()} access required")
        self.required_role = required_role


class Unauthorized(VoteSecureError):
    """Missing, malformed or expired bearer token."""

    kind = "unauthorized"


class NotFound(VoteSecureError):
    kind = "not_found"


# -- Business-rule rejections -------------------------------------------------

class ElectionNotActive(VoteSecureError):
    kind = "election_not_active"

    def __init__(self, status: str):
        super().__init__(f"Election is not active (status: {status})")
        self.status = status


class InvalidCandidate(VoteSecureError):
    kind = "invalid_candidate"

    def __init__(self, message: str = "Candidate does not belong to this election"):
        super().__init__(message)


class DuplicateVote(VoteSecureError):
    kind = "duplicate_vote"

    def __init__(self, message: str = "You have already voted in this election"):
        super().__init__(message)


class ElectionHasVotes(VoteSecureError):
    kind = "election_has_votes"

    def __init__(self, message: str = "Cannot delete election with existing votes"):
        super().__init__(message)


class VoterHasVotes(VoteSecureError):
    kind = "voter_has_votes"

    def __init__(self, message: str = "Cannot delete voter who has cast votes"):
        super().__init__(message)


# -- Infrastructure -----------------------------------------------------------

class AnchoringUnavailable(VoteSecureError):
    """The ledger oracle could not anchor a record.

    Never surfaced to callers: the anchoring provider logs it and degrades
    to the local digest.
    """

    kind = "anchoring_unavailable"


class StorageFailure(VoteSecureError):
    """The backing store failed; nothing was committed.

    Safe to retry for reads. A failed ``cast_vote`` must not be retried
    blindly: re-check for an existing vote first.
    """

    kind = "storage_failure"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)


class ConstraintViolation(StorageFailure):
    """A storage-layer constraint rejected a write.

    Raised by store implementations; the ledger translates the ones it owns
    (``unique_vote``) into business errors.
    """

    kind = "constraint_violation"

    def __init__(self, constraint: str | None):
        super().__init__(f"Constraint violated: {constraint}")
        self.constraint = constraint
