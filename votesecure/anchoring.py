"""
Hash anchoring.

An anchoring provider turns a record's defining fields into its integrity
hash. Two variants sit behind one interface:

    LocalAnchoring   - the local SHA-256 digest, never anchored
    LedgerAnchoring  - submits the digest to an external ledger oracle and
                       uses the oracle's transaction id; any oracle failure
                       degrades to the local digest

Anchoring is never fatal to the write that requested it. Callers anchor
before opening a storage transaction so a slow oracle never holds locks.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime

import httpx

from .errors import AnchoringUnavailable
from .models import AnchorResult
from .security import canonical_digest, election_fields, to_millis, vote_fields

logger = logging.getLogger(__name__)

OP_CREATE_ELECTION = "createElection"
OP_CAST_VOTE = "castVote"


# -- Oracle -------------------------------------------------------------------

class LedgerOracle(ABC):
    """Opaque external ledger: accepts an operation, returns a transaction id."""

    @abstractmethod
    async def submit(self, operation_type: str, payload: dict) -> str:
        ...

    async def aclose(self) -> None:
        pass


class HttpLedgerOracle(LedgerOracle):
    """Ledger oracle reached over HTTP.

    ``POST {base_url}/submit`` with ``{"operation": ..., "payload": ...}``;
    the reply must carry a ``transaction_id``.
    """

    def __init__(self, base_url: str, timeout: float = 5.0,
                 client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def submit(self, operation_type: str, payload: dict) -> str:
        resp = await self._client.post(
            f"{self.base_url}/submit",
            json={"operation": operation_type, "payload": payload},
        )
        resp.raise_for_status()
        tx_id = resp.json().get("transaction_id")
        if not tx_id:
            raise AnchoringUnavailable("Oracle reply carried no transaction id")
        return str(tx_id)

    async def aclose(self) -> None:
        await self._client.aclose()


# -- Providers ----------------------------------------------------------------

class AnchoringProvider(ABC):

    async def anchor_election(self, title, description, start, end, created_by) -> AnchorResult:
        fields = election_fields(title, description, start, end, created_by)
        return await self._anchor(OP_CREATE_ELECTION, fields)

    async def anchor_vote(self, election_id, candidate_id, voter_id, cast_at) -> AnchorResult:
        fields = vote_fields(election_id, candidate_id, voter_id, cast_at)
        return await self._anchor(OP_CAST_VOTE, fields)

    @abstractmethod
    async def _anchor(self, operation_type: str, fields: dict) -> AnchorResult:
        ...

    async def aclose(self) -> None:
        pass


class LocalAnchoring(AnchoringProvider):
    """No oracle configured: the local digest is the integrity hash."""

    async def _anchor(self, operation_type, fields):
        digest = canonical_digest(fields)
        return AnchorResult(integrity_hash=digest, content_hash=digest, anchored=False)


class LedgerAnchoring(AnchoringProvider):
    """Anchor through *oracle*, falling back to the local digest on failure."""

    def __init__(self, oracle: LedgerOracle, timeout: float = 5.0):
        self.oracle = oracle
        self.timeout = timeout

    async def _anchor(self, operation_type, fields):
        digest = canonical_digest(fields)
        payload = {
            k: to_millis(v) if isinstance(v, datetime) else v
            for k, v in fields.items()
        }
        payload["digest"] = digest
        try:
            tx_id = await asyncio.wait_for(
                self.oracle.submit(operation_type, payload), timeout=self.timeout
            )
        except Exception as e:
            logger.warning(
                f"{AnchoringUnavailable.kind}: {operation_type} not anchored, "
                f"using local digest ({type(e).__name__}: {e})"
            )
            return AnchorResult(integrity_hash=digest, content_hash=digest, anchored=False)

        logger.info(f"{operation_type} anchored: {tx_id}")
        return AnchorResult(integrity_hash=tx_id, content_hash=digest, anchored=True)

    async def aclose(self) -> None:
        await self.oracle.aclose()


def build_anchoring(oracle_url: str | None, timeout: float = 5.0) -> AnchoringProvider:
    """Pick the provider variant from configuration."""
    if not oracle_url:
        logger.info("No ledger oracle configured, using local anchoring")
        return LocalAnchoring()
    return LedgerAnchoring(HttpLedgerOracle(oracle_url, timeout=timeout), timeout=timeout)
