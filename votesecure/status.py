"""
Election status resolution.

An election's canonical status is a pure function of the clock and its
start/end bounds. The ``status`` column is only a cache of that value: it is
refreshed whenever an election is read or voted on, and decisions within a
request always use the freshly computed value.
"""
import logging
from datetime import datetime

from .errors import StorageFailure
from .models import Election, ElectionStatus
from .security import normalize_timestamp

logger = logging.getLogger(__name__)


def resolve(now: datetime, start: datetime, end: datetime) -> ElectionStatus:
    """Map ``(now, start, end)`` to the canonical status.

    ``now < start`` is upcoming, ``start <= now < end`` is active and
    ``now >= end`` is completed.
    """
    now = normalize_timestamp(now)
    if now < normalize_timestamp(start):
        return ElectionStatus.UPCOMING
    if now < normalize_timestamp(end):
        return ElectionStatus.ACTIVE
    return ElectionStatus.COMPLETED


async def refresh(session, election: Election, now: datetime) -> ElectionStatus:
    """Resolve the status of *election* and write it back if the cache is stale.

    The write is best-effort. A storage failure is logged and the computed
    status is still returned, and set on *election*, for the caller to use.
    """
    status = resolve(now, election.start, election.end)
    if status != election.status:
        try:
            await session.update_election_status(election.id, status)
        except StorageFailure as e:
            logger.warning(f"Status cache update failed for election {election.id}: {e}")
        election.status = status
    return status


async def refresh_all(session, now: datetime) -> list[Election]:
    """Refresh every election's stored status and return the elections."""
    elections = await session.list_elections()
    for election in elections:
        await refresh(session, election, now)
    return elections
