"""
Tally aggregation.

Counts are read from the store on every call; nothing is cached between
calls, so a tally always reflects the votes committed when it ran.
"""
from .models import CandidateTally, ElectionStatus, Role, TallyResult


async def tally(session, election_id: int) -> TallyResult:
    """Per-candidate counts for an election, most votes first.

    Every candidate is listed, including those with no votes. Ties keep
    candidate creation order. The total is the sum of the per-candidate
    counts, so the two can never disagree. Counts and distinct voters come
    from a single read, so a vote committed mid-call shows up in both or
    in neither.
    """
    candidates = await session.list_candidates(election_id)
    counts, unique_voters = await session.vote_counts(election_id)

    rows = [
        CandidateTally(candidate_id=c.id, name=c.name, vote_count=counts.get(c.id, 0))
        for c in candidates
    ]
    # list.sort is stable: equal counts stay in creation order
    rows.sort(key=lambda r: r.vote_count, reverse=True)

    total_votes = sum(r.vote_count for r in rows)
    for r in rows:
        pct = (r.vote_count / total_votes * 100) if total_votes > 0 else 0
        r.percentage = round(pct, 2)

    return TallyResult(
        election_id=election_id,
        total_votes=total_votes,
        unique_voters=unique_voters,
        candidates=rows,
    )


async def dashboard_stats(session, elections) -> dict:
    """Admin overview: election counts by status, voters and votes.

    *elections* must already have fresh statuses.
    """
    return {
        "elections": {
            "total_elections": len(elections),
            "active_elections": sum(1 for e in elections if e.status == ElectionStatus.ACTIVE),
            "completed_elections": sum(1 for e in elections if e.status == ElectionStatus.COMPLETED),
        },
        "voters": await session.count_users(Role.VOTER),
        "votes": await session.count_votes(),
    }
