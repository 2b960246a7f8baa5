"""
Batch Aggregates.

Batch counters and amounts are always derived from member claims; nothing
writes them by hand.
"""

from collections import OrderedDict
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nhis_claims.core.enums import ClaimDecision
from nhis_claims.models.batch import Batch
from nhis_claims.models.claim import Claim
from nhis_claims.schemas.batch import ClaimStatistics, RejectionReasonSummary
from nhis_claims.utils.errors import NotFoundError

UNSPECIFIED_REASON = "Unspecified"


def compute_statistics(claims: Iterable[Claim]) -> ClaimStatistics:
    """Count and sum claims by decision."""
    stats = ClaimStatistics()
    for claim in claims:
        total = claim.total_cost or Decimal("0")
        stats.total_claims += 1
        stats.total_amount += total
        if claim.decision == ClaimDecision.APPROVED:
            stats.approved_claims += 1
            stats.approved_amount += claim.approved_amount or Decimal("0")
        elif claim.decision == ClaimDecision.REJECTED:
            stats.rejected_claims += 1
            stats.rejected_amount += total
        else:
            stats.pending_claims += 1
    return stats


def rejection_breakdown(claims: Iterable[Claim]) -> list[RejectionReasonSummary]:
    """
    Group rejected claims by reason.

    Rows are ordered by count descending, then by first appearance.
    """
    groups: "OrderedDict[str, RejectionReasonSummary]" = OrderedDict()
    for claim in claims:
        if claim.decision != ClaimDecision.REJECTED:
            continue
        reason = (claim.reason_for_rejection or "").strip() or UNSPECIFIED_REASON
        row = groups.get(reason)
        if row is None:
            row = groups[reason] = RejectionReasonSummary(
                reason=reason, count=0, amount=Decimal("0")
            )
        row.count += 1
        row.amount += claim.total_cost or Decimal("0")
    return sorted(groups.values(), key=lambda r: -r.count)


def apply_statistics(batch: Batch, stats: ClaimStatistics) -> None:
    batch.total_claims = stats.total_claims
    batch.total_amount = stats.total_amount
    batch.approved_claims = stats.approved_claims
    batch.rejected_claims = stats.rejected_claims
    batch.approved_amount = stats.approved_amount


async def load_batch(
    session: AsyncSession,
    batch_id: UUID,
    for_update: bool = False,
) -> Batch:
    """Load a batch, optionally locking the row, or raise NotFoundError."""
    query = select(Batch).where(Batch.id == batch_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(query)
    batch = result.scalar_one_or_none()
    if batch is None:
        raise NotFoundError(f"Batch not found: {batch_id}", entity_id=batch_id)
    return batch


async def load_batch_claims(session: AsyncSession, batch_id: UUID) -> Sequence[Claim]:
    result = await session.execute(
        select(Claim)
        .where(Claim.batch_id == batch_id)
        .order_by(Claim.created_at, Claim.unique_claim_id)
    )
    return result.scalars().all()


async def recompute_batch_aggregates(
    session: AsyncSession,
    batch: Batch,
) -> Sequence[Claim]:
    """
    Recompute a batch's aggregates from its member claims.

    Pending (unflushed) membership changes are flushed first so the query
    sees them.
    """
    await session.flush()
    claims = await load_batch_claims(session, batch.id)
    apply_statistics(batch, compute_statistics(claims))
    return claims
