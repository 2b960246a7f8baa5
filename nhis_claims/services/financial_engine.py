"""
Financial Reconciliation Engine.

Provides:
- Admin fee and net amount computation for a batch
- Reimbursement totals across batches

Pure computation. Persisting the figures and attaching batches to a
reimbursement is done by ReconciliationService.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from nhis_claims.schemas.financial import BatchFinancials
from nhis_claims.utils.errors import ValidationError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def round_money(amount: Decimal) -> Decimal:
    """Round to the currency minor unit, half-up."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


class FinancialEngine:
    """
    Computes admin fee splits.

    The admin fee percentage is resolved as: explicit override, then the
    batch's own rate, then the configured default.
    """

    def __init__(self, default_admin_fee_percentage: Decimal = Decimal("5.00")):
        self.default_admin_fee_percentage = self.check_percentage(
            default_admin_fee_percentage
        )

    @staticmethod
    def check_percentage(pct: Decimal, entity_id=None) -> Decimal:
        pct = Decimal(pct)
        if pct < 0 or pct > HUNDRED:
            raise ValidationError(
                f"Admin fee percentage must be between 0 and 100, got {pct}",
                field="admin_fee_percentage",
                entity_id=entity_id,
            )
        return pct

    def resolve_percentage(
        self,
        batch_percentage: Optional[Decimal] = None,
        override: Optional[Decimal] = None,
        entity_id=None,
    ) -> Decimal:
        if override is not None:
            return self.check_percentage(override, entity_id)
        if batch_percentage is not None:
            return self.check_percentage(batch_percentage, entity_id)
        return self.default_admin_fee_percentage

    def compute(
        self,
        approved_amount: Decimal,
        batch_percentage: Optional[Decimal] = None,
        override: Optional[Decimal] = None,
        entity_id=None,
    ) -> BatchFinancials:
        """
        Compute admin fee and net amount.

        ``net_amount == approved_amount - admin_fee_amount`` always holds
        exactly, since both sides are derived from the same rounded fee.
        """
        pct = self.resolve_percentage(batch_percentage, override, entity_id)
        approved = Decimal(approved_amount or 0)
        fee = round_money(approved * pct / HUNDRED)
        return BatchFinancials(
            approved_amount=approved,
            admin_fee_percentage=pct,
            admin_fee_amount=fee,
            net_amount=approved - fee,
        )

    def compute_batch_financials(self, batch, override: Optional[Decimal] = None) -> BatchFinancials:
        """Compute financials for a batch-like object."""
        return self.compute(
            batch.approved_amount,
            batch.admin_fee_percentage,
            override,
            entity_id=getattr(batch, "id", None),
        )

    @staticmethod
    def common_percentage(percentages: Iterable[Decimal]) -> Optional[Decimal]:
        """Return the single shared percentage, or None when they differ."""
        distinct = {Decimal(p) for p in percentages}
        return distinct.pop() if len(distinct) == 1 else None


_financial_engine: Optional[FinancialEngine] = None


def get_financial_engine() -> FinancialEngine:
    """Get singleton financial engine configured from settings."""
    global _financial_engine
    if _financial_engine is None:
        from nhis_claims.core.config import get_claims_settings

        _financial_engine = FinancialEngine(
            get_claims_settings().DEFAULT_ADMIN_FEE_PERCENTAGE
        )
    return _financial_engine
