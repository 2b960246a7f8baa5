"""
Cost Variance & Risk Engine.

Provides:
- Per-category variance against the resolved NHIA cost standard
- Risk banding (low / medium / high)
- Compliance score (0-100)
- Review recommendations

Pure computation; never touches persistent state.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from nhis_claims.core.enums import RiskLevel
from nhis_claims.schemas.variance import (
    CategoryVariance,
    CostBreakdown,
    VarianceReport,
)
from nhis_claims.services.cost_standards import resolve_standard

CATEGORIES = ("investigation", "procedure", "medication", "other_services")

RISK_LABELS = {
    RiskLevel.LOW: "Within Range",
    RiskLevel.MEDIUM: "Requires Review",
    RiskLevel.HIGH: "Above Standard",
}

RECOMMENDATIONS = {
    "procedure": "Procedure costs require detailed justification",
    "investigation": "Investigation costs need supporting documentation",
    "medication": "Medication costs require prescription review",
}
COMPLIANT_RECOMMENDATION = "Claim meets NHIA compliance standards"


class VarianceEngine:
    """
    Evaluates submitted costs against NHIA reference standards.

    Banding compares the exact deviation percentage with the thresholds;
    reported percentages are rounded to one decimal place.
    """

    DEFAULT_LOW_THRESHOLD = Decimal("10")
    DEFAULT_MEDIUM_THRESHOLD = Decimal("25")

    # Compliance points per category
    POINTS_LOW = 25
    POINTS_MEDIUM = 15
    POINTS_HIGH = 0
    COMPLIANT_SCORE = 75

    def __init__(
        self,
        low_threshold: Optional[Decimal] = None,
        medium_threshold: Optional[Decimal] = None,
    ):
        self.low_threshold = (
            low_threshold if low_threshold is not None else self.DEFAULT_LOW_THRESHOLD
        )
        self.medium_threshold = (
            medium_threshold
            if medium_threshold is not None
            else self.DEFAULT_MEDIUM_THRESHOLD
        )

    def evaluate(
        self,
        actual_costs: CostBreakdown,
        procedure_label: Optional[str],
        diagnosis_label: Optional[str] = None,
    ) -> VarianceReport:
        """
        Evaluate a claim's costs.

        Args:
            actual_costs: Submitted costs per category
            procedure_label: Treatment procedure text
            diagnosis_label: Primary diagnosis text

        Returns:
            VarianceReport with per-category and overall risk
        """
        standard = resolve_standard(procedure_label, diagnosis_label)

        categories = [
            self._category_variance(
                name,
                getattr(actual_costs, name),
                getattr(standard.costs, name),
            )
            for name in CATEGORIES
        ]
        total = self._category_variance("total", actual_costs.total, standard.total)

        compliance_score = sum(self._compliance_points(c) for c in categories)

        by_name = {c.category: c for c in categories}
        recommendations = [
            message
            for name, message in RECOMMENDATIONS.items()
            if by_name[name].risk_level == RiskLevel.HIGH
        ]
        if compliance_score >= self.COMPLIANT_SCORE:
            recommendations.append(COMPLIANT_RECOMMENDATION)

        return VarianceReport(
            standard_key=standard.key,
            standard_description=standard.description,
            categories=categories,
            total=total,
            overall_risk=total.risk_level,
            overall_label=total.risk_label,
            compliance_score=compliance_score,
            recommendations=recommendations,
        )

    def band(self, percentage: Decimal) -> RiskLevel:
        """Map a deviation percentage to a risk level."""
        if percentage <= self.low_threshold:
            return RiskLevel.LOW
        if percentage <= self.medium_threshold:
            return RiskLevel.MEDIUM
        return RiskLevel.HIGH

    def _category_variance(
        self,
        category: str,
        actual: Decimal,
        standard: Decimal,
    ) -> CategoryVariance:
        variance = actual - standard
        if standard == 0:
            percentage = Decimal("0")
        else:
            percentage = variance / standard * Decimal("100")

        risk = self.band(percentage)
        return CategoryVariance(
            category=category,
            actual=actual,
            standard=standard,
            variance=variance,
            percentage=percentage.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP),
            risk_level=risk,
            risk_label=RISK_LABELS[risk],
        )

    def _compliance_points(self, variance: CategoryVariance) -> int:
        if variance.risk_level == RiskLevel.LOW:
            return self.POINTS_LOW
        if variance.risk_level == RiskLevel.MEDIUM:
            return self.POINTS_MEDIUM
        return self.POINTS_HIGH


# =============================================================================
# Module-level helpers
# =============================================================================


_variance_engine: Optional[VarianceEngine] = None


def get_variance_engine() -> VarianceEngine:
    """Get singleton variance engine configured from settings."""
    global _variance_engine
    if _variance_engine is None:
        from nhis_claims.core.config import get_claims_settings

        settings = get_claims_settings()
        _variance_engine = VarianceEngine(
            low_threshold=settings.VARIANCE_LOW_THRESHOLD,
            medium_threshold=settings.VARIANCE_MEDIUM_THRESHOLD,
        )
    return _variance_engine


def evaluate(
    actual_costs: CostBreakdown,
    procedure_label: Optional[str],
    diagnosis_label: Optional[str] = None,
) -> VarianceReport:
    """Evaluate costs with the configured engine."""
    return get_variance_engine().evaluate(actual_costs, procedure_label, diagnosis_label)
