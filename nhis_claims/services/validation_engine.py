"""
Claim Error / Validation Engine.

Provides:
- Ordered claim rules: structural, missing diagnosis, missing treatment,
  date range, duplicate, cost variance, excessive cost, decision mismatch
- Batch-level rules: empty batch, cost outliers, missing data share
- Finding summaries

Rules never abort anything; each rule that fires yields exactly one
ValidationFinding for the claim, and no rule suppresses another.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, Optional, Protocol, Sequence
from uuid import UUID

from nhis_claims.core.enums import (
    ClaimDecision,
    ErrorCategory,
    ErrorSeverity,
    ErrorType,
    RiskLevel,
)
from nhis_claims.schemas.validation import ValidationFinding, ValidationSummary
from nhis_claims.schemas.variance import CostBreakdown
from nhis_claims.services.variance_engine import VarianceEngine

logger = logging.getLogger(__name__)


class ClaimLike(Protocol):
    """Attributes the engine reads from a claim."""

    id: UUID
    unique_claim_id: str
    beneficiary_id: str
    beneficiary_name: str
    facility_id: str
    tpa_id: str
    treatment_procedure: Optional[str]
    primary_diagnosis: Optional[str]
    cost_of_investigation: Decimal
    cost_of_procedure: Decimal
    cost_of_medication: Decimal
    cost_of_other_services: Decimal
    total_cost: Decimal
    approved_amount: Optional[Decimal]
    decision: Optional[ClaimDecision]
    batch_id: Optional[UUID]


def claim_costs(claim: ClaimLike) -> CostBreakdown:
    """Cost breakdown of a claim."""
    return CostBreakdown(
        investigation=claim.cost_of_investigation or Decimal("0"),
        procedure=claim.cost_of_procedure or Decimal("0"),
        medication=claim.cost_of_medication or Decimal("0"),
        other_services=claim.cost_of_other_services or Decimal("0"),
    )


def _normalize(label: Optional[str]) -> str:
    return " ".join((label or "").upper().split())


def _submission_order(claim: ClaimLike) -> tuple[float, str]:
    created_at = getattr(claim, "created_at", None)
    return (created_at.timestamp() if created_at else 0.0, claim.unique_claim_id)


class ValidationEngine:
    """
    Runs the fixed rule set over claims and batches.

    Rule order is part of the contract: findings come back in rule order
    for each claim.
    """

    DEFAULT_EXCESSIVE_COST_THRESHOLD = Decimal("1000000")
    OUTLIER_MULTIPLIER = Decimal("3")

    def __init__(
        self,
        variance_engine: Optional[VarianceEngine] = None,
        excessive_cost_threshold: Optional[Decimal] = None,
    ):
        self.variance_engine = variance_engine or VarianceEngine()
        self.excessive_cost_threshold = (
            excessive_cost_threshold
            if excessive_cost_threshold is not None
            else self.DEFAULT_EXCESSIVE_COST_THRESHOLD
        )
        self._claim_rules: list[
            Callable[[ClaimLike, Sequence[ClaimLike]], Optional[ValidationFinding]]
        ] = [
            self._check_structure,
            self._check_missing_diagnosis,
            self._check_missing_treatment,
            self._check_date_range,
            self._check_duplicate,
            self._check_cost_variance,
            self._check_excessive_cost,
            self._check_decision_mismatch,
        ]

    # =========================================================================
    # Entry Points
    # =========================================================================

    def validate_claim(
        self,
        claim: ClaimLike,
        peers: Sequence[ClaimLike] = (),
    ) -> list[ValidationFinding]:
        """
        Validate one claim.

        Args:
            claim: Claim to validate
            peers: Claims it is compared against for duplicates (may include itself)

        Returns:
            Findings in rule order
        """
        findings = []
        for rule in self._claim_rules:
            finding = rule(claim, peers)
            if finding is not None:
                findings.append(finding)
        return findings

    def validate_batch(
        self,
        batch_id: UUID,
        tpa_id: Optional[str],
        claims: Sequence[ClaimLike],
    ) -> list[ValidationFinding]:
        """Validate a batch and every member claim."""
        findings: list[ValidationFinding] = []

        if not claims:
            findings.append(
                ValidationFinding(
                    error_code="EMPTY_BATCH",
                    title="Empty Batch",
                    description="Batch contains no claims",
                    category=ErrorCategory.MISSING_DATA,
                    error_type=ErrorType.VALIDATION,
                    severity=ErrorSeverity.MEDIUM,
                    batch_id=batch_id,
                    tpa_id=tpa_id,
                )
            )

        for rule in (self._check_cost_outliers, self._check_missing_data_share):
            finding = rule(batch_id, tpa_id, claims)
            if finding is not None:
                findings.append(finding)

        for claim in claims:
            findings.extend(self.validate_claim(claim, claims))

        logger.info(f"Validated batch {batch_id}: {len(claims)} claims, {len(findings)} findings")
        return findings

    @staticmethod
    def summarize(findings: Iterable[ValidationFinding]) -> ValidationSummary:
        """Count findings by severity."""
        summary = ValidationSummary()
        for finding in findings:
            summary.total += 1
            setattr(summary, finding.severity.value, getattr(summary, finding.severity.value) + 1)
        summary.is_valid = summary.critical == 0 and summary.high == 0
        return summary

    # =========================================================================
    # Claim Rules
    # =========================================================================

    def _base(self, claim: ClaimLike, **kwargs) -> ValidationFinding:
        return ValidationFinding(
            claim_id=claim.id,
            batch_id=claim.batch_id,
            tpa_id=claim.tpa_id,
            **kwargs,
        )

    def _check_structure(self, claim, peers) -> Optional[ValidationFinding]:
        missing = []
        if not (claim.beneficiary_name or "").strip():
            missing.append("beneficiary_name")
        if not (claim.facility_id or "").strip():
            missing.append("facility_id")
        if claim.total_cost is None or claim.total_cost <= 0:
            missing.append("total_cost")

        if not missing:
            return None

        return self._base(
            claim,
            error_code="MISSING_REQUIRED_DATA",
            title="Missing Required Claim Data",
            description=f"Claim {claim.unique_claim_id} is missing or has invalid: {', '.join(missing)}",
            category=ErrorCategory.MISSING_DATA,
            error_type=ErrorType.VALIDATION,
            severity=ErrorSeverity.HIGH,
            field_name=missing[0],
            evidence={"missing_fields": missing},
        )

    def _check_missing_diagnosis(self, claim, peers) -> Optional[ValidationFinding]:
        if (claim.primary_diagnosis or "").strip():
            return None

        return self._base(
            claim,
            error_code="MISSING_DIAGNOSIS",
            title="Missing Primary Diagnosis",
            description="Primary diagnosis is required for all claims",
            category=ErrorCategory.MISSING_DATA,
            error_type=ErrorType.VALIDATION,
            severity=ErrorSeverity.HIGH,
            field_name="primary_diagnosis",
            expected_value="Valid diagnosis description",
            actual_value=claim.primary_diagnosis or "Empty",
        )

    def _check_missing_treatment(self, claim, peers) -> Optional[ValidationFinding]:
        if (claim.treatment_procedure or "").strip():
            return None

        return self._base(
            claim,
            error_code="MISSING_TREATMENT",
            title="Missing Treatment Procedure",
            description="Treatment procedure is required for all claims",
            category=ErrorCategory.MISSING_DATA,
            error_type=ErrorType.VALIDATION,
            severity=ErrorSeverity.HIGH,
            field_name="treatment_procedure",
            expected_value="Valid treatment description",
            actual_value=claim.treatment_procedure or "Empty",
        )

    def _check_date_range(self, claim, peers) -> Optional[ValidationFinding]:
        admitted = getattr(claim, "date_of_admission", None)
        discharged = getattr(claim, "date_of_discharge", None)
        if not admitted or not discharged or discharged >= admitted:
            return None

        return self._base(
            claim,
            error_code="INVALID_DATE_RANGE",
            title="Invalid Date Range",
            description="Discharge date is before admission date",
            category=ErrorCategory.MISSING_DATA,
            error_type=ErrorType.VALIDATION,
            severity=ErrorSeverity.HIGH,
            field_name="date_of_discharge",
            expected_value=f">= {admitted.isoformat()}",
            actual_value=discharged.isoformat(),
        )

    def _check_duplicate(self, claim, peers) -> Optional[ValidationFinding]:
        procedure = _normalize(claim.treatment_procedure)
        if not procedure:
            return None

        key = (claim.beneficiary_id, procedure, claim.batch_id)
        own_order = _submission_order(claim)
        earlier = [
            peer
            for peer in peers
            if peer.id != claim.id
            and (peer.beneficiary_id, _normalize(peer.treatment_procedure), peer.batch_id) == key
            and _submission_order(peer) < own_order
        ]
        if not earlier:
            return None

        original = min(earlier, key=_submission_order)
        return self._base(
            claim,
            error_code="DUPLICATE_CLAIM",
            title="Duplicate Claim Detected",
            description=(
                f"Claim {claim.unique_claim_id} duplicates {original.unique_claim_id} "
                f"(same beneficiary and procedure)"
            ),
            category=ErrorCategory.DUPLICATE,
            error_type=ErrorType.FRAUD,
            severity=ErrorSeverity.MEDIUM,
            field_name="treatment_procedure",
            evidence={
                "original_claim_id": str(original.id),
                "original_unique_claim_id": original.unique_claim_id,
                "beneficiary_id": claim.beneficiary_id,
                "procedure": procedure,
            },
        )

    def _check_cost_variance(self, claim, peers) -> Optional[ValidationFinding]:
        report = self.variance_engine.evaluate(
            claim_costs(claim),
            claim.treatment_procedure,
            claim.primary_diagnosis,
        )
        if report.overall_risk == RiskLevel.LOW:
            return None

        severity = (
            ErrorSeverity.CRITICAL
            if report.overall_risk == RiskLevel.HIGH
            else ErrorSeverity.MEDIUM
        )
        return self._base(
            claim,
            error_code="COST_VARIANCE",
            title=f"Cost {report.overall_label}",
            description=(
                f"Total cost deviates {report.total.percentage}% from the "
                f"{report.standard_key} standard"
            ),
            category=ErrorCategory.COST_ANOMALY,
            error_type=ErrorType.DISCREPANCY,
            severity=severity,
            field_name="total_cost",
            expected_amount=report.total.standard,
            actual_amount=report.total.actual,
            amount_deviation=report.total.variance,
            deviation_percentage=report.total.percentage,
            evidence=report.model_dump(mode="json"),
        )

    def _check_excessive_cost(self, claim, peers) -> Optional[ValidationFinding]:
        if claim.total_cost is None or claim.total_cost <= self.excessive_cost_threshold:
            return None

        return self._base(
            claim,
            error_code="EXCESSIVE_COST",
            title="Excessive Claim Cost",
            description=(
                f"Total cost {claim.total_cost} exceeds the review threshold "
                f"{self.excessive_cost_threshold}"
            ),
            category=ErrorCategory.COST_ANOMALY,
            error_type=ErrorType.FRAUD,
            severity=ErrorSeverity.CRITICAL,
            field_name="total_cost",
            expected_amount=self.excessive_cost_threshold,
            actual_amount=claim.total_cost,
            amount_deviation=claim.total_cost - self.excessive_cost_threshold,
        )

    def _check_decision_mismatch(self, claim, peers) -> Optional[ValidationFinding]:
        has_amount = claim.approved_amount is not None and claim.approved_amount > 0
        approved = claim.decision == ClaimDecision.APPROVED

        if has_amount and not approved:
            description = (
                f"Approved amount {claim.approved_amount} recorded but decision is "
                f"{claim.decision.value if claim.decision else 'not set'}"
            )
        elif approved and claim.approved_amount is None:
            description = "Claim approved without an approved amount"
        else:
            return None

        return self._base(
            claim,
            error_code="DECISION_MISMATCH",
            title="Decision / Amount Mismatch",
            description=description,
            category=ErrorCategory.DECISION_MISMATCH,
            error_type=ErrorType.DISCREPANCY,
            severity=ErrorSeverity.HIGH,
            field_name="approved_amount",
            expected_value="approved" if has_amount else "approved_amount",
            actual_value=claim.decision.value if claim.decision else None,
            actual_amount=claim.approved_amount,
        )

    # =========================================================================
    # Batch Rules
    # =========================================================================

    def _check_cost_outliers(
        self,
        batch_id: UUID,
        tpa_id: Optional[str],
        claims: Sequence[ClaimLike],
    ) -> Optional[ValidationFinding]:
        costed = [c for c in claims if c.total_cost]
        if not costed:
            return None

        average = sum((c.total_cost for c in costed), Decimal("0")) / len(costed)
        threshold = (average * self.OUTLIER_MULTIPLIER).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
        outliers = [c for c in costed if c.total_cost > threshold]
        if not outliers:
            return None

        highest = max(c.total_cost for c in outliers)
        deviation = highest - threshold
        return ValidationFinding(
            error_code="COST_OUTLIERS",
            title="Cost Outliers Detected",
            description=f"Batch contains {len(outliers)} claims with unusually high costs",
            category=ErrorCategory.COST_ANOMALY,
            error_type=ErrorType.FRAUD,
            severity=ErrorSeverity.HIGH,
            batch_id=batch_id,
            tpa_id=tpa_id,
            field_name="total_cost",
            expected_value=f"<= {threshold}",
            actual_value=f"{len(outliers)} claims above threshold",
            expected_amount=threshold,
            actual_amount=highest,
            amount_deviation=deviation,
            deviation_percentage=(deviation / threshold * 100).quantize(
                Decimal("0.1"), rounding=ROUND_HALF_UP
            ),
            evidence={"outlier_claim_ids": [c.unique_claim_id for c in outliers]},
        )

    def _check_missing_data_share(
        self,
        batch_id: UUID,
        tpa_id: Optional[str],
        claims: Sequence[ClaimLike],
    ) -> Optional[ValidationFinding]:
        incomplete = [
            c
            for c in claims
            if not (c.primary_diagnosis or "").strip()
            or not (c.treatment_procedure or "").strip()
        ]
        if not incomplete:
            return None

        share = Decimal(len(incomplete)) / len(claims) * 100
        if share > 20:
            severity = ErrorSeverity.HIGH
        elif share > 10:
            severity = ErrorSeverity.MEDIUM
        else:
            severity = ErrorSeverity.LOW

        share = share.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
        return ValidationFinding(
            error_code="BATCH_MISSING_DATA",
            title="Batch Missing Data",
            description=f"{len(incomplete)} claims ({share}%) are missing required data",
            category=ErrorCategory.MISSING_DATA,
            error_type=ErrorType.QUALITY,
            severity=severity,
            batch_id=batch_id,
            tpa_id=tpa_id,
            field_name="required_fields",
            expected_value="All required fields populated",
            actual_value=f"{len(incomplete)} claims with missing data",
            deviation_percentage=share,
            evidence={"incomplete_claim_ids": [c.unique_claim_id for c in incomplete]},
        )


# =============================================================================
# Singleton Instance
# =============================================================================


_validation_engine: Optional[ValidationEngine] = None


def get_validation_engine() -> ValidationEngine:
    """Get singleton validation engine configured from settings."""
    global _validation_engine
    if _validation_engine is None:
        from nhis_claims.core.config import get_claims_settings
        from nhis_claims.services.variance_engine import get_variance_engine

        _validation_engine = ValidationEngine(
            variance_engine=get_variance_engine(),
            excessive_cost_threshold=get_claims_settings().EXCESSIVE_COST_THRESHOLD,
        )
    return _validation_engine
