"""
NHIA Cost Standards Reference.

Provides:
- Reference cost standards per procedure family (NGN)
- Ordered matcher resolving a procedure/diagnosis label to a standard

Resolution always yields a standard: explicit key match first, then
keyword heuristics, then DEFAULT.
"""

from decimal import Decimal
from typing import Callable, Optional

from nhis_claims.schemas.variance import CostBreakdown, CostStandard

DEFAULT_STANDARD_KEY = "DEFAULT"


def _standard(
    key: str,
    description: str,
    investigation: int,
    procedure: int,
    medication: int,
    other_services: int,
) -> CostStandard:
    return CostStandard(
        key=key,
        description=description,
        costs=CostBreakdown(
            investigation=Decimal(investigation),
            procedure=Decimal(procedure),
            medication=Decimal(medication),
            other_services=Decimal(other_services),
        ),
    )


# =============================================================================
# Reference Table (order matters for key matching)
# =============================================================================


NHIA_COST_STANDARDS: dict[str, CostStandard] = {
    s.key: s
    for s in (
        _standard("Delivery", "Normal delivery", 15000, 45000, 25000, 15000),
        _standard("Emergency CS", "Emergency Cesarean Section", 25000, 120000, 35000, 20000),
        _standard("EMCS", "Emergency Cesarean Section", 25000, 120000, 35000, 20000),
        _standard("Caesarean Section", "Planned Cesarean Section", 30000, 150000, 40000, 30000),
        _standard("CONSULTATION", "Outpatient consultation", 5000, 15000, 10000, 5000),
        _standard(DEFAULT_STANDARD_KEY, "Standard medical procedure", 20000, 50000, 25000, 15000),
    )
}


# =============================================================================
# Matchers
# =============================================================================


# (procedure_upper, diagnosis_upper) -> bool
Predicate = Callable[[str, str], bool]


def _key_predicate(key: str) -> Predicate:
    needle = key.upper()
    return lambda procedure, diagnosis: needle in procedure or needle in diagnosis


def _procedure_contains(*words: str) -> Predicate:
    return lambda procedure, diagnosis: any(w in procedure for w in words)


def _either_contains(*words: str) -> Predicate:
    return lambda procedure, diagnosis: any(
        w in procedure or w in diagnosis for w in words
    )


STANDARD_MATCHERS: list[tuple[Predicate, str]] = [
    # Explicit key match, in table order
    *[
        (_key_predicate(key), key)
        for key in NHIA_COST_STANDARDS
        if key != DEFAULT_STANDARD_KEY
    ],
    # Keyword heuristics
    (_procedure_contains("CS", "CESAREAN", "CAESAREAN"), "Emergency CS"),
    (_either_contains("DELIVERY"), "Delivery"),
    (_procedure_contains("CONSULTATION", "CONSULT"), "CONSULTATION"),
    # Fallback
    (lambda procedure, diagnosis: True, DEFAULT_STANDARD_KEY),
]


def resolve_standard(
    procedure: Optional[str],
    diagnosis: Optional[str] = None,
) -> CostStandard:
    """
    Resolve the cost standard for a procedure/diagnosis label.

    Matching is case-insensitive and deterministic; the first matcher that
    accepts the labels wins.
    """
    procedure_upper = (procedure or "").strip().upper()
    diagnosis_upper = (diagnosis or "").strip().upper()

    for predicate, key in STANDARD_MATCHERS:
        if predicate(procedure_upper, diagnosis_upper):
            return NHIA_COST_STANDARDS[key]

    return NHIA_COST_STANDARDS[DEFAULT_STANDARD_KEY]


def get_standard(key: str) -> CostStandard:
    """Get a standard by key, falling back to DEFAULT."""
    return NHIA_COST_STANDARDS.get(key, NHIA_COST_STANDARDS[DEFAULT_STANDARD_KEY])
