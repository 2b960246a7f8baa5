"""
Pydantic Schemas for cost variance analysis.
"""

from decimal import Decimal

from pydantic import BaseModel, Field

from nhis_claims.core.enums import RiskLevel


class CostBreakdown(BaseModel):
    """Costs split into the four reimbursable categories."""

    investigation: Decimal = Field(default=Decimal("0"), ge=0)
    procedure: Decimal = Field(default=Decimal("0"), ge=0)
    medication: Decimal = Field(default=Decimal("0"), ge=0)
    other_services: Decimal = Field(default=Decimal("0"), ge=0)

    @property
    def total(self) -> Decimal:
        return self.investigation + self.procedure + self.medication + self.other_services


class CostStandard(BaseModel):
    """Reference cost standard for a procedure family."""

    key: str
    description: str
    costs: CostBreakdown

    @property
    def total(self) -> Decimal:
        return self.costs.total


class CategoryVariance(BaseModel):
    """Variance of one cost category against its standard."""

    category: str
    actual: Decimal
    standard: Decimal
    variance: Decimal
    percentage: Decimal = Field(description="Deviation percentage, 1 decimal place")
    risk_level: RiskLevel
    risk_label: str


class VarianceReport(BaseModel):
    """Full variance evaluation of a claim's costs."""

    standard_key: str
    standard_description: str
    categories: list[CategoryVariance]
    total: CategoryVariance
    overall_risk: RiskLevel
    overall_label: str
    compliance_score: int = Field(ge=0, le=100)
    recommendations: list[str] = Field(default_factory=list)

    def category(self, name: str) -> CategoryVariance:
        for item in self.categories:
            if item.category == name:
                return item
        raise KeyError(name)
