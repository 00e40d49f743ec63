"""
Pydantic models shared across the pipeline.

Metric groups serialise with camelCase keys (``enterpriseValue.currentValue``)
because that is the shape consumers of the metrics JSON read; Python code
uses the snake_case attribute names.
"""

from enum import Enum
from typing import Any, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from valuation.extraction.numbers import coerce_number


# ── Documents, pages, chunks ─────────────────────────────────────────────────

class ElementType(str, Enum):
    TABLE = "table"
    CHART = "chart"
    IMAGE = "image"


class VisualElement(BaseModel):
    element_id: str
    element_type: ElementType
    page_number: int = 1
    title: str = ""
    description: str = ""
    content: str = ""
    rows: int = 0
    columns: int = 0
    chart_type: str = ""
    data: Any = None
    confidence: Optional[float] = None


class Page(BaseModel):
    page_number: int
    content: str
    visual_elements: list[VisualElement] = Field(default_factory=list)


class NormalizedDocument(BaseModel):
    filename: str
    pages: list[Page]
    parse_tier: str

    @property
    def text(self) -> str:
        return "\n\n".join(p.content for p in sorted(self.pages, key=lambda p: p.page_number))

    @property
    def visual_elements(self) -> list[VisualElement]:
        return [el for p in self.pages for el in p.visual_elements]


class Chunk(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    chunk_index: int
    page_number: Optional[int] = None
    content: str
    token_count: int = 0
    is_visual: bool = False
    metadata: dict = Field(default_factory=dict)
    embedding: Optional[np.ndarray] = None


class IngestResult(BaseModel):
    doc_id: str
    filename: str
    parse_tier: str
    page_count: int = 0
    chunks_created: int = 0
    embedding_failures: int = 0
    text: str = ""
    pages: list[str] = Field(default_factory=list)


# ── Metric set ───────────────────────────────────────────────────────────────

_TEXT_FIELDS = {"currency", "date", "description"}


class _MetricGroup(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_leaf(cls, value, info):
        if info.field_name in _TEXT_FIELDS:
            if info.field_name == "currency":
                return value if isinstance(value, str) and value else "USD"
            if isinstance(value, str) and value.strip().lower() not in ("", "null", "none", "n/a"):
                return value.strip()
            return None
        return coerce_number(value)


class ValueSnapshot(_MetricGroup):
    current_value: Optional[float] = None
    previous_value: Optional[float] = None
    currency: str = "USD"


class KeyFinancials(_MetricGroup):
    revenue: Optional[float] = None
    ebitda: Optional[float] = None
    weighted_average_cost_of_capital: Optional[float] = None


class CompanyValuation(_MetricGroup):
    total_value: Optional[float] = None
    per_share_value: Optional[float] = None
    currency: str = "USD"


class DiscountRates(_MetricGroup):
    discount_rate: Optional[float] = None
    risk_free_rate: Optional[float] = None
    market_risk_premium: Optional[float] = None


class CapitalStructure(_MetricGroup):
    total_shares: Optional[float] = None
    esop_shares: Optional[float] = None
    esop_percentage: Optional[float] = None

    @model_validator(mode="after")
    def _derive_esop_shares(self):
        self.apply_esop_shares()
        return self

    def apply_esop_shares(self) -> None:
        """esopShares is always totalShares * esopPercentage / 100 when both are known."""
        if self.total_shares is not None and self.esop_percentage is not None:
            self.esop_shares = round(self.total_shares * self.esop_percentage / 100)


class ValuationMultiples(_MetricGroup):
    revenue_multiple: Optional[float] = None
    ebitda_multiple: Optional[float] = None


class ValuationDate(_MetricGroup):
    date: Optional[str] = None
    description: Optional[str] = None


# Leaf names a model sometimes returns at the top level instead of nested.
_FLAT_LEAVES = {
    "revenue": ("keyFinancials", "revenue"),
    "ebitda": ("keyFinancials", "ebitda"),
    "wacc": ("keyFinancials", "weightedAverageCostOfCapital"),
    "weightedAverageCostOfCapital": ("keyFinancials", "weightedAverageCostOfCapital"),
    "totalValue": ("companyValuation", "totalValue"),
    "perShareValue": ("companyValuation", "perShareValue"),
    "discountRate": ("discountRates", "discountRate"),
    "riskFreeRate": ("discountRates", "riskFreeRate"),
    "marketRiskPremium": ("discountRates", "marketRiskPremium"),
    "totalShares": ("capitalStructure", "totalShares"),
    "esopShares": ("capitalStructure", "esopShares"),
    "esopPercentage": ("capitalStructure", "esopPercentage"),
    "revenueMultiple": ("valuationMultiples", "revenueMultiple"),
    "ebitdaMultiple": ("valuationMultiples", "ebitdaMultiple"),
}

_SNAPSHOT_GROUPS = ("enterpriseValue", "valueOfEquity", "valuationPerShare")


class MetricSet(BaseModel):
    """The fixed-shape metrics object; every leaf is a number or None."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enterprise_value: ValueSnapshot = Field(default_factory=ValueSnapshot)
    value_of_equity: ValueSnapshot = Field(default_factory=ValueSnapshot)
    valuation_per_share: ValueSnapshot = Field(default_factory=ValueSnapshot)
    key_financials: KeyFinancials = Field(default_factory=KeyFinancials)
    company_valuation: CompanyValuation = Field(default_factory=CompanyValuation)
    discount_rates: DiscountRates = Field(default_factory=DiscountRates)
    capital_structure: CapitalStructure = Field(default_factory=CapitalStructure)
    valuation_multiples: ValuationMultiples = Field(default_factory=ValuationMultiples)
    valuation_date: ValuationDate = Field(default_factory=ValuationDate)
    confidence_scores: dict[str, float] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _reshape(cls, data):
        if not isinstance(data, dict):
            return {}
        shaped: dict = {}
        for key, value in data.items():
            if key in _FLAT_LEAVES:
                group, leaf = _FLAT_LEAVES[key]
                target = shaped.setdefault(group, {})
                if isinstance(target, dict):
                    target.setdefault(leaf, value)
            elif key in _SNAPSHOT_GROUPS and not isinstance(value, dict) and value is not None:
                shaped[key] = {"currentValue": value}
            elif key == "confidenceScores" or key == "confidence_scores":
                shaped[key] = value if isinstance(value, dict) else {}
            elif isinstance(value, dict):
                existing = shaped.get(key)
                shaped[key] = {**existing, **value} if isinstance(existing, dict) else dict(value)
            elif isinstance(value, BaseModel):
                shaped[key] = value
        return shaped

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True)


# ── Enhanced validation ─────────────────────────────────────────────────────

class DateRelevance(str, Enum):
    CURRENT = "current"
    LIKELY_CURRENT = "likely_current"
    HISTORICAL_OR_PROJECTED = "historical_or_projected"
    UNKNOWN = "unknown"


class Candidate(BaseModel):
    metric: str
    value: float
    method: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    date_relevance: DateRelevance = DateRelevance.UNKNOWN
    evidence: str = ""


class ConflictRecord(BaseModel):
    metric: str
    candidates: list[Candidate]
    chosen: Optional[Candidate] = None
    resolution: str = ""  # "arbitration" | "highest_confidence"
    reason: str = ""


class MetricResolution(BaseModel):
    metric: str
    value: Optional[float] = None
    chosen: Optional[Candidate] = None
    candidates: list[Candidate] = Field(default_factory=list)
    ambiguous: bool = False


class CrossValidation(BaseModel):
    status: str = "not_applicable"  # consistent | corrected | unresolved | not_applicable
    implied_debt: Optional[float] = None
    original_enterprise_value: Optional[float] = None
    original_equity_value: Optional[float] = None
    negative_debt_unresolved: bool = False
    reason: str = ""


class RelationshipReport(BaseModel):
    ebitda_margin: Optional[float] = None
    ev_ebitda_multiple: Optional[float] = None
    issues: list[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    values: dict[str, Optional[float]] = Field(default_factory=dict)
    valuation_date: Optional[str] = None
    resolutions: dict[str, MetricResolution] = Field(default_factory=dict)
    conflicts: list[ConflictRecord] = Field(default_factory=list)
    cross_validation: CrossValidation = Field(default_factory=CrossValidation)
    relationships: RelationshipReport = Field(default_factory=RelationshipReport)
    confidence: int = 0


# ── Jobs ─────────────────────────────────────────────────────────────────────

class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ProcessingJob(BaseModel):
    id: str
    filename: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    message: str = ""
    document_id: Optional[str] = None
    result: Optional[dict] = None
    error_message: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    completed_at: Optional[str] = None


class PipelineResult(BaseModel):
    document_id: str
    filename: str
    parse_tier: str
    chunk_count: int
    metrics: dict
    confidence: int
    validation: Optional[dict] = None
    warnings: list[str] = Field(default_factory=list)
