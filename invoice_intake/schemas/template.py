from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict

MAX_COMMON_VALUES = 20


class TaxRegime(str, Enum):
    """
    Which GST convention a counterparty bills with.
    MIXED means both conventions were seen on one record and acts as a
    wildcard when matching.
    """
    SPLIT = "cgst_sgst"
    CONSOLIDATED = "igst"
    MIXED = "both"


class TemplatePatterns(BaseModel):
    identifier_pattern: Optional[str] = None
    common_hsn_codes: list[str] = Field(default_factory=list)
    common_item_names: list[str] = Field(default_factory=list)
    # Counts for the retained entries of the lists above
    hsn_code_counts: dict[str, int] = Field(default_factory=dict)
    item_name_counts: dict[str, int] = Field(default_factory=dict)
    avg_item_count: float = 0.0
    avg_total_amount: float = 0.0
    # Dominant regime, i.e. the most frequent entry of tax_regime_counts
    tax_regime: TaxRegime = TaxRegime.SPLIT
    tax_regime_counts: dict[str, int] = Field(default_factory=dict)


class TemplateStatistics(BaseModel):
    total_processed: int = Field(default=0, ge=0)
    last_updated: datetime
    accuracy_rate: float = Field(default=0.0, ge=0.0, le=100.0)


class Template(BaseModel):
    """A counterparty's learned profile."""

    model_config = ConfigDict(from_attributes=True)

    counterparty_id: str
    counterparty_name: str
    patterns: TemplatePatterns
    statistics: TemplateStatistics


class TemplateListResponse(BaseModel):
    total: int = Field(ge=0)
    templates: list[Template]


class AnomalyReport(BaseModel):
    matches: bool
    anomalies: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    confidence: int = Field(ge=0, le=100)


class Reliability(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TemplateInsights(BaseModel):
    counterparty_id: str
    reliability: Reliability
    predictability: int = Field(ge=0, le=100)
    recommendations: list[str] = Field(default_factory=list)
