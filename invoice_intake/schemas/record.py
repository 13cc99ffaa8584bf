from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, Any


def _coerce_amount(value: Any) -> float:
    """Extraction output sometimes carries null or '1,180.00' strings for amounts."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, str):
        value = value.replace(",", "").strip()
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class LineItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str = ""
    hsn_code: Optional[str] = Field(
        None, description="HSN/SAC classification code"
    )
    quantity: float = 0.0
    unit_price: float = 0.0
    gst_rate: float = 0.0
    amount: float = 0.0

    @field_validator("quantity", "unit_price", "gst_rate", "amount", mode="before")
    @classmethod
    def coerce_numbers(cls, v: Any) -> float:
        return _coerce_amount(v)

    @field_validator("hsn_code", mode="before")
    @classmethod
    def blank_code_is_none(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        return text or None


class CandidateRecord(BaseModel):
    """Structured output of extraction, prior to validation."""

    model_config = ConfigDict(from_attributes=True)

    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    counterparty_name: Optional[str] = None
    counterparty_tax_id: Optional[str] = Field(
        None, description="Supplier GSTIN"
    )
    subtotal: float = 0.0
    cgst: float = 0.0
    sgst: float = 0.0
    igst: float = 0.0
    total_amount: float = 0.0
    items: list[LineItem] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)

    @field_validator("subtotal", "cgst", "sgst", "igst", "total_amount", mode="before")
    @classmethod
    def coerce_amounts(cls, v: Any) -> float:
        return _coerce_amount(v)

    @field_validator("items", mode="before")
    @classmethod
    def null_items_is_empty(cls, v: Any) -> list:
        return v if v is not None else []

    @property
    def tax_total(self) -> float:
        return self.cgst + self.sgst + self.igst

    @property
    def line_items_total(self) -> float:
        return sum(item.amount for item in self.items)

    @property
    def recomputed_total(self) -> float:
        """Sum of line amounts plus declared tax components."""
        return self.line_items_total + self.tax_total

    @property
    def has_split_tax(self) -> bool:
        return self.cgst > 0 or self.sgst > 0

    @property
    def has_consolidated_tax(self) -> bool:
        return self.igst > 0
