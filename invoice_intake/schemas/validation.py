from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Any


class FieldConfidence(BaseModel):
    identifier: int = Field(default=0, ge=0, le=100)
    amounts: int = Field(default=0, ge=0, le=100)
    items: int = Field(default=0, ge=0, le=100)
    tax_id: int = Field(default=0, ge=0, le=100)


class ValidationResult(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    can_auto_approve: bool = False
    confidence_score: int = Field(default=0, ge=0, le=100)
    field_confidence: FieldConfidence = Field(default_factory=FieldConfidence)


class CorrectionSuggestion(BaseModel):
    field: str = Field(description="Path of the field, e.g. 'items[0].hsn_code'")
    original_value: Any = None
    suggested_value: Any
    reason: str
    confidence: int = Field(ge=0, le=100)


class DuplicateCheck(BaseModel):
    is_duplicate: bool = False
    existing_record_id: Optional[str] = None
