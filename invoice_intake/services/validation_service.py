"""
Field-level confidence scoring and the auto-approval decision.

validate_record() is a pure function of its input: no I/O, deterministic
for a given record, `today` and buyer state code. Hard failures go to
ValidationResult.errors and block auto-approval; soft issues go to warnings.
Nothing in here raises on bad data.

The weights, tolerances and penalties below are part of the observable
contract (stored confidence scores and the auto-approval gate depend on
them), so they are kept as named constants.
"""

import logging
import math
import re
from datetime import date, datetime, timedelta

from invoice_intake.core.config import settings
from invoice_intake.core.tax_id import validate_gstin_format
from invoice_intake.schemas.record import CandidateRecord
from invoice_intake.schemas.validation import FieldConfidence, ValidationResult

logger = logging.getLogger(__name__)

# ── Identifier ────────────────────────────────────────────
IDENTIFIER_RE = re.compile(r"^[A-Z0-9\-/]{3,30}$", re.IGNORECASE)
IDENTIFIER_WELL_FORMED_SCORE = 95
IDENTIFIER_UNUSUAL_SCORE = 60

# ── Amounts ───────────────────────────────────────────────
AMOUNT_TOLERANCE = 1.0
AMOUNT_SOFT_TOLERANCE = 10.0
AMOUNTS_EXACT_SCORE = 95
AMOUNTS_TOTAL_MATCH_FLOOR = 90
AMOUNTS_NEAR_SCORE = 75
AMOUNTS_MISMATCH_SCORE = 40

# ── Line items ────────────────────────────────────────────
ITEMS_START_SCORE = 100
PENALTY_MISSING_NAME = 20
PENALTY_INVALID_QUANTITY = 15
PENALTY_INVALID_UNIT_PRICE = 15
PENALTY_MISSING_HSN = 5
PENALTY_LINE_AMOUNT_MISMATCH = 10
LINE_AMOUNT_TOLERANCE = 1.0

# ── Tax id ────────────────────────────────────────────────
TAX_ID_VALID_SCORE = 95
TAX_ID_INVALID_SCORE = 30

# ── Aggregate ─────────────────────────────────────────────
WEIGHT_IDENTIFIER = 0.20
WEIGHT_AMOUNTS = 0.35
WEIGHT_ITEMS = 0.30
WEIGHT_TAX_ID = 0.15

# ── Auto-approval gate ────────────────────────────────────
AUTO_APPROVE_MIN_CONFIDENCE = 85
AUTO_APPROVE_MIN_EXTRACTION_CONFIDENCE = 85
AUTO_APPROVE_MIN_AMOUNTS = 90
AUTO_APPROVE_MIN_ITEMS = 80

MIN_COUNTERPARTY_NAME_LENGTH = 3
MAX_INVOICE_AGE_DAYS = 365

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%Y/%m/%d")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(score: float) -> int:
    return max(0, min(100, int(score)))


def _parse_date(value: str) -> date | None:
    text = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


class _Findings:
    """Accumulates errors, warnings and suggestions for one record."""

    def __init__(self) -> None:
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.suggestions: list[str] = []


def score_identifier(record: CandidateRecord, findings: _Findings) -> int:
    if not record.invoice_number:
        findings.errors.append("Invoice number is missing")
        return 0
    if IDENTIFIER_RE.match(record.invoice_number.strip()):
        return IDENTIFIER_WELL_FORMED_SCORE
    findings.warnings.append("Invoice number format is unusual - please verify")
    return IDENTIFIER_UNUSUAL_SCORE


def check_date(record: CandidateRecord, findings: _Findings, today: date) -> None:
    if not record.invoice_date:
        findings.errors.append("Invoice date is missing")
        return
    invoice_date = _parse_date(record.invoice_date)
    if invoice_date is None:
        findings.errors.append("Invalid invoice date format")
    elif invoice_date > today:
        findings.warnings.append("Invoice date is in the future")
    elif invoice_date < today - timedelta(days=MAX_INVOICE_AGE_DAYS):
        findings.warnings.append("Invoice is more than 1 year old")


def check_counterparty(record: CandidateRecord, findings: _Findings) -> None:
    name = (record.counterparty_name or "").strip()
    if not name:
        findings.errors.append("Supplier name is missing")
    elif len(name) < MIN_COUNTERPARTY_NAME_LENGTH:
        findings.warnings.append("Supplier name seems too short")


def score_amounts(record: CandidateRecord, findings: _Findings) -> int:
    """
    Recompute subtotal (sum of line amounts) and grand total (subtotal plus
    declared tax components) and compare them with the declared values.
    """
    if not record.total_amount or record.total_amount <= 0:
        findings.errors.append("Invalid total amount")
        return 0

    calculated_subtotal = record.line_items_total
    calculated_total = record.recomputed_total
    subtotal_diff = abs(calculated_subtotal - record.subtotal)
    total_diff = abs(calculated_total - record.total_amount)

    if subtotal_diff <= AMOUNT_TOLERANCE:
        score = AMOUNTS_EXACT_SCORE
        if total_diff <= AMOUNT_TOLERANCE:
            score = max(score, AMOUNTS_TOTAL_MATCH_FLOOR)
    elif subtotal_diff <= AMOUNT_SOFT_TOLERANCE:
        score = AMOUNTS_NEAR_SCORE
        findings.warnings.append(
            f"Subtotal mismatch: Calculated ₹{calculated_subtotal:.2f}, "
            f"Found ₹{record.subtotal:.2f}"
        )
    else:
        score = AMOUNTS_MISMATCH_SCORE
        findings.errors.append(
            f"Significant subtotal mismatch (₹{subtotal_diff:.2f} difference)"
        )

    # The grand total gets the same tiers; the worse of the two wins
    if total_diff <= AMOUNT_TOLERANCE:
        pass
    elif total_diff <= AMOUNT_SOFT_TOLERANCE:
        score = min(score, AMOUNTS_NEAR_SCORE)
        findings.warnings.append(
            f"Total amount mismatch: Calculated ₹{calculated_total:.2f}, "
            f"Found ₹{record.total_amount:.2f}"
        )
    else:
        score = min(score, AMOUNTS_MISMATCH_SCORE)
        findings.errors.append(
            f"Significant total amount mismatch: Calculated ₹{calculated_total:.2f}, "
            f"Found ₹{record.total_amount:.2f}"
        )
    return score


def score_items(record: CandidateRecord, findings: _Findings) -> int:
    if not record.items:
        findings.errors.append("No line items found")
        return 0

    score = ITEMS_START_SCORE
    for index, item in enumerate(record.items, start=1):
        if not item.name.strip():
            findings.errors.append(f"Item {index}: Name is missing")
            score -= PENALTY_MISSING_NAME
        if not item.quantity or item.quantity <= 0:
            findings.errors.append(f"Item {index}: Invalid quantity")
            score -= PENALTY_INVALID_QUANTITY
        if not item.unit_price or item.unit_price < 0:
            findings.errors.append(f"Item {index}: Invalid unit price")
            score -= PENALTY_INVALID_UNIT_PRICE
        if not item.hsn_code:
            findings.warnings.append(f"Item {index}: HSN code missing")
            score -= PENALTY_MISSING_HSN

        expected_amount = item.quantity * item.unit_price
        if abs(expected_amount - item.amount) > LINE_AMOUNT_TOLERANCE:
            findings.warnings.append(f"Item {index}: Amount calculation mismatch")
            score -= PENALTY_LINE_AMOUNT_MISMATCH
    return max(0, score)


def check_tax_split(record: CandidateRecord, findings: _Findings) -> None:
    has_split = record.has_split_tax
    has_consolidated = record.has_consolidated_tax

    if not (has_split or has_consolidated):
        findings.warnings.append("No GST amount found - verify if this is a GST invoice")
        findings.suggestions.append(
            "If this is a GST invoice, check if GST amounts were clearly visible in the image"
        )
    if has_split and has_consolidated:
        findings.warnings.append(
            "Both CGST/SGST and IGST present - should be one or the other"
        )
        findings.suggestions.append(
            "For intra-state: Use CGST+SGST. For inter-state: Use IGST only"
        )


def score_tax_id(
    record: CandidateRecord,
    findings: _Findings,
    company_state_code: str,
) -> int:
    if not record.counterparty_tax_id:
        findings.warnings.append("Supplier GSTIN not found")
        findings.suggestions.append(
            "GSTIN is required for GST compliance - contact supplier for details"
        )
        return 0

    check = validate_gstin_format(record.counterparty_tax_id)
    if not check.valid:
        findings.warnings.append(f"Invalid GSTIN format: {check.error}")
        findings.suggestions.append(
            "Verify GSTIN manually or request corrected invoice from supplier"
        )
        return TAX_ID_INVALID_SCORE

    has_split = record.has_split_tax
    has_consolidated = record.has_consolidated_tax
    same_state = check.details.state_code == company_state_code
    if same_state and has_consolidated and not has_split:
        findings.warnings.append(
            "Intra-state transaction should use CGST+SGST, not IGST"
        )
        findings.suggestions.append(
            f"Supplier and buyer are both in {check.details.state_name}: "
            f"bill CGST and SGST as two equal halves instead of IGST"
        )
    elif not same_state and has_split and not has_consolidated:
        findings.warnings.append(
            "Inter-state transaction should use IGST, not CGST+SGST"
        )
        findings.suggestions.append(
            f"Supplier is in {check.details.state_name}, outside the buyer's state: "
            f"bill the full tax as IGST"
        )
    return TAX_ID_VALID_SCORE


def aggregate_confidence(fields: FieldConfidence) -> int:
    weighted = (
        fields.identifier * WEIGHT_IDENTIFIER
        + fields.amounts * WEIGHT_AMOUNTS
        + fields.items * WEIGHT_ITEMS
        + fields.tax_id * WEIGHT_TAX_ID
    )
    return _clamp(_round_half_up(weighted))


def can_auto_approve(
    errors: list[str],
    confidence_score: int,
    extraction_confidence: float,
    fields: FieldConfidence,
) -> bool:
    """All five conditions are required; none is relaxed on its own."""
    return (
        len(errors) == 0
        and confidence_score >= AUTO_APPROVE_MIN_CONFIDENCE
        and extraction_confidence >= AUTO_APPROVE_MIN_EXTRACTION_CONFIDENCE
        and fields.amounts >= AUTO_APPROVE_MIN_AMOUNTS
        and fields.items >= AUTO_APPROVE_MIN_ITEMS
    )


def validate_record(
    record: CandidateRecord,
    today: date | None = None,
    company_state_code: str | None = None,
) -> ValidationResult:
    today = today or date.today()
    company_state_code = company_state_code or settings.COMPANY_STATE_CODE
    findings = _Findings()

    identifier = score_identifier(record, findings)
    check_date(record, findings, today)
    check_counterparty(record, findings)
    amounts = score_amounts(record, findings)
    items = score_items(record, findings)
    check_tax_split(record, findings)
    tax_id = score_tax_id(record, findings, company_state_code)

    fields = FieldConfidence(
        identifier=_clamp(identifier),
        amounts=_clamp(amounts),
        items=_clamp(items),
        tax_id=_clamp(tax_id),
    )
    confidence_score = aggregate_confidence(fields)
    auto_approve = can_auto_approve(
        findings.errors, confidence_score, record.confidence, fields
    )

    if auto_approve:
        findings.suggestions.append("This invoice meets criteria for auto-approval")
    elif not findings.errors:
        findings.suggestions.append("Manual review recommended before approval")

    logger.debug(
        "Validated %s: confidence=%d fields=%s errors=%d warnings=%d",
        record.invoice_number,
        confidence_score,
        fields.model_dump(),
        len(findings.errors),
        len(findings.warnings),
    )

    return ValidationResult(
        valid=not findings.errors,
        errors=findings.errors,
        warnings=findings.warnings,
        suggestions=findings.suggestions,
        can_auto_approve=auto_approve,
        confidence_score=confidence_score,
        field_confidence=fields,
    )
