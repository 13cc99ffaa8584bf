"""Unit tests for field confidence scoring and the auto-approval gate."""
from datetime import date

import pytest

from invoice_intake.schemas.record import CandidateRecord, LineItem
from invoice_intake.schemas.validation import FieldConfidence
from invoice_intake.services.validation_service import (
    aggregate_confidence,
    can_auto_approve,
    validate_record,
)

TODAY = date(2024, 4, 1)
BUYER_STATE = "29"
KARNATAKA_GSTIN = "29ABCDE1234F1Z5"
MAHARASHTRA_GSTIN = "27ABCDE1234F1Z5"


def _record(**overrides) -> CandidateRecord:
    data = {
        "invoice_number": "INV-2024-001",
        "invoice_date": "2024-03-15",
        "counterparty_name": "Acme Traders",
        "counterparty_tax_id": KARNATAKA_GSTIN,
        "subtotal": 1000,
        "cgst": 90,
        "sgst": 90,
        "igst": 0,
        "total_amount": 1180,
        "items": [
            {
                "name": "Steel rod",
                "hsn_code": "7214",
                "quantity": 1,
                "unit_price": 1000,
                "gst_rate": 18,
                "amount": 1000,
            }
        ],
        "confidence": 92,
    }
    data.update(overrides)
    return CandidateRecord(**data)


def _validate(record: CandidateRecord):
    return validate_record(record, today=TODAY, company_state_code=BUYER_STATE)


def test_clean_intra_state_record_is_auto_approvable() -> None:
    result = _validate(_record())

    assert result.valid is True
    assert result.errors == []
    assert result.field_confidence.amounts >= 90
    assert result.field_confidence.identifier == 95
    assert result.field_confidence.items == 100
    assert result.field_confidence.tax_id == 95
    assert not any("IGST" in w or "CGST" in w for w in result.warnings)
    # 95*0.20 + 95*0.35 + 100*0.30 + 95*0.15 = 96.5, rounded half up
    assert result.confidence_score == 97
    assert result.can_auto_approve is True
    assert "This invoice meets criteria for auto-approval" in result.suggestions


def test_low_extraction_confidence_blocks_auto_approval() -> None:
    result = _validate(_record(confidence=80))

    assert result.valid is True
    assert result.confidence_score == 97
    assert result.can_auto_approve is False
    assert "Manual review recommended before approval" in result.suggestions


def test_total_far_from_line_items_is_hard_error() -> None:
    record = _record(cgst=0, sgst=0, total_amount=5000)

    result = _validate(record)

    assert result.field_confidence.amounts <= 40
    assert any("total amount mismatch" in e for e in result.errors)
    assert result.valid is False
    assert result.can_auto_approve is False


def test_small_subtotal_difference_is_warning_with_both_values() -> None:
    record = _record(subtotal=1005, total_amount=1180)

    result = _validate(record)

    assert result.field_confidence.amounts == 75
    assert result.errors == []
    warning = next(w for w in result.warnings if w.startswith("Subtotal mismatch"))
    assert "1000.00" in warning and "1005.00" in warning


def test_large_subtotal_difference_is_hard_error() -> None:
    result = _validate(_record(subtotal=1500))

    assert result.field_confidence.amounts == 40
    assert any("Significant subtotal mismatch" in e for e in result.errors)


def test_missing_total_scores_amounts_zero() -> None:
    result = _validate(_record(total_amount=None))

    assert result.field_confidence.amounts == 0
    assert "Invalid total amount" in result.errors


def test_missing_identifier_scores_zero() -> None:
    result = _validate(_record(invoice_number=None))

    assert result.field_confidence.identifier == 0
    assert "Invoice number is missing" in result.errors
    assert result.can_auto_approve is False


def test_unusual_identifier_is_warning() -> None:
    result = _validate(_record(invoice_number="INV #12 (copy)"))

    assert result.field_confidence.identifier == 60
    assert any("format is unusual" in w for w in result.warnings)


def test_no_items_scores_zero() -> None:
    result = _validate(_record(items=[], subtotal=0, cgst=0, sgst=0, total_amount=100))

    assert result.field_confidence.items == 0
    assert "No line items found" in result.errors


def test_item_penalties_accumulate_per_item() -> None:
    items = [
        # missing name (-20), missing HSN (-5)
        {"name": "", "quantity": 1, "unit_price": 100, "amount": 100},
        # invalid quantity (-15), amount mismatch (-10)
        {"name": "Bolt", "hsn_code": "7318", "quantity": 0, "unit_price": 50, "amount": 50},
    ]
    record = _record(items=items, subtotal=150, cgst=0, sgst=0, igst=27, total_amount=177)

    result = _validate(record)

    assert result.field_confidence.items == 100 - 20 - 5 - 15 - 10
    assert "Item 1: Name is missing" in result.errors
    assert "Item 2: Invalid quantity" in result.errors
    assert "Item 1: HSN code missing" in result.warnings
    assert "Item 2: Amount calculation mismatch" in result.warnings


def test_items_score_never_below_zero() -> None:
    bad_item = {"name": "", "quantity": 0, "unit_price": 0, "amount": 10}
    record = _record(items=[bad_item] * 5, subtotal=50, total_amount=230)

    result = _validate(record)

    assert result.field_confidence.items == 0


def test_missing_tax_id_scores_zero_with_suggestion() -> None:
    result = _validate(_record(counterparty_tax_id=None))

    assert result.field_confidence.tax_id == 0
    assert "Supplier GSTIN not found" in result.warnings
    assert any("contact supplier" in s for s in result.suggestions)


def test_malformed_tax_id_scores_thirty() -> None:
    result = _validate(_record(counterparty_tax_id="29ABCDE1234"))

    assert result.field_confidence.tax_id == 30
    assert any(w.startswith("Invalid GSTIN format") for w in result.warnings)


def test_same_state_with_igst_warns_about_convention() -> None:
    record = _record(cgst=0, sgst=0, igst=180)

    result = _validate(record)

    assert "Intra-state transaction should use CGST+SGST, not IGST" in result.warnings
    assert any("CGST and SGST" in s for s in result.suggestions)
    assert result.errors == []


def test_other_state_with_split_tax_warns_about_convention() -> None:
    result = _validate(_record(counterparty_tax_id=MAHARASHTRA_GSTIN))

    assert "Inter-state transaction should use IGST, not CGST+SGST" in result.warnings
    assert result.field_confidence.tax_id == 95


def test_both_tax_conventions_present_warns() -> None:
    record = _record(cgst=45, sgst=45, igst=90, total_amount=1180)

    result = _validate(record)

    assert any("Both CGST/SGST and IGST present" in w for w in result.warnings)


def test_no_tax_at_all_warns() -> None:
    record = _record(cgst=0, sgst=0, total_amount=1000)

    result = _validate(record)

    assert any("No GST amount found" in w for w in result.warnings)


@pytest.mark.parametrize(
    "invoice_date, expected",
    [
        (None, "Invoice date is missing"),
        ("not a date", "Invalid invoice date format"),
    ],
)
def test_bad_dates_are_errors(invoice_date, expected) -> None:
    result = _validate(_record(invoice_date=invoice_date))

    assert expected in result.errors


def test_future_and_old_dates_are_warnings() -> None:
    future = _validate(_record(invoice_date="2024-05-01"))
    old = _validate(_record(invoice_date="15/01/2022"))

    assert "Invoice date is in the future" in future.warnings
    assert "Invoice is more than 1 year old" in old.warnings
    assert future.errors == [] and old.errors == []


def test_counterparty_name_checks() -> None:
    missing = _validate(_record(counterparty_name=None))
    short = _validate(_record(counterparty_name="AB"))

    assert "Supplier name is missing" in missing.errors
    assert "Supplier name seems too short" in short.warnings


def test_aggregate_confidence_rounds_half_up() -> None:
    # 0.2*50 + 0.35*50 + 0.3*50 + 0.15*50 = 50
    assert aggregate_confidence(FieldConfidence(identifier=50, amounts=50, items=50, tax_id=50)) == 50
    # 0.2*95 + 0.35*95 + 0.3*100 + 0.15*95 = 96.5
    assert aggregate_confidence(FieldConfidence(identifier=95, amounts=95, items=100, tax_id=95)) == 97


def test_auto_approve_requires_every_condition() -> None:
    good = FieldConfidence(identifier=95, amounts=95, items=100, tax_id=95)

    assert can_auto_approve([], 90, 90, good) is True
    assert can_auto_approve(["error"], 90, 90, good) is False
    assert can_auto_approve([], 84, 90, good) is False
    assert can_auto_approve([], 90, 84, good) is False
    assert can_auto_approve([], 90, 90, good.model_copy(update={"amounts": 89})) is False
    assert can_auto_approve([], 90, 90, good.model_copy(update={"items": 79})) is False
