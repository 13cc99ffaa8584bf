"""Unit tests for GSTIN structural validation."""

from invoice_intake.core.tax_id import (
    normalize_gstin,
    validate_gstin_format,
)


def test_valid_gstin_returns_details() -> None:
    check = validate_gstin_format("29ABCDE1234F1Z5")

    assert check.valid is True
    assert check.error is None
    assert check.details.state_code == "29"
    assert check.details.state_name == "Karnataka"
    assert check.details.pan == "ABCDE1234F"
    assert check.details.checksum == "5"


def test_gstin_is_normalized_before_checking() -> None:
    assert normalize_gstin(" 29abcde1234f1z5 ") == "29ABCDE1234F1Z5"
    assert validate_gstin_format("29abcde 1234f1z5").valid is True


def test_missing_gstin() -> None:
    check = validate_gstin_format(None)

    assert check.valid is False
    assert check.error == "GSTIN is required"


def test_wrong_length() -> None:
    check = validate_gstin_format("29ABCDE1234F1Z")

    assert check.valid is False
    assert "15 characters" in check.error


def test_bad_structure() -> None:
    # 14th character must be Z
    check = validate_gstin_format("29ABCDE1234F1X5")

    assert check.valid is False
    assert check.error == "Invalid GSTIN format"


def test_unknown_state_code() -> None:
    check = validate_gstin_format("99ABCDE1234F1Z5")

    assert check.valid is False
    assert check.error == "Invalid state code: 99"
