"""
GSTIN structural validation.

Format: 22AAAAA0000A1Z5
- 2 digits   state (jurisdiction) code, see STATE_CODES
- 10 chars   PAN of the registered entity
- 1 char     entity number (1-9, A-Z)
- 'Z'        default
- 1 char     checksum character

Only the structure is checked; the checksum character must be present but
its value is not recomputed.
"""

import re
from dataclasses import dataclass

GSTIN_LENGTH = 15

STATE_CODES: dict[str, str] = {
    "01": "Jammu and Kashmir",
    "02": "Himachal Pradesh",
    "03": "Punjab",
    "04": "Chandigarh",
    "05": "Uttarakhand",
    "06": "Haryana",
    "07": "Delhi",
    "08": "Rajasthan",
    "09": "Uttar Pradesh",
    "10": "Bihar",
    "11": "Sikkim",
    "12": "Arunachal Pradesh",
    "13": "Nagaland",
    "14": "Manipur",
    "15": "Mizoram",
    "16": "Tripura",
    "17": "Meghalaya",
    "18": "Assam",
    "19": "West Bengal",
    "20": "Jharkhand",
    "21": "Odisha",
    "22": "Chhattisgarh",
    "23": "Madhya Pradesh",
    "24": "Gujarat",
    "25": "Daman and Diu",
    "26": "Dadra and Nagar Haveli",
    "27": "Maharashtra",
    "28": "Andhra Pradesh (Old)",
    "29": "Karnataka",
    "30": "Goa",
    "31": "Lakshadweep",
    "32": "Kerala",
    "33": "Tamil Nadu",
    "34": "Puducherry",
    "35": "Andaman and Nicobar Islands",
    "36": "Telangana",
    "37": "Andhra Pradesh",
    "38": "Ladakh",
}

_GSTIN_RE = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")
_PAN_RE = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")


@dataclass(frozen=True)
class GSTINDetails:
    state_code: str
    state_name: str
    pan: str
    entity_number: str
    checksum: str


@dataclass(frozen=True)
class GSTINCheck:
    valid: bool
    error: str | None = None
    details: GSTINDetails | None = None


def normalize_gstin(gstin: str) -> str:
    return re.sub(r"\s", "", gstin).upper()


def validate_gstin_format(gstin: str | None) -> GSTINCheck:
    if not gstin:
        return GSTINCheck(valid=False, error="GSTIN is required")

    clean = normalize_gstin(gstin)
    if len(clean) != GSTIN_LENGTH:
        return GSTINCheck(
            valid=False, error=f"GSTIN must be {GSTIN_LENGTH} characters long"
        )
    if not _GSTIN_RE.match(clean):
        return GSTINCheck(valid=False, error="Invalid GSTIN format")

    state_code = clean[0:2]
    pan = clean[2:12]
    state_name = STATE_CODES.get(state_code)
    if state_name is None:
        return GSTINCheck(valid=False, error=f"Invalid state code: {state_code}")
    if not _PAN_RE.match(pan):
        return GSTINCheck(valid=False, error="Invalid PAN in GSTIN")

    return GSTINCheck(
        valid=True,
        details=GSTINDetails(
            state_code=state_code,
            state_name=state_name,
            pan=pan,
            entity_number=clean[12],
            checksum=clean[14],
        ),
    )
