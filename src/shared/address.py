"""Canadian address and phone normalization shared by schemas and the Purolator client."""

import re

PROVINCES = {
    "ALBERTA": "AB",
    "BRITISH COLUMBIA": "BC",
    "MANITOBA": "MB",
    "NEW BRUNSWICK": "NB",
    "NEWFOUNDLAND AND LABRADOR": "NL",
    "NORTHWEST TERRITORIES": "NT",
    "NOVA SCOTIA": "NS",
    "NUNAVUT": "NU",
    "ONTARIO": "ON",
    "PRINCE EDWARD ISLAND": "PE",
    "QUEBEC": "QC",
    "SASKATCHEWAN": "SK",
    "YUKON": "YT",
}
PROVINCE_CODES = frozenset(PROVINCES.values())

POSTAL_CODE_RE = re.compile(r"^[A-Z]\d[A-Z]\d[A-Z]\d$")
_STREET_RE = re.compile(r"^(\d[\d\w-]*)\s+(.+)$")

FALLBACK_AREA_CODE = "000"
FALLBACK_PHONE = "0000000"


def normalize_postal_code(value: str) -> str:
    """'m5h 2n2' -> 'M5H2N2'. Raises ValueError when the result is not a Canadian postal code."""
    code = re.sub(r"\s", "", value or "").upper()
    if not POSTAL_CODE_RE.match(code):
        raise ValueError(f"Invalid postal code: {value!r}")
    return code


def normalize_province(value: str) -> str:
    """2-letter code or full English name -> 2-letter code."""
    raw = " ".join((value or "").split()).upper()
    if raw in PROVINCE_CODES:
        return raw
    if raw in PROVINCES:
        return PROVINCES[raw]
    raise ValueError(f"Unknown province: {value!r}")


def parse_street_address(full_address: str) -> tuple[str, str]:
    """
    Split a street line into (street_number, street_name).

    "123 Main St" -> ("123", "Main St"); "12-B Queen St" -> ("12-B", "Queen St").
    Without a leading number the whole trimmed line becomes the name and the
    number is "0".
    """
    line = (full_address or "").strip()
    if not line:
        return "0", "Unknown"
    match = _STREET_RE.match(line)
    if match:
        return match.group(1), match.group(2).strip()
    return "0", line


def parse_phone_number(phone: str | None) -> tuple[str, str]:
    """Digits only; ten digits split 3+7, anything else falls back to 000 / 0000000."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 10:
        return digits[:3], digits[3:]
    return FALLBACK_AREA_CODE, FALLBACK_PHONE
