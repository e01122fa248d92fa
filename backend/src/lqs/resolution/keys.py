"""Deterministic normalization for household identity.

The household key is the exact-match path of reconciliation: two rows
that differ only in case, accents, punctuation or ZIP+4 suffix resolve
to the same key without any fuzzy computation.
"""

import re
import unicodedata

KEY_SEPARATOR = "|"

_NON_ALPHA = re.compile(r"[^A-Z]")
_NON_ALPHA_OR_SPACE = re.compile(r"[^A-Z\s]")
_NON_DIGIT = re.compile(r"[^0-9]")

# Canonical product names; mirrors the product normalization used by the
# carrier report parsers so quotes and sales compare equal.
PRODUCT_TYPE_ALIASES: dict[str, str] = {
    # Auto
    "AUTO": "Standard Auto",
    "STANDARD AUTO": "Standard Auto",
    "PERSONAL AUTO": "Standard Auto",
    "SA": "Standard Auto",
    # Home
    "HOME": "Homeowners",
    "HOMEOWNERS": "Homeowners",
    "HOMEOWNER": "Homeowners",
    "HO": "Homeowners",
    # Renters
    "RENTER": "Renters",
    "RENTERS": "Renters",
    # Landlords
    "LANDLORD": "Landlords",
    "LANDLORDS": "Landlords",
    "LL": "Landlords",
    # Umbrella
    "UMBRELLA": "Personal Umbrella",
    "PERSONAL UMBRELLA": "Personal Umbrella",
    "PUP": "Personal Umbrella",
    # Motor club
    "MOTOR CLUB": "Motor Club",
    "MOTORCLUB": "Motor Club",
    "MC": "Motor Club",
    # Condo
    "CONDO": "Condo",
    "CONDOMINIUM": "Condo",
    # Mobilehome
    "MOBILEHOME": "Mobilehome",
    "MOBILE HOME": "Mobilehome",
    "MH": "Mobilehome",
    # Special auto
    "AUTO - SPECIAL": "Auto - Special",
    "AUTO-SPECIAL": "Auto - Special",
    "SPECIAL AUTO": "Auto - Special",
    "NON-STANDARD AUTO": "Auto - Special",
}

UNKNOWN_PRODUCT = "Unknown"


def strip_diacritics(value: str) -> str:
    """Remove combining marks after NFD decomposition ("José" -> "Jose")."""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _name_segment(value: str | None) -> str:
    if not value:
        return ""
    return _NON_ALPHA.sub("", strip_diacritics(value).upper())


def normalize_zip(postal_code: str | None) -> str:
    """Reduce a postal code to its leading five digits, or "" if it has none."""
    if not postal_code:
        return ""
    return _NON_DIGIT.sub("", str(postal_code))[:5]


def normalize_household_key(
    first_name: str | None,
    last_name: str | None,
    postal_code: str | None,
) -> str:
    """Build the canonical household key ``LASTNAME|FIRSTNAME|ZIP``.

    Total over its inputs: missing or malformed fields become empty
    segments, so ``normalize_household_key("", "", "")`` is ``"||"``.

    Args:
        first_name: Applicant first name, any case or encoding
        last_name: Applicant last name
        postal_code: ZIP or ZIP+4

    Returns:
        Deterministic key, unique per household within an agency
    """
    return KEY_SEPARATOR.join(
        (_name_segment(last_name), _name_segment(first_name), normalize_zip(postal_code))
    )


def normalize_phone(phone: str | None) -> str:
    """Digits only, for phone deduplication."""
    if not phone:
        return ""
    return _NON_DIGIT.sub("", phone)


def merge_phones(existing: list[str] | None, incoming: list[str] | None) -> list[str]:
    """Append incoming phones whose digits are not already present.

    Existing entries keep their order and formatting.
    """
    merged = list(existing or [])
    seen = {normalize_phone(p) for p in merged}
    for phone in incoming or []:
        digits = normalize_phone(phone)
        if digits and digits not in seen:
            merged.append(phone)
            seen.add(digits)
    return merged


def normalize_name_tokens(name: str | None) -> list[str]:
    """Split a person name into uppercase ASCII alphabetic tokens."""
    if not name:
        return []
    ascii_name = strip_diacritics(name).upper()
    return [token for token in _NON_ALPHA_OR_SPACE.sub("", ascii_name).split() if token]


def normalize_product_type(product_type: str | None) -> str:
    """Map carrier product spellings onto one canonical name.

    Unknown products pass through trimmed so nothing is silently merged.
    """
    if not product_type or not product_type.strip():
        return UNKNOWN_PRODUCT
    trimmed = product_type.strip()
    return PRODUCT_TYPE_ALIASES.get(trimmed.upper(), trimmed)


def parse_sub_producer(value: str | None) -> tuple[str | None, str | None]:
    """Split a raw sub-producer cell into (code, name).

    - ``"009"`` -> ("009", None)
    - ``"723-ANTHONY MCDERMOTT"`` -> ("723", "ANTHONY MCDERMOTT")
    - ``"Anthony McDermott"`` -> (None, "Anthony McDermott")
    """
    if not value or not value.strip():
        return None, None

    trimmed = value.strip()
    hyphen = trimmed.find("-")
    if hyphen > 0:
        code = trimmed[:hyphen].strip()
        name = trimmed[hyphen + 1:].strip()
        return code or None, name or None

    if trimmed.isdigit():
        return trimmed, None

    return None, trimmed
