"""Sender phone resolution from loosely-structured provider payloads.

Pure functions only: no I/O, no logging side effects beyond the returned value.

The normalization is a best-effort heuristic for a single domestic numbering
scheme (country code + 2-digit area code + mobile marker + 8 digits). Numbers
outside that scheme are only stripped to digits and come back as ``ambiguous``
so callers can see that nothing else was done to them.
"""

import re
from dataclasses import dataclass
from typing import Any, Mapping

PRIMARY_FIELDS = ("phone", "from", "sender", "chatid")
ALTERNATE_FIELDS = ("remoteJid", "jid", "participant", "author")

MAX_PHONE_DIGITS = 15
MIN_PHONE_DIGITS = 10
LOCAL_MOBILE_DIGITS = 11
LOCAL_LANDLINE_DIGITS = 10
MOBILE_MARKER = "9"
AREA_CODE_DIGITS = 2

CANONICAL = "canonical"
AMBIGUOUS = "ambiguous"
REJECTED = "rejected"

REASON_NO_PHONE = "no_phone"
REASON_GROUP_OR_INVALID_ID = "group_or_invalid_id"


@dataclass(frozen=True)
class PhoneResolution:
    kind: str
    phone: str | None = None
    reason: str | None = None
    source_field: str | None = None

    @property
    def accepted(self) -> bool:
        return self.kind in (CANONICAL, AMBIGUOUS) and bool(self.phone)

    @classmethod
    def canonical(cls, phone: str, source_field: str) -> "PhoneResolution":
        return cls(kind=CANONICAL, phone=phone, source_field=source_field)

    @classmethod
    def ambiguous(cls, phone: str, reason: str, source_field: str) -> "PhoneResolution":
        return cls(kind=AMBIGUOUS, phone=phone, reason=reason, source_field=source_field)

    @classmethod
    def rejected(cls, reason: str, source_field: str | None = None) -> "PhoneResolution":
        return cls(kind=REJECTED, reason=reason, source_field=source_field)


def digits_only(value: Any) -> str:
    if value is None or isinstance(value, (dict, list, tuple, bool)):
        return ""
    return re.sub(r"\D", "", str(value))


def _first_candidate(node: Mapping[str, Any]) -> tuple[str | None, Any]:
    for field in PRIMARY_FIELDS:
        value = node.get(field)
        if value is None or isinstance(value, (dict, list, tuple)):
            continue
        if str(value).strip():
            return field, value
    return None, None


def _alternate_candidate(node: Mapping[str, Any]) -> tuple[str | None, str | None]:
    for field in ALTERNATE_FIELDS:
        digits = digits_only(node.get(field))
        if MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
            return field, digits
    return None, None


def is_local_mobile(digits: str) -> bool:
    """Area code (no leading zero) followed by the mobile marker and 8 digits."""
    return (
        len(digits) == LOCAL_MOBILE_DIGITS
        and digits[0] != "0"
        and digits[AREA_CODE_DIGITS] == MOBILE_MARKER
    )


def normalize_domestic(digits: str, country_code: str = "55") -> tuple[str, bool]:
    """Strip the domestic country code and restore a missing mobile marker.

    Returns the normalized digits and whether the domestic rule applied.
    """
    if not (digits.startswith(country_code) and len(digits) > LOCAL_MOBILE_DIGITS):
        return digits, False
    local = digits[len(country_code):]
    if len(local) == LOCAL_LANDLINE_DIGITS:
        local = local[:AREA_CODE_DIGITS] + MOBILE_MARKER + local[AREA_CODE_DIGITS:]
    return local, True


def resolve_phone(node: Mapping[str, Any], country_code: str = "55") -> PhoneResolution:
    """Resolve the sender's canonical phone from a provider message node."""
    source_field, raw = _first_candidate(node)
    digits = digits_only(raw)
    if not digits:
        return PhoneResolution.rejected(REASON_NO_PHONE, source_field)

    if len(digits) > MAX_PHONE_DIGITS:
        alt_field, alt_digits = _alternate_candidate(node)
        if not alt_digits:
            return PhoneResolution.rejected(REASON_GROUP_OR_INVALID_ID, source_field)
        source_field, digits = alt_field, alt_digits

    phone, domestic = normalize_domestic(digits, country_code)

    if source_field == "chatid":
        return PhoneResolution.ambiguous(phone, "chatid_source", source_field)
    if domestic:
        return PhoneResolution.canonical(phone, source_field)
    if is_local_mobile(phone):
        return PhoneResolution.canonical(phone, source_field)
    if len(phone) < MIN_PHONE_DIGITS:
        return PhoneResolution.ambiguous(phone, "short_number", source_field)
    return PhoneResolution.ambiguous(phone, "non_domestic_format", source_field)


def phone_variants(phone: str, country_code: str = "55") -> list[str]:
    """Equivalent spellings of a canonical phone, used by flexible patient matching."""
    variants = [phone, f"{country_code}{phone}"]
    if len(phone) == LOCAL_MOBILE_DIGITS and phone[AREA_CODE_DIGITS] == MOBILE_MARKER:
        landline = phone[:AREA_CODE_DIGITS] + phone[AREA_CODE_DIGITS + 1:]
        variants.extend([landline, f"{country_code}{landline}"])
    seen: list[str] = []
    for variant in variants:
        if variant not in seen:
            seen.append(variant)
    return seen


def to_provider_number(phone: str, country_code: str = "55") -> str:
    """Format a stored phone for outbound provider calls (international, digits only)."""
    digits = digits_only(phone)
    if LOCAL_LANDLINE_DIGITS <= len(digits) <= LOCAL_MOBILE_DIGITS:
        return f"{country_code}{digits}"
    return digits
