"""Mobile phone normalisation for the Algerian numbering plan.

Every accepted spelling of a mobile number maps to one canonical
international value (``+213`` followed by the 9-digit national number)::

    +213 749 34 35 35   ->  +213749343535
    00213749343535      ->  +213749343535
    213749343535        ->  +213749343535
    0749343535          ->  +213749343535
    749343535           ->  +213749343535

Anything else is rejected with a :class:`PhoneRejection` reason.  After
the structural checks the canonical value must also match the mobile
prefix allow-list, so a landline that slipped through the type check is
still refused.
"""

from __future__ import annotations

import re

from pydantic import BaseModel

from rdv_assistant.constants import (
    COUNTRY_CALLING_CODE,
    MOBILE_PREFIXES,
    NATIONAL_NUMBER_LENGTH,
    NATIONAL_TRUNK_PREFIX,
)
from rdv_assistant.models.enums import PhoneRejection

# Separators people put inside phone numbers.
_SEPARATORS = re.compile(r"[\s.\-()/]")
_ASCII_DIGITS = re.compile(r"[0-9]+")
# Final allow-list check on the canonical form.
_CANONICAL_MOBILE = re.compile(
    rf"\+{COUNTRY_CALLING_CODE}[{''.join(MOBILE_PREFIXES)}]\d{{{NATIONAL_NUMBER_LENGTH - 1}}}"
)


class PhoneValidation(BaseModel):
    """Result of :func:`normalize_mobile`.  Exactly one of
    ``normalized`` / ``rejection`` is set."""

    raw: str
    normalized: str | None = None
    rejection: PhoneRejection | None = None

    @property
    def is_valid(self) -> bool:
        return self.normalized is not None


def _reject(raw: str, reason: PhoneRejection) -> PhoneValidation:
    return PhoneValidation(raw=raw, rejection=reason)


def normalize_mobile(raw: str) -> PhoneValidation:
    """Normalise a free-form phone string to ``+213XXXXXXXXX``."""
    cleaned = _SEPARATORS.sub("", raw or "")
    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]

    has_plus = cleaned.startswith("+")
    digits = cleaned[1:] if has_plus else cleaned
    if not _ASCII_DIGITS.fullmatch(digits):
        return _reject(raw, PhoneRejection.INVALID_FORMAT)

    if has_plus:
        if not digits.startswith(COUNTRY_CALLING_CODE):
            return _reject(raw, PhoneRejection.WRONG_COUNTRY)
        national = digits[len(COUNTRY_CALLING_CODE):]
    elif (
        digits.startswith(COUNTRY_CALLING_CODE)
        and len(digits) > NATIONAL_NUMBER_LENGTH
    ):
        national = digits[len(COUNTRY_CALLING_CODE):]
    elif digits.startswith(NATIONAL_TRUNK_PREFIX):
        national = digits[len(NATIONAL_TRUNK_PREFIX):]
    else:
        national = digits

    # "+213 0749...": trunk prefix kept after the country code
    if (
        national.startswith(NATIONAL_TRUNK_PREFIX)
        and len(national) == NATIONAL_NUMBER_LENGTH + 1
    ):
        national = national[1:]

    if len(national) < NATIONAL_NUMBER_LENGTH:
        return _reject(raw, PhoneRejection.TOO_SHORT)
    if len(national) > NATIONAL_NUMBER_LENGTH:
        return _reject(raw, PhoneRejection.TOO_LONG)
    if national[0] not in MOBILE_PREFIXES:
        return _reject(raw, PhoneRejection.WRONG_TYPE)

    canonical = f"+{COUNTRY_CALLING_CODE}{national}"
    if not _CANONICAL_MOBILE.fullmatch(canonical):
        return _reject(raw, PhoneRejection.WRONG_TYPE)
    return PhoneValidation(raw=raw, normalized=canonical)


def is_mobile(raw: str) -> bool:
    return normalize_mobile(raw).is_valid
