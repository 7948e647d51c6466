"""
Comparison of customer-provided identity data against attributes extracted
from a verified identity document.

All functions are pure. A mismatch never blocks verification; it is
returned as a warning for staff review.
"""
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Union

NOT_PROVIDED = "Not provided"
NOT_EXTRACTED = "Not extracted"

DateLike = Union[date, datetime, str, None]

_WHITESPACE = re.compile(r"\s+")
_LICENSE_SEPARATORS = re.compile(r"[\s\-]")


@dataclass
class IdentityData:
    """Name, date of birth and license number from one source."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    dob: DateLike = None
    license_number: Optional[str] = None

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()


@dataclass
class MatchResult:
    name_match: bool
    dob_match: bool
    license_number_match: bool
    warnings: List[Dict[str, str]] = field(default_factory=list)

    @property
    def all_match(self) -> bool:
        return self.name_match and self.dob_match and self.license_number_match


def normalize_name(name: Optional[str]) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    if not name:
        return ""
    return _WHITESPACE.sub(" ", name.strip().lower())


def names_match(provided: Optional[str], verified: Optional[str]) -> bool:
    """
    Fuzzy name comparison.

    Both names must be non-empty after normalization. They match when equal
    or when one contains the other (e.g. a middle name on the document).
    """
    a = normalize_name(provided)
    b = normalize_name(verified)
    if not a or not b:
        return False
    return a == b or a in b or b in a


def _to_date(value: DateLike) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def dates_match(provided: DateLike, verified: DateLike) -> bool:
    """Compare only the calendar-date component; time of day is ignored."""
    a = _to_date(provided)
    b = _to_date(verified)
    if a is None or b is None:
        return False
    return a == b


def normalize_license(number: Optional[str]) -> str:
    if not number:
        return ""
    return _LICENSE_SEPARATORS.sub("", number).upper()


def license_numbers_match(provided: Optional[str], verified: Optional[str]) -> bool:
    """Case-insensitive equality after removing whitespace and dashes."""
    a = normalize_license(provided)
    b = normalize_license(verified)
    if not a or not b:
        return False
    return a == b


def _display(value: DateLike, placeholder: str) -> str:
    if value is None or value == "":
        return placeholder
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def compare_identity(provided: IdentityData, verified: IdentityData) -> MatchResult:
    """
    Compare provided identity data against verified document data.

    Args:
        provided: Data the customer entered
        verified: Data extracted from the document

    Returns:
        MatchResult: Per-field match flags and one warning per mismatch
    """
    name_ok = names_match(provided.full_name, verified.full_name)
    dob_ok = dates_match(provided.dob, verified.dob)
    license_ok = license_numbers_match(provided.license_number, verified.license_number)

    warnings: List[Dict[str, str]] = []
    if not name_ok:
        warnings.append(
            {
                "field": "name",
                "provided": provided.full_name or NOT_PROVIDED,
                "verified": verified.full_name or NOT_EXTRACTED,
            }
        )
    if not dob_ok:
        warnings.append(
            {
                "field": "date_of_birth",
                "provided": _display(provided.dob, NOT_PROVIDED),
                "verified": _display(verified.dob, NOT_EXTRACTED),
            }
        )
    if not license_ok:
        warnings.append(
            {
                "field": "license_number",
                "provided": provided.license_number or NOT_PROVIDED,
                "verified": verified.license_number or NOT_EXTRACTED,
            }
        )

    return MatchResult(
        name_match=name_ok,
        dob_match=dob_ok,
        license_number_match=license_ok,
        warnings=warnings,
    )
