# prompts/menu_normalizer.py
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from prompts.menu_matching import (
    HOSPITAL_NAMES,
    TREATMENT_NAMES,
    match_hospital_name,
    match_treatment_name,
)
from prompts.menu_types import (
    ALLOWED_CURRENCIES,
    REQUIRED_FIELDS,
    PackageMeta,
    PackageRow,
    RawPackage,
)

__all__ = [
    "normalize_package_row",
    "validate_package_batch",
    "summarize_batch",
    "BatchBuckets",
]

_OPTIONAL_TEXT_FIELDS = (
    "description",
    "details",
    "sub_treatments",
    "duration",
    "treatment_category",
    "anaesthesia",
    "doctor_name",
    "includes",
    "image_file_id",
    "hospital_location",
    "category",
    "hospital_country",
    "translation_title",
    "translation_description",
    "translation_details",
    "translation",
)

# Glyphs and local spellings → ISO code (checked after upper-casing)
_CURRENCY_ALIASES = {
    "฿": "THB",
    "BAHT": "THB",
    "£": "GBP",
    "€": "EUR",
    "₩": "KRW",
    "WON": "KRW",
    "US$": "USD",
    "$": "USD",
    "S$": "SGD",
    "SG$": "SGD",
    "RM": "MYR",
}

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}
_THOUSANDS_RE = re.compile(r"(?<=\d),(?=\d{3}\b)")


# ------------------------------------------------------------------
# Field helpers. Every helper degrades to a default + warning; none raise.
# ------------------------------------------------------------------
def _warn(warnings: List[str], message: str) -> None:
    # additive, but never the same message twice (keeps normalisation idempotent)
    if message not in warnings:
        warnings.append(message)


def _text(value: Any) -> str:
    if value is None or isinstance(value, bool):
        return ""
    return str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    return _text(value) or None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        s = _THOUSANDS_RE.sub("", value.strip())
        try:
            num = float(s)
        except ValueError:
            return None
        return num if math.isfinite(num) else None
    return None


def _parse_required_number(value: Any, name: str, warnings: List[str]) -> Optional[float]:
    if _is_blank(value):
        _warn(warnings, f"{name} missing; set to null")
        return None
    num = _to_number(value)
    if num is None:
        _warn(warnings, f"{name} is not a number; set to null")
    return num


def _parse_optional_number(value: Any, name: str, warnings: List[str]) -> Optional[float]:
    if _is_blank(value):
        return None
    num = _to_number(value)
    if num is None:
        _warn(warnings, f"{name} is not a number; set to null")
    return num


def _normalize_currency(value: Any, warnings: List[str]) -> str:
    raw = _text(value)
    if not raw:
        _warn(warnings, "currency missing; defaulting to USD")
        return "USD"
    upper = raw.upper()
    upper = _CURRENCY_ALIASES.get(upper, upper)
    if upper not in ALLOWED_CURRENCIES:
        _warn(warnings, f"currency {raw} not supported; defaulting to USD")
        return "USD"
    return upper


def _normalize_boolean(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        low = value.strip().lower()
        if low in _TRUE_STRINGS:
            return True
        if low in _FALSE_STRINGS:
            return False
        return fallback
    if isinstance(value, (int, float)):
        if value == 1:
            return True
        if value == 0:
            return False
    return fallback


def _normalize_status(value: Any, warnings: List[str]) -> str:
    if value in ("active", "inactive"):
        return value
    if _is_blank(value):
        _warn(warnings, "status missing; defaulting to active")
    else:
        _warn(warnings, f"status {value} not supported; defaulting to active")
    return "active"


def _normalize_confidence(value: Any) -> Optional[float]:
    num = _to_number(value)
    if num is None:
        return None
    return min(1.0, max(0.0, float(num)))


def _normalize_page(value: Any) -> Optional[int]:
    num = _to_number(value)
    if num is None or num < 1:
        return None
    return int(num)


def _coerce_raw(raw: Union[RawPackage, PackageRow, Mapping[str, Any], None]) -> Dict[str, Any]:
    if isinstance(raw, PackageRow):
        return raw.to_dict()
    if isinstance(raw, Mapping):
        return dict(raw)
    return {}


def _coerce_meta(raw_meta: Any) -> Dict[str, Any]:
    return dict(raw_meta) if isinstance(raw_meta, Mapping) else {}


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------
def normalize_package_row(raw: Union[RawPackage, PackageRow, Mapping[str, Any], None]) -> PackageRow:
    """
    The only sanctioned RawPackage → PackageRow conversion.

    Pure (input is not mutated) and total: a malformed field becomes its
    default plus a warning in `_meta.warnings`. Pre-existing warnings are kept.
    Accepted hospital/treatment matches overwrite the raw value with the
    canonical name; scores go to `_meta.matcher`.
    """
    data = _coerce_raw(raw)
    raw_meta = _coerce_meta(data.get("_meta", data.get("meta")))

    existing = raw_meta.get("warnings")
    if isinstance(existing, str):
        existing = [existing]
    warnings: List[str] = []
    for w in existing if isinstance(existing, list) else []:
        if _text(w):
            _warn(warnings, _text(w))

    matcher = dict(raw_meta.get("matcher") or {}) if isinstance(raw_meta.get("matcher"), Mapping) else {}

    # "Sub Treatments" is the CSV spelling; accept it on the way back in.
    sub_treatments = data.get("sub_treatments", data.get("Sub Treatments"))

    row = PackageRow(
        title=_text(data.get("title")),
        hospital_name=_text(data.get("hospital_name")),
        treatment_name=_text(data.get("treatment_name")),
        price=_parse_required_number(data.get("price"), "price", warnings),
        currency=_normalize_currency(data.get("currency"), warnings),
        original_price=_parse_optional_number(data.get("original_price"), "original_price", warnings),
        commission=_parse_optional_number(data.get("commission"), "commission", warnings),
        featured=_normalize_boolean(data.get("featured"), False),
        status=_normalize_status(data.get("status"), warnings),
        is_le_package=_normalize_boolean(data.get("is_le_package"), False),
        id=_optional_text(data.get("id")),
    )
    for name in _OPTIONAL_TEXT_FIELDS:
        value = sub_treatments if name == "sub_treatments" else data.get(name)
        setattr(row, name, _optional_text(value))

    if row.commission is not None and not 0 <= row.commission <= 100:
        _warn(warnings, f"commission {row.commission:g} outside 0-100")

    row.meta = PackageMeta(
        source_file=_optional_text(raw_meta.get("source_file")),
        source_page=_normalize_page(raw_meta.get("source_page")),
        confidence_score=_normalize_confidence(raw_meta.get("confidence_score")),
        warnings=warnings,
        matcher=matcher,
    )

    _apply_matching(row)
    return row


def _recorded_score(matcher: Dict[str, Any], key: str) -> bool:
    score = matcher.get(key)
    return isinstance(score, (int, float)) and not isinstance(score, bool) and 0.0 <= score <= 1.0


def _apply_matching(row: PackageRow) -> None:
    warnings = row.meta.warnings
    matcher = row.meta.matcher

    # Already canonical with a recorded score: keep the score of the source text.
    if row.hospital_name in HOSPITAL_NAMES and _recorded_score(matcher, "hospitalScore"):
        pass
    elif row.hospital_name:
        result = match_hospital_name(row.hospital_name)
        matcher["hospitalScore"] = result.score
        if result.value:
            row.hospital_name = result.value
        else:
            _warn(warnings, f"Hospital not recognized: {row.hospital_name}")

    if row.treatment_name in TREATMENT_NAMES and _recorded_score(matcher, "treatmentScore"):
        pass
    elif row.treatment_name:
        result = match_treatment_name(row.treatment_name)
        matcher["treatmentScore"] = result.score
        if result.value:
            row.treatment_name = result.value
        else:
            _warn(warnings, f"Treatment not recognized: {row.treatment_name}")


# ------------------------------------------------------------------
# Batch validation
# ------------------------------------------------------------------
@dataclass
class BatchBuckets:
    valid_packages: List[PackageRow] = field(default_factory=list)
    packages_with_warnings: List[PackageRow] = field(default_factory=list)
    invalid_packages: List[PackageRow] = field(default_factory=list)


def _missing_required(row: PackageRow) -> List[str]:
    missing = []
    for name in REQUIRED_FIELDS:
        value = getattr(row, name, None)
        if name == "price":
            if value is None:
                missing.append(name)
        elif not _text(value):
            missing.append(name)
    return missing


def validate_package_batch(rows: List[PackageRow]) -> BatchBuckets:
    """
    Partition rows into valid / with-warnings / invalid (disjoint, complete).

    Invalid rows get a "Missing required fields: ..." warning appended in
    place so the UI can show why they were flagged.
    """
    buckets = BatchBuckets()
    for row in rows:
        missing = _missing_required(row)
        if missing:
            _warn(row.meta.warnings, f"Missing required fields: {', '.join(missing)}")
            buckets.invalid_packages.append(row)
        elif row.meta.warnings:
            buckets.packages_with_warnings.append(row)
        else:
            buckets.valid_packages.append(row)
    return buckets


def summarize_batch(buckets: BatchBuckets) -> Dict[str, int]:
    valid = len(buckets.valid_packages)
    with_warnings = len(buckets.packages_with_warnings)
    invalid = len(buckets.invalid_packages)
    return {
        "total": valid + with_warnings + invalid,
        "valid": valid,
        "withWarnings": with_warnings,
        "invalid": invalid,
    }
