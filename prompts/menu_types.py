# prompts/menu_types.py
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, NewType, Optional

__all__ = [
    "ALLOWED_CURRENCIES",
    "ALLOWED_MIME_TYPES",
    "CSV_COLUMNS",
    "REQUIRED_FIELDS",
    "RawPackage",
    "IncomingFile",
    "SavedFile",
    "OcrPage",
    "FileMeta",
    "PackageMeta",
    "PackageRow",
]

ALLOWED_CURRENCIES = ("USD", "THB", "EUR", "GBP", "SGD", "MYR", "KRW")

ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/heic",
    "image/heif",
})

REQUIRED_FIELDS = ("title", "hospital_name", "treatment_name", "price", "currency")

# Bulk-import header order. "Sub Treatments" maps to PackageRow.sub_treatments.
CSV_COLUMNS = [
    "title",
    "description",
    "details",
    "hospital_name",
    "treatment_name",
    "Sub Treatments",
    "price",
    "original_price",
    "currency",
    "duration",
    "treatment_category",
    "anaesthesia",
    "commission",
    "featured",
    "status",
    "doctor_name",
    "is_le_package",
    "includes",
    "image_file_id",
    "hospital_location",
    "category",
    "hospital_country",
    "translation_title",
    "translation_description",
    "translation_details",
    "translation",
]

# Untrusted, duck-typed package as parsed from model JSON. Only
# menu_normalizer.normalize_package_row turns one into a PackageRow.
RawPackage = NewType("RawPackage", Dict[str, Any])


# ------------------------------------------------------------------
# Upload / OCR side
# ------------------------------------------------------------------
@dataclass(slots=True)
class IncomingFile:
    """One uploaded file as handed over by the UI / route layer."""

    name: str
    mime_type: str
    data: bytes
    field_name: str = "file"     # "file" | "files" | "files[]"

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(slots=True)
class SavedFile:
    """Request-scoped, validated upload. Never persisted."""

    file_id: str
    file_name: str
    mime_type: str
    data: bytes


@dataclass(slots=True)
class OcrPage:
    file_id: str
    file_name: str
    page_number: int     # 1-based, strictly increasing within a file
    raw_text: str        # cleaned; single line breaks preserved

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileId": self.file_id,
            "fileName": self.file_name,
            "pageNumber": self.page_number,
            "rawText": self.raw_text,
        }


@dataclass(slots=True)
class FileMeta:
    file_id: str
    original_name: str
    page_count: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {"file_id": self.file_id, "original_name": self.original_name, "page_count": self.page_count}
        if self.error:
            out["error"] = self.error
        return out


# ------------------------------------------------------------------
# Package side
# ------------------------------------------------------------------
@dataclass
class PackageMeta:
    source_file: Optional[str] = None
    source_page: Optional[int] = None
    confidence_score: Optional[float] = None
    warnings: List[str] = field(default_factory=list)
    matcher: Dict[str, Optional[float]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_file": self.source_file,
            "source_page": self.source_page,
            "confidence_score": self.confidence_score,
            "warnings": list(self.warnings),
            "matcher": dict(self.matcher),
        }


@dataclass
class PackageRow:
    """A fully normalized catalog record. Optional text fields are None, never ""."""

    title: str = ""
    hospital_name: str = ""
    treatment_name: str = ""
    price: Optional[float] = None
    currency: str = "USD"

    description: Optional[str] = None
    details: Optional[str] = None
    sub_treatments: Optional[str] = None
    original_price: Optional[float] = None
    duration: Optional[str] = None
    treatment_category: Optional[str] = None
    anaesthesia: Optional[str] = None
    commission: Optional[float] = None
    featured: bool = False
    status: str = "active"
    doctor_name: Optional[str] = None
    is_le_package: bool = False
    includes: Optional[str] = None
    image_file_id: Optional[str] = None
    hospital_location: Optional[str] = None
    category: Optional[str] = None
    hospital_country: Optional[str] = None
    translation_title: Optional[str] = None
    translation_description: Optional[str] = None
    translation_details: Optional[str] = None
    translation: Optional[str] = None

    id: Optional[str] = None
    meta: PackageMeta = field(default_factory=PackageMeta)

    @property
    def warnings(self) -> List[str]:
        return self.meta.warnings

    def to_dict(self) -> Dict[str, Any]:
        """JSON shape used by the UI / snapshots (`_meta` key, like the model output)."""
        out = asdict(self)
        out.pop("meta")
        out["_meta"] = self.meta.to_dict()
        return out
