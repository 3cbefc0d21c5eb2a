# prompts/menu_extraction.py
from __future__ import annotations

import json, logging, secrets
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from prompts.menu_normalizer import normalize_package_row
from prompts.menu_prompt import build_prompt, find_price_anchors, sanitize_model_response
from prompts.menu_types import OcrPage, PackageRow, RawPackage
from utils.errors import ExtractionFailedError, MenuOcrError, ModelOutputError, TruncatedOutputError
from utils.llm_client import LlmResponse, invoke_extraction_detailed

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 500

# prompt in, LlmResponse out; swapped for a stub in tests
Invoker = Callable[[str], LlmResponse]


@dataclass
class FileExtractionResult:
    file_id: str
    file_name: str
    page_count: int = 0
    anchors: int = 0
    package_count: int = 0
    skipped: bool = False
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_id": self.file_id,
            "file_name": self.file_name,
            "page_count": self.page_count,
            "anchors": self.anchors,
            "package_count": self.package_count,
            "skipped": self.skipped,
            "error": self.error,
            "warnings": list(self.warnings),
        }


@dataclass
class ExtractionReport:
    packages: List[PackageRow] = field(default_factory=list)
    files: List[FileExtractionResult] = field(default_factory=list)

    @property
    def failed_files(self) -> List[FileExtractionResult]:
        return [f for f in self.files if f.error]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "packages": [p.to_dict() for p in self.packages],
            "files": [f.to_dict() for f in self.files],
        }


def _default_invoker(prompt: str) -> LlmResponse:
    return invoke_extraction_detailed(prompt)


def group_pages_by_file(pages: Sequence[OcrPage]) -> Dict[str, List[OcrPage]]:
    """fileId -> pages sorted by page number; files keep first-seen order."""
    groups: Dict[str, List[OcrPage]] = {}
    for page in pages:
        groups.setdefault(page.file_id, []).append(page)
    for file_pages in groups.values():
        file_pages.sort(key=lambda p: p.page_number)
    return groups


def parse_model_packages(raw_text: str, file_name: str, truncated: bool = False) -> List[RawPackage]:
    """
    Sanitize + json.loads the model output. A missing or non-list `packages`
    is an empty result; invalid JSON raises ModelOutputError (or
    TruncatedOutputError when the model hit its token cap).
    """
    cleaned = sanitize_model_response(raw_text)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raw_preview = (raw_text or "")[:PREVIEW_CHARS]
        cleaned_preview = cleaned[:PREVIEW_CHARS]
        logger.error("JSON parse failed for %s: %s\nraw: %s\ncleaned: %s",
                     file_name, e, raw_preview, cleaned_preview)
        cls = TruncatedOutputError if truncated else ModelOutputError
        reason = "output truncated at token limit" if truncated else str(e)
        raise cls(
            f"AI returned invalid JSON for {file_name}: {reason}",
            file_name=file_name,
            raw_preview=raw_preview,
            cleaned_preview=cleaned_preview,
        ) from e

    if isinstance(parsed, list):
        packages = parsed
    elif isinstance(parsed, dict):
        packages = parsed.get("packages")
    else:
        packages = None
    if not isinstance(packages, list):
        logger.warning("%s: model output has no packages array; treating as empty", file_name)
        return []
    return [RawPackage(p) for p in packages if isinstance(p, dict)]


def _package_id(file_id: str, index: int) -> str:
    return f"pkg_{file_id}_{index}_{secrets.token_hex(3)}"


def _extract_one_file(file_pages: List[OcrPage], result: FileExtractionResult,
                      invoke: Invoker) -> List[PackageRow]:
    prompt = build_prompt(file_pages)
    logger.info("Prompt for %s: %d page(s), %d chars (~%d tokens), %d price anchor(s)",
                result.file_name, len(file_pages), len(prompt), len(prompt) // 4, result.anchors)

    response = invoke(prompt)
    raw_packages = parse_model_packages(response.text, result.file_name, response.truncated)

    rows: List[PackageRow] = []
    for index, raw in enumerate(raw_packages):
        row = normalize_package_row(raw)
        if not row.meta.source_file:
            row.meta.source_file = result.file_name
        if row.meta.source_page is None and len(file_pages) == 1:
            row.meta.source_page = file_pages[0].page_number
        row.id = row.id or _package_id(result.file_id, index)
        rows.append(row)
    return rows


def extract_packages_with_report(pages: Sequence[OcrPage],
                                 invoke: Optional[Invoker] = None) -> ExtractionReport:
    """
    One LLM call per source file. Failures stay with their file (recorded on
    the report) and never stop sibling files.
    """
    invoke = invoke or _default_invoker
    report = ExtractionReport()

    for file_id, file_pages in group_pages_by_file(pages).items():
        result = FileExtractionResult(
            file_id=file_id,
            file_name=file_pages[0].file_name,
            page_count=len(file_pages),
            anchors=len(find_price_anchors("\n".join(p.raw_text for p in file_pages))),
        )
        report.files.append(result)

        if not any(p.raw_text.strip() for p in file_pages):
            result.skipped = True
            result.warnings.append("No text extracted from this file; skipped AI extraction")
            logger.warning("%s: all pages empty, skipping LLM call", result.file_name)
            continue

        try:
            rows = _extract_one_file(file_pages, result, invoke)
        except MenuOcrError as e:
            result.error = str(e)
            logger.error("Extraction failed for %s: %s", result.file_name, e)
            continue

        result.package_count = len(rows)
        # a merged duplicate anchor accounts for one missing row
        merged = sum(1 for r in rows for w in r.warnings if w.startswith("Merged duplicate price anchor"))
        if result.anchors and len(rows) + merged < result.anchors:
            msg = (f"Model returned {len(rows)} package(s) but {result.anchors} price anchor(s) "
                   f"were found; some items may be missing")
            result.warnings.append(msg)
            logger.warning("%s: %s", result.file_name, msg)
        report.packages.extend(rows)

    return report


def extract_packages_from_ocr_text(pages: Sequence[OcrPage],
                                   invoke: Optional[Invoker] = None) -> List[PackageRow]:
    """
    Flat package list across files (grouped contiguously, input file order).
    Raises ExtractionFailedError only when every attempted file failed.
    """
    report = extract_packages_with_report(pages, invoke)
    failed = report.failed_files
    attempted = [f for f in report.files if not f.skipped]
    if failed and len(failed) == len(attempted):
        raise ExtractionFailedError(
            "; ".join(f"{f.file_name}: {f.error}" for f in failed),
            failures={f.file_name: f.error for f in failed},
        )
    return report.packages
