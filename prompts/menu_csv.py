# prompts/menu_csv.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
import requests

from prompts.menu_normalizer import normalize_package_row
from prompts.menu_types import CSV_COLUMNS, PackageMeta, PackageRow
from utils.settings import get_settings

logger = logging.getLogger(__name__)

CSV_BOM = "\ufeff"
IMPORT_FILE_NAME = "clinic-menu-import.csv"

# CSV header -> PackageRow attribute, where they differ
_COLUMN_ATTR = {"Sub Treatments": "sub_treatments"}


def _fmt_number(value: Optional[float]) -> str:
    if value is None:
        return ""
    num = float(value)
    return str(int(num)) if num.is_integer() else repr(num)


def _fmt_cell(row: PackageRow, column: str) -> str:
    value = getattr(row, _COLUMN_ATTR.get(column, column))
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if column in ("price", "original_price", "commission"):
        return _fmt_number(value)
    return "" if value is None else str(value)


def to_bulk_csv_row(row: PackageRow) -> List[str]:
    """One row of strings in the bulk-import header order."""
    return [_fmt_cell(row, c) for c in CSV_COLUMNS]


def packages_to_dataframe(rows: Sequence[PackageRow]) -> pd.DataFrame:
    return pd.DataFrame([to_bulk_csv_row(r) for r in rows], columns=CSV_COLUMNS, dtype=str)


def generate_bulk_csv(rows: Sequence[PackageRow], bom: bool = True) -> str:
    """
    Serialise rows with the fixed 26-column header. The BOM keeps Excel from
    mangling Thai/Chinese text.
    """
    body = packages_to_dataframe(rows).to_csv(index=False, lineterminator="\n")
    return (CSV_BOM + body) if bom else body


def rows_from_dataframe(df: pd.DataFrame, previous: Sequence[PackageRow]) -> List[PackageRow]:
    """
    Rebuild PackageRows from an edited table (same row order as `previous`).
    Untouched rows are returned as-is; edited rows are re-normalised with their
    provenance and confidence kept but warnings/matcher scores recomputed.
    """
    out: List[PackageRow] = []
    records: List[Dict[str, Any]] = df.fillna("").to_dict(orient="records")
    for index, record in enumerate(records):
        before = previous[index] if index < len(previous) else None
        if before is not None and [str(record.get(c, "")) for c in CSV_COLUMNS] == to_bulk_csv_row(before):
            out.append(before)
            continue
        meta = before.meta if before is not None else PackageMeta()
        record["_meta"] = {
            "source_file": meta.source_file,
            "source_page": meta.source_page,
            "confidence_score": meta.confidence_score,
        }
        row = normalize_package_row(record)
        row.id = before.id if before is not None else None
        out.append(row)
    return out


def forward_csv_to_importer(
    csv_text: str,
    endpoint: Optional[str] = None,
    *,
    confirm_auto_create: Optional[bool] = None,
    clear_existing: Optional[bool] = None,
    timeout: int = 60,
) -> str:
    """POST the CSV to the bulk importer. Returns "success" or "failed:<reason>"; never raises."""
    url = endpoint or get_settings().bulk_import_endpoint
    data: Dict[str, str] = {}
    if confirm_auto_create is not None:
        data["confirmAutoCreate"] = str(confirm_auto_create).lower()
    if clear_existing is not None:
        data["clearExisting"] = str(clear_existing).lower()
    files = {"file": (IMPORT_FILE_NAME, csv_text.encode("utf-8"), "text/csv")}

    try:
        response = requests.post(url, files=files, data=data, timeout=timeout)
    except requests.RequestException as e:
        logger.error("Failed to forward CSV to importer %s: %s", url, e)
        return "failed:network_error"

    if not response.ok:
        try:
            details = response.json()
        except ValueError:
            details = None
        message = details.get("message") if isinstance(details, dict) else None
        reason = message or response.reason or str(response.status_code)
        logger.warning("Importer rejected CSV (%s): %s", response.status_code, reason)
        return f"failed:{reason}"
    logger.info("CSV forwarded to importer %s", url)
    return "success"
