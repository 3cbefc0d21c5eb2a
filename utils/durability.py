# utils/durability.py
import os, re, json, logging, secrets
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)

_SAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9._-]")


def new_batch_id(now: Optional[datetime] = None) -> str:
    """Sortable, human-scannable id: b_YYYYMMDD_HHMMSS_xxxx."""
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"b_{stamp}_{secrets.token_hex(2)}"


def safe_file_name(name: str) -> str:
    return _SAFE_NAME_RE.sub("_", name or "") or "file"


def write_json(path, obj):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, ensure_ascii=False, indent=2, fp=f)


def save_ocr_debug_snapshot(base_dir, batch_id, file_name, page_number, text) -> Optional[str]:
    """Dump one page's cleaned text under <base>/ocr-debug/. Never raises."""
    path = os.path.join(base_dir, "ocr-debug", f"{batch_id}_p{page_number}_{safe_file_name(file_name)}.txt")
    body = f"BATCH: {batch_id}\nFILE: {file_name}\nPAGE: {page_number}\n----\n{text}"
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(body)
    except OSError as e:
        logger.warning("Could not write OCR debug snapshot %s: %s", path, e)
        return None
    logger.info("OCR debug snapshot written: %s", path)
    return path


def persist_result_snapshot(base_dir, batch_id, payload) -> Optional[str]:
    path = os.path.join(base_dir, "ocr", f"{batch_id}.json")
    try:
        write_json(path, payload)
    except (OSError, TypeError, ValueError) as e:
        logger.warning("Could not write result snapshot %s: %s", path, e)
        return None
    return path


def persist_csv(base_dir, batch_id, csv_text: str) -> Optional[str]:
    path = os.path.join(base_dir, "csv", f"{batch_id}.csv")
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(csv_text)
    except OSError as e:
        logger.warning("Could not write CSV snapshot %s: %s", path, e)
        return None
    return path
