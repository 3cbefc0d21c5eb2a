# prompts/menu_ocr.py
from __future__ import annotations

import io, re, uuid, logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import fitz  # PyMuPDF
import pytesseract
from pillow_heif import register_heif_opener
from PIL import Image, ImageFilter, ImageOps

from prompts.menu_types import ALLOWED_MIME_TYPES, FileMeta, IncomingFile, OcrPage, SavedFile
from utils.durability import new_batch_id, save_ocr_debug_snapshot
from utils.errors import InputRejectedError, OcrError, OcrTimeoutError
from utils.settings import Settings, get_settings

logger = logging.getLogger(__name__)

register_heif_opener()  # lets Image.open() read HEIC/HEIF phone photos

UPLOAD_FIELD_NAMES = ("file", "files", "files[]")

# browsers often send HEIC as octet-stream
_EXTENSION_MIME = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".heic": "image/heic",
    ".heif": "image/heif",
}

UPSCALE_BELOW_WIDTH = 1400
UPSCALE_MAX_WIDTH = 2200
BINARIZE_THRESHOLD = 180


# ======================================================================
# Text clean-up
# ======================================================================

_LINE_END_RE = re.compile(r"\r\n?|\f")
_HSPACE_RE = re.compile(r"[ \t]+")
_TRAILING_SPACE_RE = re.compile(r" +\n")
_BLANK_LINES_RE = re.compile(r"\n{2,}")


def clean_text(text: str) -> str:
    """
    Normalise line endings, collapse runs of spaces/tabs and blank lines, trim.
    Single line breaks survive: they separate menu items.
    """
    t = _LINE_END_RE.sub("\n", text or "")
    t = _HSPACE_RE.sub(" ", t)
    t = _TRAILING_SPACE_RE.sub("\n", t)
    t = _BLANK_LINES_RE.sub("\n", t)
    return t.strip()


def _non_ws_len(text: str) -> int:
    return len(re.sub(r"\s", "", text or ""))


# ======================================================================
# Image preprocessing + Tesseract
# ======================================================================

def preprocess_image_for_ocr(img: Image.Image) -> Image.Image:
    """
    Auto-orient, upscale narrow photos, grayscale, stretch contrast, sharpen and
    binarise. Falls back to the untouched image if any step fails.
    """
    try:
        out = ImageOps.exif_transpose(img)
        if out.width < UPSCALE_BELOW_WIDTH:
            target_w = min(UPSCALE_MAX_WIDTH, out.width * 2)
            target_h = max(1, round(out.height * target_w / out.width))
            out = out.resize((target_w, target_h), Image.Resampling.LANCZOS)
        out = out.convert("L")
        out = ImageOps.autocontrast(out)
        out = out.filter(ImageFilter.SHARPEN)
        return out.point(lambda p: 255 if p > BINARIZE_THRESHOLD else 0)
    except (OSError, ValueError) as e:
        logger.warning("Image preprocessing failed, using original image: %s", e)
        return img


def tesseract_config(settings: Settings) -> str:
    return f"--psm {settings.ocr_psm} --oem {settings.ocr_oem} -c preserve_interword_spaces=1"


def run_tesseract(image: Image.Image, settings: Optional[Settings] = None) -> str:
    """
    One Tesseract subprocess per call. pytesseract kills it when the timeout
    expires; that surfaces here as OcrTimeoutError naming the language set.
    """
    settings = settings or get_settings()
    try:
        return pytesseract.image_to_string(
            image,
            lang=settings.ocr_langs,
            config=tesseract_config(settings),
            timeout=settings.ocr_timeout_seconds,
        )
    except RuntimeError as e:  # TesseractError is a RuntimeError too
        if "timeout" in str(e).lower():
            raise OcrTimeoutError(settings.ocr_timeout_seconds, settings.ocr_langs) from e
        raise OcrError(f"Tesseract failed: {e}") from e
    except OSError as e:  # TesseractNotFoundError
        raise OcrError(f"Tesseract is not available: {e}") from e


def _ocr_image_bytes(data: bytes, settings: Settings) -> str:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (OSError, ValueError) as e:
        raise OcrError(f"Could not decode image: {e}") from e
    return clean_text(run_tesseract(preprocess_image_for_ocr(img), settings))


# ======================================================================
# PDF
# ======================================================================

def _render_page(page, dpi: int) -> Image.Image:
    mat = fitz.Matrix(dpi / 72.0, dpi / 72.0)
    pix = page.get_pixmap(matrix=mat, alpha=False)
    return Image.frombytes("RGB", [pix.width, pix.height], pix.samples)


def _pdf_page_texts(data: bytes, file_name: str, settings: Settings) -> List[str]:
    """
    Text layer first. Under PDF_TEXT_MIN_CHARS in total means a scanned PDF:
    every page is rasterised and OCR'd. Otherwise only pages whose text layer
    is empty go through OCR. Page count is preserved either way.
    """
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as e:  # fitz.FileDataError
        raise OcrError(f"Could not open PDF: {e}") from e

    try:
        layer = [clean_text(page.get_text("text") or "") for page in doc]
        scanned = sum(_non_ws_len(t) for t in layer) < settings.pdf_text_min_chars
        if scanned:
            logger.info("%s: text layer below %d chars, OCR on all %d page(s)",
                        file_name, settings.pdf_text_min_chars, len(layer))

        texts: List[str] = []
        for index, page in enumerate(doc):
            if scanned or not layer[index]:
                if not scanned:
                    logger.info("%s p%d: no text layer, rasterising for OCR", file_name, index + 1)
                img = _render_page(page, settings.ocr_pdf_dpi)
                texts.append(clean_text(run_tesseract(img, settings)))
            else:
                logger.info("%s p%d: using text layer", file_name, index + 1)
                texts.append(layer[index])
        return texts or [""]
    finally:
        doc.close()


# ======================================================================
# Per-file dispatch
# ======================================================================

def extract_file_pages(saved: SavedFile, settings: Optional[Settings] = None) -> List[OcrPage]:
    """OCR one validated file. Raises OcrError on failure."""
    settings = settings or get_settings()
    if saved.mime_type == "application/pdf":
        texts = _pdf_page_texts(saved.data, saved.file_name, settings)
    else:
        texts = [_ocr_image_bytes(saved.data, settings)]
    return [
        OcrPage(file_id=saved.file_id, file_name=saved.file_name, page_number=i, raw_text=t)
        for i, t in enumerate(texts, start=1)
    ]


def _extract_isolated(saved: SavedFile, settings: Settings) -> Tuple[List[OcrPage], Optional[str]]:
    try:
        return extract_file_pages(saved, settings), None
    except OcrError as e:
        logger.error("OCR failed for %s: %s", saved.file_name, e)
        # keep the file visible downstream as one empty page
        return [OcrPage(saved.file_id, saved.file_name, 1, "")], str(e)


def extract_pages(files: Sequence[SavedFile], settings: Optional[Settings] = None) -> List[OcrPage]:
    """
    Flattened pages for all files, in input order then page order. A file
    that fails OCR contributes one empty page and does not stop its siblings.
    """
    settings = settings or get_settings()
    pages: List[OcrPage] = []
    for saved in files:
        file_pages, _ = _extract_isolated(saved, settings)
        pages.extend(file_pages)
    return pages


# ======================================================================
# Upload entry point
# ======================================================================

@dataclass
class OcrBatch:
    batch_id: str
    ocr_pages: List[OcrPage] = field(default_factory=list)
    files_meta: List[FileMeta] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batchId": self.batch_id,
            "ocrPages": [p.to_dict() for p in self.ocr_pages],
            "filesMeta": [m.to_dict() for m in self.files_meta],
        }


def _resolve_mime(f: IncomingFile) -> str:
    mime = (f.mime_type or "").strip().lower()
    if mime == "image/jpg":
        mime = "image/jpeg"
    if mime in ALLOWED_MIME_TYPES:
        return mime
    if mime in ("", "application/octet-stream"):
        ext = ("." + f.name.rsplit(".", 1)[-1].lower()) if "." in (f.name or "") else ""
        return _EXTENSION_MIME.get(ext, mime)
    return mime


def _base_name(name: str) -> str:
    # browsers and API clients may send a full client path
    return re.split(r"[\\/]", name or "")[-1].strip()


def _validate_uploads(files: Sequence[IncomingFile], settings: Settings) -> List[SavedFile]:
    accepted = [f for f in files if f.field_name in UPLOAD_FIELD_NAMES]
    if not accepted:
        raise InputRejectedError(400, "No file provided. Upload at least one file as `file` or `files[]`.")

    saved: List[SavedFile] = []
    for f in accepted:
        mime = _resolve_mime(f)
        if mime not in ALLOWED_MIME_TYPES:
            raise InputRejectedError(
                400, f"Unsupported file type for {f.name} ({f.mime_type or 'unknown'}). Upload PDF, JPG, PNG, or HEIC."
            )
        if f.size > settings.max_file_size_bytes:
            raise InputRejectedError(
                413, f"File {f.name} exceeds max size of {settings.ocr_max_file_mb} MB."
            )
        file_id = uuid.uuid4().hex
        saved.append(SavedFile(file_id=file_id, file_name=_base_name(f.name) or f"upload-{file_id}",
                               mime_type=mime, data=f.data))
    return saved


def handle_upload_and_extract_ocr(files: Sequence[IncomingFile],
                                  settings: Optional[Settings] = None) -> OcrBatch:
    """
    Validate every upload (type, size) before any OCR runs, then OCR each file
    independently. Per-file failures land on FileMeta.error.
    """
    settings = settings or get_settings()
    saved_files = _validate_uploads(files, settings)
    batch = OcrBatch(batch_id=new_batch_id())
    logger.info("Batch %s: %d file(s), langs=%s psm=%s",
                batch.batch_id, len(saved_files), settings.ocr_langs, settings.ocr_psm)

    for saved in saved_files:
        file_pages, error = _extract_isolated(saved, settings)
        batch.ocr_pages.extend(file_pages)
        batch.files_meta.append(FileMeta(
            file_id=saved.file_id,
            original_name=saved.file_name,
            page_count=len(file_pages),
            error=error,
        ))
        if settings.ocr_debug:
            for page in file_pages:
                save_ocr_debug_snapshot(settings.output_dir, batch.batch_id,
                                        page.file_name, page.page_number, page.raw_text)
    return batch
