# utils/errors.py
from __future__ import annotations

from typing import Optional


class MenuOcrError(Exception):
    """Base class for every error raised by the menu OCR pipeline."""

    user_message = "Clinic menu processing failed."


# ---------- Input rejection (client error) ----------

class InputRejectedError(MenuOcrError):
    """Upload rejected before any OCR/LLM work. `status` is an HTTP-style hint."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.user_message = message


# ---------- OCR ----------

class OcrError(MenuOcrError):
    user_message = "OCR failed for this file."


class OcrTimeoutError(OcrError):
    def __init__(self, timeout_seconds: float, langs: str):
        super().__init__(
            f"Tesseract OCR timed out after {int(timeout_seconds * 1000)} ms (languages: {langs})"
        )
        self.timeout_seconds = timeout_seconds
        self.langs = langs
        self.user_message = "OCR took too long on this file and was stopped."


# ---------- LLM transport ----------

class LlmError(MenuOcrError):
    retryable = False
    user_message = "AI extraction failed."


class LlmAuthError(LlmError):
    user_message = "AI provider authentication failed."


class LlmValidationError(LlmError):
    user_message = "AI provider rejected the request (validation error)."


class LlmUnavailableError(LlmError):
    retryable = True
    user_message = "AI provider temporarily unavailable. Please retry shortly."


class LlmPermissionError(LlmError):
    user_message = "Permission denied for the AI provider."


class LlmExtractionError(LlmError):
    user_message = "AI extraction failed."


# ---------- LLM output ----------

class ModelOutputError(MenuOcrError):
    """The model answered, but not with the JSON we asked for."""

    user_message = "AI returned output that could not be parsed."

    def __init__(self, message: str, *, file_name: str = "", raw_preview: str = "",
                 cleaned_preview: str = ""):
        super().__init__(message)
        self.file_name = file_name
        self.raw_preview = raw_preview
        self.cleaned_preview = cleaned_preview


class TruncatedOutputError(ModelOutputError):
    user_message = "AI output was cut off at the token limit; try a smaller file or raise LLM_MAX_TOKENS."


class ExtractionFailedError(MenuOcrError):
    """Raised when no file in a batch could be extracted."""

    def __init__(self, message: str, failures: Optional[dict] = None):
        super().__init__(message)
        self.failures = failures or {}
