# utils/settings.py
import os
import logging
from dataclasses import dataclass
from functools import lru_cache

logger = logging.getLogger(__name__)

CLAUDE_SONNET_MODEL_ID = "anthropic.claude-3-5-sonnet-20240620-v1:0"
CLAUDE_OPUS_MODEL_ID = "anthropic.claude-3-opus-20240229-v1:0"


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_num(name: str, default, cast=int):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        logger.warning("Ignoring malformed %s=%r; using default %r", name, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration. Read once, never mutated per request."""

    # OCR
    ocr_langs: str = "eng+chi_sim"
    ocr_timeout_ms: int = 150_000
    ocr_psm: str = "6"
    ocr_oem: str = "1"
    ocr_max_file_mb: int = 50
    ocr_debug: bool = False
    ocr_pdf_dpi: int = 300
    pdf_text_min_chars: int = 50

    # LLM
    llm_provider: str = "bedrock"
    aws_region: str = "us-east-1"
    bedrock_model_id: str = CLAUDE_SONNET_MODEL_ID
    bedrock_sonnet_profile_arn: str = ""
    bedrock_opus_profile_arn: str = ""
    openai_api_key: str = ""
    openai_model: str = "gpt-4.1-mini"
    llm_max_tokens: int = 6000
    llm_temperature: float = 0.1
    llm_timeout_seconds: int = 300
    llm_max_attempts: int = 3

    # Outputs / importer
    output_dir: str = "outputs"
    bulk_import_endpoint: str = ""

    @property
    def max_file_size_bytes(self) -> int:
        return self.ocr_max_file_mb * 1024 * 1024

    @property
    def ocr_timeout_seconds(self) -> float:
        return self.ocr_timeout_ms / 1000.0

    @classmethod
    def from_env(cls) -> "Settings":
        app_base = _env_str("APP_BASE_URL").rstrip("/")
        importer = _env_str("BULK_IMPORT_ENDPOINT") or (
            f"{app_base}/api/admin/clinic-menus/bulk-import-packages" if app_base
            else "http://localhost:3000/api/admin/clinic-menus/bulk-import-packages"
        )
        return cls(
            ocr_langs=_env_str("OCR_LANGS", cls.ocr_langs),
            ocr_timeout_ms=_env_num("OCR_TIMEOUT_MS", cls.ocr_timeout_ms),
            ocr_psm=_env_str("OCR_TESS_PSM", cls.ocr_psm),
            ocr_oem=_env_str("OCR_TESS_OEM", cls.ocr_oem),
            ocr_max_file_mb=_env_num("OCR_MAX_FILE_MB", cls.ocr_max_file_mb),
            ocr_debug=_env_str("OCR_DEBUG") == "1",
            ocr_pdf_dpi=_env_num("OCR_PDF_DPI", cls.ocr_pdf_dpi),
            pdf_text_min_chars=_env_num("PDF_TEXT_MIN_CHARS", cls.pdf_text_min_chars),
            llm_provider=_env_str("LLM_PROVIDER", cls.llm_provider).lower(),
            aws_region=_env_str("AWS_REGION") or _env_str("AWS_BEDROCK_REGION") or cls.aws_region,
            bedrock_model_id=(
                _env_str("BEDROCK_LIGHT_MODEL_ID")
                or _env_str("BEDROCK_MODEL_ID")
                or cls.bedrock_model_id
            ),
            bedrock_sonnet_profile_arn=_env_str("BEDROCK_SONNET_PROFILE_ARN"),
            bedrock_opus_profile_arn=_env_str("BEDROCK_OPUS_PROFILE_ARN"),
            openai_api_key=_env_str("OPENAI_API_KEY"),
            openai_model=_env_str("OPENAI_MODEL", cls.openai_model),
            llm_max_tokens=_env_num("LLM_MAX_TOKENS", cls.llm_max_tokens),
            llm_temperature=_env_num("LLM_TEMPERATURE", cls.llm_temperature, float),
            llm_timeout_seconds=_env_num("LLM_TIMEOUT_SECONDS", cls.llm_timeout_seconds),
            llm_max_attempts=_env_num("LLM_MAX_ATTEMPTS", cls.llm_max_attempts),
            output_dir=_env_str("OUTPUT_DIR", cls.output_dir),
            bulk_import_endpoint=importer,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
