# utils/llm_client.py
import json
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig
from openai import OpenAI
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from utils.errors import (
    LlmAuthError,
    LlmError,
    LlmExtractionError,
    LlmPermissionError,
    LlmUnavailableError,
    LlmValidationError,
)
from utils.settings import CLAUDE_OPUS_MODEL_ID, CLAUDE_SONNET_MODEL_ID, Settings, get_settings

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "bedrock-2023-05-31"
TRUNCATION_RATIO = 0.98

# swapped out in tests so retries do not sleep
RETRY_WAIT = wait_exponential_jitter(initial=1, max=30)

_ARN_REGION_RE = re.compile(r"arn:aws:bedrock:([^:]+):")

# substring -> error class; first hit wins
_ERROR_MARKERS = (
    (("UnrecognizedClientException", "InvalidSignatureException", "AuthenticationError",
      "ExpiredTokenException"), LlmAuthError),
    (("ValidationException", "BadRequestError"), LlmValidationError),
    (("ModelNotReadyException", "ThrottlingException", "ServiceUnavailable", "RateLimitError",
      "InternalServerError", "APIConnectionError", "ReadTimeoutError", "timeout", "Timeout"),
     LlmUnavailableError),
    (("AccessDeniedException", "PermissionDeniedError"), LlmPermissionError),
)


@dataclass
class LlmResponse:
    text: str
    stop_reason: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    truncated: bool = False


# ---------- model resolution ----------

def _region_from_arn(arn: str) -> Optional[str]:
    m = _ARN_REGION_RE.match(arn or "")
    return m.group(1) if m else None


def resolve_model_id(preferred: Optional[str] = None, settings: Optional[Settings] = None) -> str:
    """
    Pick the model reference to invoke. A plain Sonnet/Opus id is swapped for
    its inference-profile ARN when one is configured. ARNs pointing at another
    region than AWS_REGION are logged as errors (Bedrock then rejects the id).
    """
    settings = settings or get_settings()
    model_id = (preferred or settings.bedrock_model_id or "").strip()
    if not model_id:
        raise LlmValidationError(
            "No Bedrock model configured. Set BEDROCK_LIGHT_MODEL_ID or BEDROCK_MODEL_ID."
        )

    if not model_id.startswith("arn:aws:bedrock:"):
        if model_id == CLAUDE_SONNET_MODEL_ID and settings.bedrock_sonnet_profile_arn:
            model_id = settings.bedrock_sonnet_profile_arn
        elif model_id == CLAUDE_OPUS_MODEL_ID and settings.bedrock_opus_profile_arn:
            model_id = settings.bedrock_opus_profile_arn

    arn_region = _region_from_arn(model_id)
    if arn_region and arn_region != settings.aws_region:
        logger.error(
            "Region mismatch: AWS_REGION=%s but model ARN is in %s. "
            "Bedrock will reject the model identifier; set AWS_REGION=%s or use a profile in %s.",
            settings.aws_region, arn_region, arn_region, settings.aws_region,
        )
    logger.info("Using model: %s", model_id[:80])
    return model_id


# ---------- error taxonomy ----------

def classify_llm_error(exc: BaseException) -> LlmError:
    """Map a provider/transport exception onto the LlmError taxonomy."""
    if isinstance(exc, LlmError):
        return exc
    text = f"{type(exc).__name__}: {exc}"
    for markers, cls in _ERROR_MARKERS:
        if any(m in text for m in markers):
            err = cls(text)
            break
    else:
        err = LlmExtractionError(f"AI extraction failed: {exc}")
    return err


# ---------- transport ----------

def _decode_body(body: Any) -> str:
    """Bedrock hands back a StreamingBody; tests and proxies may give bytes or str."""
    if body is None:
        return ""
    if hasattr(body, "read"):
        body = body.read()
    if isinstance(body, (bytes, bytearray)):
        return bytes(body).decode("utf-8")
    return str(body)


def _is_truncated(stop_reason: Optional[str], output_tokens: Optional[int], max_tokens: int) -> bool:
    if stop_reason in ("max_tokens", "max_tokens_reached", "length"):
        return True
    if isinstance(output_tokens, int) and max_tokens:
        return output_tokens >= int(max_tokens * TRUNCATION_RATIO)
    return False


@lru_cache(maxsize=4)
def _bedrock_client(region: str, read_timeout: int):
    return boto3.client(
        "bedrock-runtime",
        region_name=region,
        config=BotoConfig(read_timeout=read_timeout, connect_timeout=30, retries={"max_attempts": 1}),
    )


@lru_cache(maxsize=2)
def _openai_client(api_key: str):
    return OpenAI(api_key=api_key or None)


def _invoke_bedrock(prompt: str, model_id: str, max_tokens: int, temperature: float,
                    settings: Settings) -> LlmResponse:
    client = _bedrock_client(settings.aws_region, settings.llm_timeout_seconds)
    req = {
        "anthropic_version": ANTHROPIC_VERSION,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "messages": [{"role": "user", "content": prompt}],
    }
    resp = client.invoke_model(
        modelId=model_id,
        body=json.dumps(req).encode("utf-8"),
        contentType="application/json",
        accept="application/json",
    )
    raw = _decode_body(resp.get("body"))
    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError as e:
        raise LlmExtractionError(f"Bedrock returned a non-JSON envelope: {raw[:200]}") from e

    parts = [c["text"] for c in data.get("content") or [] if isinstance(c, dict) and c.get("text")]
    usage = data.get("usage") or {}
    stop_reason = data.get("stop_reason") or data.get("stopReason")
    out_tok = usage.get("output_tokens")
    return LlmResponse(
        text="".join(parts),
        stop_reason=stop_reason,
        input_tokens=usage.get("input_tokens"),
        output_tokens=out_tok,
        truncated=_is_truncated(stop_reason, out_tok, max_tokens),
    )


def _invoke_openai(prompt: str, model_id: str, max_tokens: int, temperature: float,
                   settings: Settings) -> LlmResponse:
    client = _openai_client(settings.openai_api_key)
    resp = client.chat.completions.create(
        model=model_id,
        messages=[{"role": "user", "content": prompt}],
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=settings.llm_timeout_seconds,
    )
    choice = resp.choices[0]
    usage = getattr(resp, "usage", None)
    out_tok = getattr(usage, "completion_tokens", None)
    return LlmResponse(
        text=(choice.message.content or "").strip(),
        stop_reason=choice.finish_reason,
        input_tokens=getattr(usage, "prompt_tokens", None),
        output_tokens=out_tok,
        truncated=_is_truncated(choice.finish_reason, out_tok, max_tokens),
    )


_PROVIDERS = {
    "bedrock": _invoke_bedrock,
    "openai": _invoke_openai,
}


# ---------- public API ----------

def invoke_extraction_detailed(
    prompt: str,
    *,
    model_id: Optional[str] = None,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
    settings: Optional[Settings] = None,
) -> LlmResponse:
    """
    Send one extraction prompt and return the text plus stop reason / usage.
    Unavailable/throttled errors are retried (LLM_MAX_ATTEMPTS); everything
    else surfaces immediately as a classified LlmError.
    """
    settings = settings or get_settings()
    provider = settings.llm_provider
    call = _PROVIDERS.get(provider)
    if call is None:
        raise LlmValidationError(f"Unsupported LLM_PROVIDER '{provider}'. Use 'bedrock' or 'openai'.")

    if provider == "bedrock":
        resolved = resolve_model_id(model_id, settings)
    else:
        resolved = model_id or settings.openai_model
    max_tokens = max_tokens or settings.llm_max_tokens
    temperature = settings.llm_temperature if temperature is None else temperature

    @retry(
        reraise=True,
        stop=stop_after_attempt(max(1, settings.llm_max_attempts)),
        wait=RETRY_WAIT,
        retry=retry_if_exception_type(LlmUnavailableError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    def _attempt() -> LlmResponse:
        try:
            return call(prompt, resolved, max_tokens, temperature, settings)
        except LlmError:
            raise
        except Exception as e:
            err = classify_llm_error(e)
            if isinstance(err, LlmValidationError):
                logger.error("Validation error for model %s: %s", resolved, e)
            raise err from e

    result = _attempt()
    logger.info(
        "stop_reason=%s input_tokens=%s output_tokens=%s output_chars=%d%s",
        result.stop_reason, result.input_tokens, result.output_tokens, len(result.text),
        " LIKELY TRUNCATED" if result.truncated else "",
    )
    return result


def invoke_extraction(
    prompt: str,
    model_id: Optional[str] = None,
    max_tokens: Optional[int] = None,
    temperature: Optional[float] = None,
) -> str:
    """Raw text variant of invoke_extraction_detailed."""
    return invoke_extraction_detailed(
        prompt, model_id=model_id, max_tokens=max_tokens, temperature=temperature
    ).text
