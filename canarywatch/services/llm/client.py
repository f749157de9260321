import json
import logging
from time import perf_counter
from typing import Any

from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from canarywatch.core.config import get_settings
from canarywatch.core.observability import LLM_LATENCY
from canarywatch.schemas.extraction import SignalExtraction, SourceContext
from canarywatch.services.llm.prompts import EXTRACTION_PROMPT_VERSION, load_prompt
from canarywatch.services.llm.router import EXTRACTION_STAGE, ModelSelection, stage_candidates

try:
    from openai import AsyncOpenAI
except Exception:  # noqa: BLE001
    AsyncOpenAI = None  # type: ignore[misc,assignment]

try:
    import anthropic as anthropic_sdk
except Exception:  # noqa: BLE001
    anthropic_sdk = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

ANTHROPIC_MAX_TOKENS = 4000


class LLMTransientError(RuntimeError):
    pass


class LLMSchemaError(RuntimeError):
    pass


def _coerce_json(text: str) -> dict[str, Any]:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        cleaned = cleaned[cleaned.find("{") :]
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise LLMSchemaError(f"Invalid JSON response: {exc}") from exc


def _provider_result(candidate: ModelSelection, body: str, started: float, input_tokens, output_tokens) -> dict:
    return {
        "provider": candidate.provider,
        "model": candidate.model,
        "raw": _coerce_json(body),
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "latency_ms": int((perf_counter() - started) * 1000),
    }


provider_retry = retry(
    wait=wait_exponential(multiplier=1, min=1, max=8),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type(LLMTransientError),
    reraise=True,
)


@provider_retry
async def _call_openai(candidate: ModelSelection, system_prompt: str, text: str) -> dict:
    settings = get_settings()
    if AsyncOpenAI is None or not settings.openai_api_key:
        raise LLMTransientError("OpenAI client unavailable")

    client = AsyncOpenAI(api_key=settings.openai_api_key, timeout=settings.llm_timeout_seconds)
    started = perf_counter()
    try:
        completion = await client.chat.completions.create(
            model=candidate.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": text},
            ],
            response_format={"type": "json_object"},
            temperature=0,
        )
    except Exception as exc:  # noqa: BLE001
        raise LLMTransientError(str(exc)) from exc

    usage = completion.usage
    return _provider_result(
        candidate,
        completion.choices[0].message.content or "{}",
        started,
        getattr(usage, "prompt_tokens", None),
        getattr(usage, "completion_tokens", None),
    )


@provider_retry
async def _call_anthropic(candidate: ModelSelection, system_prompt: str, text: str) -> dict:
    settings = get_settings()
    if anthropic_sdk is None or not settings.anthropic_api_key:
        raise LLMTransientError("Anthropic client unavailable")

    client = anthropic_sdk.AsyncAnthropic(api_key=settings.anthropic_api_key, timeout=settings.llm_timeout_seconds)
    started = perf_counter()
    try:
        message = await client.messages.create(
            model=candidate.model,
            max_tokens=ANTHROPIC_MAX_TOKENS,
            temperature=0,
            system=system_prompt,
            messages=[{"role": "user", "content": text}],
        )
    except Exception as exc:  # noqa: BLE001
        raise LLMTransientError(str(exc)) from exc

    body = "\n".join(getattr(block, "text", "") for block in message.content or [] if getattr(block, "text", ""))
    usage = getattr(message, "usage", None)
    return _provider_result(
        candidate,
        body or "{}",
        started,
        getattr(usage, "input_tokens", None),
        getattr(usage, "output_tokens", None),
    )


async def _call_candidate(candidate: ModelSelection, system_prompt: str, text: str) -> dict:
    if candidate.provider == "openai":
        return await _call_openai(candidate, system_prompt, text)
    if candidate.provider == "anthropic":
        return await _call_anthropic(candidate, system_prompt, text)
    # No provider configured: extract nothing rather than invent claims.
    return {
        "provider": candidate.provider,
        "model": candidate.model,
        "raw": SignalExtraction().model_dump(),
        "input_tokens": 0,
        "output_tokens": 0,
        "latency_ms": 0,
    }


def build_user_message(content: str, context: SourceContext) -> str:
    settings = get_settings()
    header = [f"Source: {context.name} (tier {context.tier}, trust weight {context.trust_weight:.2f})"]
    if context.url:
        header.append(f"URL: {context.url}")
    if context.published_at:
        header.append(f"Published: {context.published_at}")
    return "\n".join(header) + "\n\n---\n\n" + content[: settings.llm_max_content_chars]


async def extract_signals(content: str, context: SourceContext) -> tuple[SignalExtraction, dict]:
    """Extract capability claims, trying each configured provider in turn.

    Provider errors and schema violations move on to the next candidate; when
    every candidate fails the result is an empty claim list with the collected
    errors in the returned metadata.
    """
    prompt = load_prompt(EXTRACTION_PROMPT_VERSION)
    text = build_user_message(content, context)
    errors: list[str] = []
    for candidate in stage_candidates(EXTRACTION_STAGE):
        try:
            payload = await _call_candidate(candidate, prompt.text, text)
            output = SignalExtraction.model_validate(payload["raw"])
        except (LLMSchemaError, ValidationError) as exc:
            errors.append(f"{candidate.provider}:{candidate.model}:schema:{exc}")
            continue
        except Exception as exc:  # noqa: BLE001
            errors.append(f"{candidate.provider}:{candidate.model}:error:{exc}")
            continue
        LLM_LATENCY.labels(EXTRACTION_STAGE, payload["provider"], payload["model"]).observe(
            (payload.get("latency_ms") or 0) / 1000
        )
        payload["prompt_version"] = prompt.version
        payload["prompt_checksum"] = prompt.checksum
        payload["errors"] = errors
        return output, payload

    logger.warning("Extraction failed for %s: %s", context.name, " | ".join(errors))
    return SignalExtraction(), {
        "provider": None,
        "model": None,
        "raw": SignalExtraction().model_dump(),
        "prompt_version": prompt.version,
        "errors": errors,
    }
