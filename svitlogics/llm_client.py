from __future__ import annotations

import json
import logging
import os
import time
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import requests

from svitlogics.budget import LANGUAGE_PROFILES, OUTPUT_BUFFER_TOKENS, LanguageProfile, max_chars
from svitlogics.errors import (
    CascadeExhausted,
    ConfigurationError,
    FatalUpstreamError,
    MalformedResponse,
    NoModelFits,
    RetryableUpstreamError,
    TransportError,
    ValidationError,
)
from svitlogics.llm_parsing import (
    block_reason,
    extract_candidate_text,
    parse_analysis_response,
    upstream_error_message,
    upstream_error_status,
)
from svitlogics.llm_prompts import build_analysis_prompt
from svitlogics.models_config import ModelCatalog, ModelDescriptor, load_catalog

log = logging.getLogger(__name__)

GOOGLE_AI_KEY = os.getenv("GOOGLE_AI_KEY", "").strip()
GEMINI_API_BASE = os.getenv(
    "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta/models"
).strip().rstrip("/")

try:
    TEMPERATURE = float(os.getenv("TEMPERATURE", "0.2"))
except Exception:
    TEMPERATURE = 0.2
try:
    LLM_TIMEOUT_SECS = float(os.getenv("LLM_TIMEOUT_SECS", "60"))
except Exception:
    LLM_TIMEOUT_SECS = 60.0
try:
    CASCADE_DEADLINE_SECS = float(os.getenv("CASCADE_DEADLINE_SECS", "240"))
except Exception:
    CASCADE_DEADLINE_SECS = 240.0

# The analysis has to read hateful or violent text without upstream blocking.
SAFETY_SETTINGS: List[Dict[str, str]] = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
]

_ACCEPTED_FINISH_REASONS = {"STOP", "MAX_TOKENS"}
# 413 and a 4xx RESOURCE_EXHAUSTED envelope are the structured forms of the
# "size" and "quota" conditions; every other status is fatal.
_RETRYABLE_HTTP_STATUSES = {413, 429}
_RETRYABLE_ENVELOPE_STATUSES = {"RESOURCE_EXHAUSTED"}
_RETRYABLE_MESSAGE_HINTS = ("quota", "size")


class UpstreamReply:
    """Status and body of one generateContent call."""

    def __init__(self, status_code: int, text: str) -> None:
        self.status_code = int(status_code)
        self.text = text or ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        try:
            return json.loads(self.text)
        except ValueError:
            return None


class GeminiTransport:
    """Posts generateContent requests to the Google Generative Language REST API."""

    def __init__(self, api_key: str, base_url: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.api_key = api_key
        self.base_url = (base_url or GEMINI_API_BASE).rstrip("/")
        self.timeout = float(timeout if timeout is not None else LLM_TIMEOUT_SECS)

    def endpoint(self, model: ModelDescriptor) -> str:
        return f"{self.base_url}/{model.id}:generateContent"

    def generate(self, model: ModelDescriptor, body: Dict[str, Any], timeout: Optional[float] = None) -> UpstreamReply:
        try:
            resp = requests.post(
                self.endpoint(model),
                params={"key": self.api_key},
                json=body,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except Exception as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e
        return UpstreamReply(resp.status_code, resp.text)


def build_request_body(
    model: ModelDescriptor,
    system_prompt: str,
    text: str,
    language: str,
    temperature: float = TEMPERATURE,
) -> Dict[str, Any]:
    return {
        "contents": [{"role": "user", "parts": [{"text": build_analysis_prompt(system_prompt, text, language)}]}],
        "generationConfig": {
            "temperature": temperature,
            "maxOutputTokens": model.max_output_tokens,
        },
        "safetySettings": SAFETY_SETTINGS,
    }


def classify_http_error(status_code: int, body_text: str) -> Tuple[bool, str]:
    """Return (retryable, message) for a non-2xx upstream reply.

    Status codes decide first. The message substring check only applies to a
    plain 400 and logs a warning every time it reclassifies an error.
    """
    message = upstream_error_message(status_code, body_text)
    if status_code in _RETRYABLE_HTTP_STATUSES:
        return True, message
    if 400 <= status_code < 500 and upstream_error_status(body_text) in _RETRYABLE_ENVELOPE_STATUSES:
        return True, message
    if status_code == 400:
        lowered = message.lower()
        for hint in _RETRYABLE_MESSAGE_HINTS:
            if hint in lowered:
                log.warning(
                    "llm classify: HTTP 400 treated as retryable by message heuristic hint=%s message=%s",
                    hint,
                    message[:200],
                )
                return True, message
    return False, message


class FallbackOrchestrator:
    """Walks the model cascade until one model returns a parsable analysis.

    Each call to `analyze` is independent; the only shared state is the
    read-only catalog.
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        transport: Any,
        *,
        temperature: float = TEMPERATURE,
        deadline_secs: Optional[float] = CASCADE_DEADLINE_SECS,
        output_buffer_tokens: int = OUTPUT_BUFFER_TOKENS,
        language_profiles: Optional[Mapping[str, LanguageProfile]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.catalog = catalog
        self.transport = transport
        self.temperature = temperature
        self.deadline_secs = deadline_secs
        self.output_buffer_tokens = output_buffer_tokens
        self.language_profiles = dict(language_profiles or LANGUAGE_PROFILES)
        self._clock = clock

    def budget_for(self, model: ModelDescriptor, language: str) -> int:
        return max_chars(model, self._profile(language), output_buffer_tokens=self.output_buffer_tokens)

    def _profile(self, language: str) -> LanguageProfile:
        try:
            return self.language_profiles[language]
        except KeyError:
            raise ValidationError(f"unsupported language: {language!r}") from None

    def _remaining(self, started: float) -> Optional[float]:
        if not self.deadline_secs or self.deadline_secs <= 0:
            return None
        return self.deadline_secs - (self._clock() - started)

    def analyze(self, text: str, language: str, system_prompt: str) -> Dict[str, Any]:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("text must be a non-empty string")
        if not system_prompt:
            raise ValidationError("system prompt is required")
        self._profile(language)

        cascade = self.catalog.active_cascade()
        if not cascade:
            log.error("cascade: no enabled models in catalog")
            raise CascadeExhausted("No AI models are configured.")

        started = self._clock()
        attempts = 0
        largest_budget = 0
        total = len(cascade)
        for index, model in enumerate(cascade, start=1):
            remaining = self._remaining(started)
            if remaining is not None and remaining <= 0:
                log.warning("cascade deadline reached after attempts=%d (deadline=%.1fs)", attempts, self.deadline_secs)
                raise CascadeExhausted(
                    "The analysis took too long; all attempted AI models failed or are at capacity.",
                    attempts=attempts,
                )

            budget = self.budget_for(model, language)
            largest_budget = max(largest_budget, budget)
            if len(text) > budget:
                log.warning(
                    "cascade skip model=%s index=%d/%d reason=too_long text_len=%d budget=%d",
                    model.display_name,
                    index,
                    total,
                    len(text),
                    budget,
                )
                continue

            attempts += 1
            log.info("cascade attempt model=%s index=%d/%d", model.display_name, index, total)
            try:
                result = self._attempt(model, text, language, system_prompt, remaining)
            except RetryableUpstreamError as exc:
                log.warning("cascade fallback model=%s reason=%s", model.display_name, exc)
                continue
            except FatalUpstreamError as exc:
                log.error(
                    "cascade fatal model=%s status=%s message=%s",
                    model.display_name,
                    exc.status_code,
                    exc.upstream_message[:200],
                )
                raise
            log.info("cascade success model=%s attempts=%d", model.display_name, attempts)
            return result

        if attempts == 0:
            raise NoModelFits(len(text), largest_budget)
        log.warning("cascade exhausted attempts=%d models=%d", attempts, total)
        raise CascadeExhausted(attempts=attempts)

    def _attempt(
        self,
        model: ModelDescriptor,
        text: str,
        language: str,
        system_prompt: str,
        remaining: Optional[float],
    ) -> Dict[str, Any]:
        body = build_request_body(model, system_prompt, text, language, self.temperature)
        # the transport keeps its own timeout unless the cascade deadline is closer
        timeout = None
        if remaining is not None:
            per_attempt = getattr(self.transport, "timeout", None) or LLM_TIMEOUT_SECS
            timeout = max(1.0, min(per_attempt, remaining))
        try:
            reply = self.transport.generate(model, body, timeout=timeout)
        except TransportError as exc:
            raise RetryableUpstreamError(f"network error: {exc}") from exc

        if not reply.ok:
            retryable, message = classify_http_error(reply.status_code, reply.text)
            if retryable:
                raise RetryableUpstreamError(f"HTTP {reply.status_code}: {message[:200]}")
            raise FatalUpstreamError(reply.status_code, message, model.display_name)

        data = reply.json()
        generated = extract_candidate_text(data)
        if generated is None:
            raise RetryableUpstreamError(f"empty response ({block_reason(data)})")
        finish = (data.get("candidates") or [{}])[0].get("finishReason")
        if finish and finish not in _ACCEPTED_FINISH_REASONS:
            raise RetryableUpstreamError(f"incomplete response (finishReason={finish})")

        try:
            return parse_analysis_response(generated, model)
        except MalformedResponse as exc:
            raise RetryableUpstreamError(str(exc)) from exc


@lru_cache(maxsize=1)
def get_catalog() -> ModelCatalog:
    return load_catalog()


def build_orchestrator(catalog: Optional[ModelCatalog] = None) -> FallbackOrchestrator:
    if not GOOGLE_AI_KEY:
        raise ConfigurationError("Server configuration error: GOOGLE_AI_KEY is not set.")
    return FallbackOrchestrator(catalog or get_catalog(), GeminiTransport(GOOGLE_AI_KEY))


def status(catalog: Optional[ModelCatalog] = None) -> Dict[str, Any]:
    cascade = (catalog or get_catalog()).active_cascade()
    return {
        "provider": "google",
        "has_token": bool(GOOGLE_AI_KEY),
        "cascade_length": len(cascade),
        "cascade": [m.display_name for m in cascade],
        "using": cascade[0].id if cascade and GOOGLE_AI_KEY else None,
    }


def probe(transport: Any = None, catalog: Optional[ModelCatalog] = None) -> Dict[str, Any]:
    """Send a tiny prompt to the first cascade model and report whether it answered."""
    cascade = (catalog or get_catalog()).active_cascade()
    if not cascade:
        return {"ok": False, "error": "No AI models are configured."}
    model = cascade[0]
    if transport is None:
        if not GOOGLE_AI_KEY:
            return {"ok": False, "model": model.display_name, "error": "GOOGLE_AI_KEY is not set"}
        transport = GeminiTransport(GOOGLE_AI_KEY)
    body = {"contents": [{"parts": [{"text": "Tell me a short joke."}]}]}
    try:
        reply = transport.generate(model, body, timeout=min(LLM_TIMEOUT_SECS, 20.0))
    except TransportError as e:
        log.warning("llm probe transport error model=%s: %s", model.id, e)
        return {"ok": False, "model": model.display_name, "error": str(e)}
    if not reply.ok:
        return {
            "ok": False,
            "model": model.display_name,
            "status": reply.status_code,
            "error": upstream_error_message(reply.status_code, reply.text),
        }
    return {"ok": extract_candidate_text(reply.json()) is not None, "model": model.display_name, "status": reply.status_code}
