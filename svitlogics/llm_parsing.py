from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

from svitlogics.errors import MalformedResponse
from svitlogics.models_config import ModelDescriptor

_JSON_FENCE_RE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)


def _fenced_json(text: str) -> Optional[str]:
    m = _JSON_FENCE_RE.search(text or "")
    if m:
        return m.group(1)
    return None


def parse_analysis_response(raw_text: str, model: ModelDescriptor) -> Dict[str, Any]:
    """Turn raw model output into an analysis result dict; raise MalformedResponse on failure.

    Strategy:
    - Parse the whole text as JSON.
    - Otherwise parse the body of the first ```json fenced block.

    The parsed object is returned as-is apart from `usedModelName`; missing
    business fields are left for the caller to deal with.
    """
    text = (raw_text or "").strip()
    try:
        parsed: Any = json.loads(text)
    except ValueError:
        candidate = _fenced_json(text)
        if candidate is None:
            raise MalformedResponse("AI response was not in a valid JSON format.")
        try:
            parsed = json.loads(candidate)
        except ValueError as exc:
            raise MalformedResponse(
                "AI response was not valid JSON even after extraction from markdown."
            ) from exc

    if not isinstance(parsed, dict):
        raise MalformedResponse(f"AI response JSON is a {type(parsed).__name__}, expected an object.")
    parsed["usedModelName"] = model.display_name
    return parsed


def extract_candidate_text(data: Any) -> Optional[str]:
    """First text part of the first candidate in a generateContent response, if any."""
    if not isinstance(data, dict):
        return None
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    if isinstance(text, str) and text.strip():
        return text
    return None


def block_reason(data: Any) -> str:
    if isinstance(data, dict):
        feedback = data.get("promptFeedback")
        if isinstance(feedback, dict) and feedback.get("blockReason"):
            return str(feedback["blockReason"])
        try:
            finish = data["candidates"][0].get("finishReason")
        except (KeyError, IndexError, TypeError, AttributeError):
            finish = None
        if finish:
            return str(finish)
    return "No content returned from API"


def upstream_error_message(status_code: int, body_text: str) -> str:
    """Error message from a Google error envelope, else the raw body."""
    try:
        payload = json.loads(body_text or "")
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str) and err["message"]:
            return err["message"]
    text = (body_text or "").strip()
    return text[:400] if text else f"API request failed with status {status_code}"


def upstream_error_status(body_text: str) -> Optional[str]:
    """The symbolic status (e.g. RESOURCE_EXHAUSTED) of a Google error envelope."""
    try:
        payload = json.loads(body_text or "")
    except ValueError:
        return None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict) and isinstance(err.get("status"), str):
            return err["status"]
    return None
