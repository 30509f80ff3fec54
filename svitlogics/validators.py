from __future__ import annotations

from typing import Any, Dict, List

from svitlogics.budget import SUPPORTED_LANGUAGES
from svitlogics.errors import ValidationError


def collect_errors(body: Dict[str, Any], *, require_task: bool = False, require_prompt: bool = False) -> List[Dict[str, str]]:
    """
    Return a list of {"field": "...", "message": "..."} dicts for an analysis
    request body. Empty list means the request may go upstream.
    """
    errors: List[Dict[str, str]] = []

    text = body.get("text")
    if not isinstance(text, str) or not text.strip():
        errors.append({"field": "text", "message": "required property 'text' must be a non-empty string"})

    language = body.get("language")
    if language not in SUPPORTED_LANGUAGES:
        errors.append({
            "field": "language",
            "message": f"required property 'language' must be one of: {', '.join(SUPPORTED_LANGUAGES)}",
        })

    if require_task:
        task_id = body.get("taskId")
        if not isinstance(task_id, str) or not task_id.strip():
            errors.append({"field": "taskId", "message": "required property 'taskId' is missing"})

    if require_prompt:
        prompt = body.get("systemPrompt")
        if not isinstance(prompt, str) or not prompt.strip():
            errors.append({"field": "systemPrompt", "message": "required property 'systemPrompt' is missing"})

    return errors


def validate_request(body: Dict[str, Any], **kwargs: Any) -> None:
    """Raise ValidationError carrying the error list; the HTTP layer turns it into a 400."""
    errs = collect_errors(body, **kwargs)
    if errs:
        exc = ValidationError("Missing or invalid `text` or `language` in request body.")
        exc.details = errs
        raise exc
