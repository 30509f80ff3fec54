from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple

from jsonschema.validators import Draft202012Validator
from pydantic import BaseModel, ConfigDict, Field

from svitlogics.errors import CatalogError

log = logging.getLogger(__name__)

MODEL_CATALOG_PATH = os.getenv("MODEL_CATALOG_PATH", "").strip()


class ModelDescriptor(BaseModel):
    """One entry of the model cascade. Immutable once built."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    display_name: str = Field(alias="displayName", min_length=1)
    tokens_per_minute: int = Field(alias="tokensPerMinute", gt=0)
    requests_per_minute: int = Field(alias="requestsPerMinute", gt=0)
    max_output_tokens: int = Field(alias="maxOutputTokens", gt=0)
    priority: int
    enabled: bool = True
    family: Literal["gemini", "gemma"] = "gemini"


_DEFAULT_MODELS: List[Dict[str, Any]] = [
    {"id": "gemini-2.5-flash", "displayName": "Gemini 2.5 Flash", "tokensPerMinute": 250_000,
     "requestsPerMinute": 10, "maxOutputTokens": 8192, "priority": 1, "family": "gemini"},
    {"id": "gemini-2.5-flash-lite-preview-06-17", "displayName": "Gemini 2.5 Flash-Lite Preview",
     "tokensPerMinute": 250_000, "requestsPerMinute": 15, "maxOutputTokens": 8192, "priority": 2,
     "family": "gemini"},
    {"id": "gemini-2.0-flash", "displayName": "Gemini 2.0 Flash", "tokensPerMinute": 1_000_000,
     "requestsPerMinute": 15, "maxOutputTokens": 8192, "priority": 3, "family": "gemini"},
    {"id": "gemini-2.0-flash-lite", "displayName": "Gemini 2.0 Flash-Lite", "tokensPerMinute": 1_000_000,
     "requestsPerMinute": 30, "maxOutputTokens": 8192, "priority": 4, "family": "gemini"},
    {"id": "gemini-1.5-flash", "displayName": "Gemini 1.5 Flash (Deprecated)", "tokensPerMinute": 250_000,
     "requestsPerMinute": 15, "maxOutputTokens": 8192, "priority": 5, "family": "gemini"},
    {"id": "gemini-1.5-flash-8b", "displayName": "Gemini 1.5 Flash 8B (Deprecated)",
     "tokensPerMinute": 250_000, "requestsPerMinute": 15, "maxOutputTokens": 8192, "priority": 6,
     "family": "gemini"},
    # Most constrained entry; its quota sets the baseline character limit.
    {"id": "gemma-3-4b-it", "displayName": "Gemma 3 4B", "tokensPerMinute": 15_000,
     "requestsPerMinute": 30, "maxOutputTokens": 4096, "priority": 7, "family": "gemma"},
]

_CATALOG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["models"],
    "properties": {
        "models": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "displayName", "tokensPerMinute", "requestsPerMinute",
                             "maxOutputTokens", "priority"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "displayName": {"type": "string", "minLength": 1},
                    "tokensPerMinute": {"type": "integer", "exclusiveMinimum": 0},
                    "requestsPerMinute": {"type": "integer", "exclusiveMinimum": 0},
                    "maxOutputTokens": {"type": "integer", "exclusiveMinimum": 0},
                    "priority": {"type": "integer"},
                    "enabled": {"type": "boolean"},
                    "family": {"enum": ["gemini", "gemma"]},
                },
            },
        }
    },
}


class ModelCatalog:
    """Read-only set of model descriptors.

    The active cascade (enabled entries, ascending priority, insertion order on
    ties) is computed once in the constructor and never changes afterwards.
    """

    def __init__(self, models: Iterable[ModelDescriptor]) -> None:
        self._models: Tuple[ModelDescriptor, ...] = tuple(models)
        # sorted() is stable, so equal priorities keep insertion order
        self._cascade: Tuple[ModelDescriptor, ...] = tuple(
            sorted((m for m in self._models if m.enabled), key=lambda m: m.priority)
        )

    @classmethod
    def from_dicts(cls, entries: Iterable[Dict[str, Any]]) -> "ModelCatalog":
        return cls(ModelDescriptor.model_validate(e) for e in entries)

    @property
    def models(self) -> Tuple[ModelDescriptor, ...]:
        return self._models

    def active_cascade(self) -> Tuple[ModelDescriptor, ...]:
        return self._cascade

    def __len__(self) -> int:
        return len(self._cascade)


def default_catalog() -> ModelCatalog:
    return ModelCatalog.from_dicts(_DEFAULT_MODELS)


def load_catalog(path: Optional[str] = None) -> ModelCatalog:
    """Load a catalog from a JSON file, or the built-in one when no path is configured."""
    raw_path = (path if path is not None else MODEL_CATALOG_PATH).strip()
    if not raw_path:
        return default_catalog()
    file_path = Path(raw_path)
    try:
        doc = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise CatalogError(f"cannot read model catalog {file_path}: {exc}") from exc

    validator = Draft202012Validator(_CATALOG_SCHEMA)
    errors = []
    for err in validator.iter_errors(doc):
        loc = ".".join(str(p) for p in err.path) or "(root)"
        errors.append(f"{loc}: {err.message}")
    if errors:
        raise CatalogError("invalid model catalog: " + "; ".join(errors))

    try:
        catalog = ModelCatalog.from_dicts(doc["models"])
    except ValueError as exc:
        raise CatalogError(f"invalid model catalog: {exc}") from exc
    log.info("models_config: loaded %d models from %s (active=%d)", len(catalog.models), file_path, len(catalog))
    return catalog
