from __future__ import annotations

from typing import Dict

from pydantic import BaseModel, ConfigDict, Field

from svitlogics.models_config import ModelDescriptor

# Tokens held back for the generated answer and request overhead, any language.
OUTPUT_BUFFER_TOKENS = 2500

# Budgets are floored to this many characters before the pre-flight check.
PREFLIGHT_GRANULARITY = 10
# Coarser rounding for limits shown to users.
DISPLAY_GRANULARITY = 1000


class LanguageProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    system_prompt_tokens: int = Field(gt=0)
    chars_per_token: float = Field(gt=0)


SYSTEM_PROMPT_TOKEN_COUNT: Dict[str, int] = {"en": 7500, "uk": 7500}
CHARS_PER_TOKEN: Dict[str, float] = {"en": 4, "uk": 2}

LANGUAGE_PROFILES: Dict[str, LanguageProfile] = {
    code: LanguageProfile(
        code=code,
        system_prompt_tokens=SYSTEM_PROMPT_TOKEN_COUNT[code],
        chars_per_token=CHARS_PER_TOKEN[code],
    )
    for code in ("en", "uk")
}

SUPPORTED_LANGUAGES = tuple(LANGUAGE_PROFILES)


def max_chars(
    model: ModelDescriptor,
    language: LanguageProfile,
    granularity: int = PREFLIGHT_GRANULARITY,
    output_buffer_tokens: int = OUTPUT_BUFFER_TOKENS,
) -> int:
    """Largest input length (in characters) the model can take for this language.

    Zero or negative means the model cannot take any input at all. The figure
    is an estimate from a fixed chars-per-token ratio, not real tokenization.
    """
    available_tokens = model.tokens_per_minute - language.system_prompt_tokens - output_buffer_tokens
    raw_chars = available_tokens * language.chars_per_token
    step = max(1, int(granularity))
    return int(raw_chars // step) * step


def fits(text: str, model: ModelDescriptor, language: LanguageProfile, **kwargs) -> bool:
    budget = max_chars(model, language, **kwargs)
    return budget > 0 and len(text) <= budget
