import pytest

from svitlogics import _parse_env_line
from svitlogics.errors import ValidationError
from svitlogics.llm_prompts import CATEGORY_NAMES, build_analysis_prompt, system_prompt_for
from svitlogics.validators import collect_errors, validate_request


def test_valid_body_has_no_errors():
    assert collect_errors({"text": "hello", "language": "uk"}) == []


def test_each_problem_is_reported():
    errs = collect_errors({"text": " ", "language": "pl"}, require_task=True, require_prompt=True)
    assert [e["field"] for e in errs] == ["text", "language", "taskId", "systemPrompt"]


def test_validate_request_raises_with_details():
    with pytest.raises(ValidationError) as ei:
        validate_request({"text": 42, "language": "en"})
    assert ei.value.details == [
        {"field": "text", "message": "required property 'text' must be a non-empty string"}
    ]


def test_system_prompts_name_every_category():
    for lang in ("en", "uk"):
        prompt = system_prompt_for(lang)
        for name in CATEGORY_NAMES:
            assert name in prompt
        assert "overall_summary" in prompt


def test_system_prompt_unknown_language():
    with pytest.raises(ValidationError):
        system_prompt_for("ru")


def test_analysis_prompt_layout():
    assert build_analysis_prompt("SYS", "body", "en") == "SYS\n\nAnalyze the following text (language: en):\nbody"


@pytest.mark.parametrize(
    "line,expected",
    [
        ("GOOGLE_AI_KEY=abc", ("GOOGLE_AI_KEY", "abc")),
        ("export REDIS_URL='redis://localhost:6379/0'", ("REDIS_URL", "redis://localhost:6379/0")),
        ('LOG_LEVEL = "debug"', ("LOG_LEVEL", "debug")),
        ("# comment", None),
        ("", None),
        ("NOEQUALS", None),
    ],
)
def test_env_line_parsing(line, expected):
    assert _parse_env_line(line) == expected
