import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from svitlogics.errors import CatalogError
from svitlogics.models_config import ModelCatalog, ModelDescriptor, default_catalog, load_catalog


def _entry(mid, priority, **extra):
    d = {
        "id": mid,
        "displayName": mid.upper(),
        "tokensPerMinute": 100_000,
        "requestsPerMinute": 10,
        "maxOutputTokens": 1024,
        "priority": priority,
    }
    d.update(extra)
    return d


def test_default_catalog_order_and_baseline():
    cascade = default_catalog().active_cascade()
    assert len(cascade) == 7
    assert cascade[0].id == "gemini-2.5-flash"
    assert cascade[-1].id == "gemma-3-4b-it"
    assert cascade[-1].family == "gemma"
    assert [m.priority for m in cascade] == sorted(m.priority for m in cascade)


def test_cascade_sorted_by_priority_and_skips_disabled():
    catalog = ModelCatalog.from_dicts([
        _entry("c", 3),
        _entry("a", 1),
        _entry("off", 0, enabled=False),
        _entry("b", 2),
    ])
    assert [m.id for m in catalog.active_cascade()] == ["a", "b", "c"]
    assert len(catalog) == 3
    assert len(catalog.models) == 4


def test_equal_priorities_keep_insertion_order():
    catalog = ModelCatalog.from_dicts([_entry("first", 5), _entry("second", 5), _entry("zero", 1)])
    assert [m.id for m in catalog.active_cascade()] == ["zero", "first", "second"]


def test_descriptor_is_frozen():
    model = ModelDescriptor.model_validate(_entry("a", 1))
    with pytest.raises(PydanticValidationError):
        model.priority = 9


def test_descriptor_accepts_field_names_too():
    model = ModelDescriptor(
        id="x",
        display_name="X",
        tokens_per_minute=1,
        requests_per_minute=1,
        max_output_tokens=1,
        priority=1,
    )
    assert model.display_name == "X"
    assert model.enabled is True


def test_load_catalog_from_file(tmp_path):
    path = tmp_path / "models.json"
    path.write_text(json.dumps({"models": [_entry("b", 2), _entry("a", 1, family="gemma")]}), encoding="utf-8")

    catalog = load_catalog(str(path))

    assert [m.id for m in catalog.active_cascade()] == ["a", "b"]
    assert catalog.active_cascade()[0].family == "gemma"


def test_load_catalog_without_path_uses_default():
    assert len(load_catalog("")) == len(default_catalog())


@pytest.mark.parametrize(
    "doc",
    [
        {},
        {"models": [{"id": "a"}]},
        {"models": [_entry("a", 1, tokensPerMinute=0)]},
        {"models": [_entry("a", 1, family="llama")]},
    ],
)
def test_load_catalog_rejects_invalid_documents(tmp_path, doc):
    path = tmp_path / "models.json"
    path.write_text(json.dumps(doc), encoding="utf-8")

    with pytest.raises(CatalogError):
        load_catalog(str(path))


def test_load_catalog_unreadable_file(tmp_path):
    with pytest.raises(CatalogError):
        load_catalog(str(tmp_path / "missing.json"))
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(CatalogError):
        load_catalog(str(bad))
