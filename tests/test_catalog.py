import json
from pathlib import Path

import pytest

from firstaid.catalog import Catalog, UnknownTopicError, load_catalog
from firstaid.catalog_loader import CatalogError, load_categories_dir
from firstaid.schema import CATEGORY_ORDER, InstructionKey


def _topic(tid, category="burns", steps=None, **extra):
    data = {
        "id": tid,
        "category": category,
        "title": tid.replace("-", " ").title(),
        "subtitle": "sub",
        "icon": "i",
        "color": "red",
        "steps": steps or [{"number": 1, "title": "One", "icon": "i", "instructions": ["Do it"]}],
    }
    data.update(extra)
    return data


def _category(cid="burns", topics=None, **extra):
    data = {"id": cid, "title": cid.title(), "subtitle": "sub", "icon": "i", "color": "red"}
    data["topics"] = topics if topics is not None else [_topic("a", cid)]
    data.update(extra)
    return data


def _write(path: Path, name: str, data) -> None:
    path.mkdir(parents=True, exist_ok=True)
    (path / name).write_text(json.dumps(data), encoding="utf-8")


def test_bundled_catalog_loads_in_category_order(catalog: Catalog):
    assert [c.id for c in catalog.categories()] == list(CATEGORY_ORDER)
    assert len(list(catalog.topics())) == 27


def test_every_topic_has_ordered_steps(catalog: Catalog):
    for t in catalog.topics():
        numbers = [s.number for s in t.steps]
        assert numbers == sorted(set(numbers))
        assert numbers[0] == 1


def test_list_topics_puts_cross_listed_first(catalog: Catalog):
    ids = [t.id for t in catalog.list_topics("wounds")]
    assert ids == ["severe-bleeding", "cuts-and-grazes", "nosebleeds", "blisters"]
    assert catalog.get_topic("severe-bleeding").category == "critical"


def test_unknown_topic_raises_key_error(catalog: Catalog):
    with pytest.raises(UnknownTopicError):
        catalog.get_topic("no-such-topic")
    with pytest.raises(KeyError):
        catalog.get_steps("no-such-topic")
    with pytest.raises(KeyError):
        catalog.list_topics("cardiology")


def test_get_steps_returns_authored_order(catalog: Catalog):
    steps = catalog.get_steps("cpr")
    assert [s.title for s in steps] == [
        "Check for Breathing",
        "Call for Help",
        "Start Chest Compressions",
        "Give Rescue Breaths",
    ]
    assert steps[2].metronome


def test_chemical_burns_trigger_is_authored(catalog: Catalog):
    step = catalog.get_topic("chemical-burns").step(4)
    assert step.instructions[0].text == "Flood with cool running water for at least 20 minutes"
    assert step.trigger.kind == "countdown"
    assert step.trigger.duration_seconds == 1200
    assert step.is_trigger(InstructionKey(4, 0))
    assert not step.is_trigger(InstructionKey(4, 1))


def test_empty_search_lists_every_category(catalog: Catalog):
    for query in ("", "   "):
        results = catalog.search(query)
        assert [r.category for r in results] == list(CATEGORY_ORDER)
        assert not any(r.is_subtopic for r in results)


def test_search_matches_category_title_and_subtitle(catalog: Catalog):
    titles = [r.title for r in catalog.search("fractures") if not r.is_subtopic]
    assert titles == ["Bone & Joint Injuries"]


def test_search_subtopic_by_keywords_requires_every_term(catalog: Catalog):
    results = catalog.search("cardiac compressions")
    assert [(r.topic_id, r.subtitle) for r in results] == [("cpr", "Part of Critical Emergencies")]
    assert all(r.is_subtopic for r in results)
    assert catalog.search("cardiac blister") == []


def test_search_is_case_insensitive(catalog: Catalog):
    assert [r.topic_id for r in catalog.search("CHOKING")] == ["choking"]


def test_search_uses_cross_listing_keywords(catalog: Catalog):
    results = catalog.search("gushing blood")
    assert [(r.topic_id, r.subtitle) for r in results] == [("severe-bleeding", "Part of Bleeding & Wounds")]


def test_search_on_subtopic_title_substring(catalog: Catalog):
    results = catalog.search("burns")
    assert results[0].title == "Burns & Scalds" and not results[0].is_subtopic
    assert {r.topic_id for r in results if r.is_subtopic} >= {"chemical-burns", "severe-burns", "minor-burns"}


def test_loader_missing_dir(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_categories_dir(tmp_path / "missing")


def test_loader_rejects_trigger_out_of_range(tmp_path: Path):
    steps = [
        {
            "number": 1,
            "title": "Cool",
            "icon": "i",
            "instructions": ["Cool the burn"],
            "trigger": {"instruction": 3, "kind": "countdown", "duration_seconds": 60},
        }
    ]
    _write(tmp_path, "burns.json", _category(topics=[_topic("a", steps=steps)]))
    with pytest.raises(CatalogError):
        load_categories_dir(tmp_path)


def test_loader_rejects_unordered_steps(tmp_path: Path):
    steps = [
        {"number": 2, "title": "B", "icon": "i", "instructions": ["x"]},
        {"number": 1, "title": "A", "icon": "i", "instructions": ["y"]},
    ]
    _write(tmp_path, "burns.json", _category(topics=[_topic("a", steps=steps)]))
    with pytest.raises(CatalogError):
        load_categories_dir(tmp_path)


def test_loader_rejects_duplicate_topic_ids(tmp_path: Path):
    _write(tmp_path, "burns.json", _category("burns", [_topic("same", "burns")]))
    _write(tmp_path, "head.json", _category("head", [_topic("same", "head")]))
    with pytest.raises(CatalogError):
        load_categories_dir(tmp_path)


def test_loader_rejects_dangling_link(tmp_path: Path):
    steps = [{"number": 1, "title": "A", "icon": "i", "instructions": [{"text": "start CPR", "link": "cpr"}]}]
    _write(tmp_path, "burns.json", _category(topics=[_topic("a", steps=steps)]))
    with pytest.raises(CatalogError):
        load_categories_dir(tmp_path)


def test_loader_rejects_unknown_fields(tmp_path: Path):
    _write(tmp_path, "burns.json", _category(topics=[_topic("a", colour="red")]))
    with pytest.raises(CatalogError):
        load_categories_dir(tmp_path)


def test_load_catalog_from_custom_dir(tmp_path: Path):
    _write(tmp_path, "head.json", _category("head", [_topic("b", "head")]))
    _write(tmp_path, "burns.json", _category("burns", [_topic("a", "burns")]))
    cat = load_catalog(tmp_path)
    assert [c.id for c in cat.categories()] == ["burns", "head"]
    assert cat.get_steps("b")[0].instructions[0].text == "Do it"
