"""Tests for inline entity reference extraction."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from cvagent.chat.message_model import EntityReference
from cvagent.chat.references import ReferenceExtractor, StaticEntityResolver

ENTITIES = [
    EntityReference(id="mcdonalds", kind="Experience", label="McDonald's"),
    EntityReference(id="kmp", kind="Skill", label="Kotlin Multiplatform"),
    EntityReference(id="gmr", kind="Project", label="Adidas GMR"),
]


@pytest.fixture
def extractor() -> ReferenceExtractor:
    return ReferenceExtractor(StaticEntityResolver(ENTITIES))


def test_known_markers_are_replaced_with_labels(extractor: ReferenceExtractor) -> None:
    result = extractor.extract("He worked at [Experience: mcdonalds] using [Skill: kmp].")

    assert result.cleaned_content == "He worked at McDonald's using Kotlin Multiplatform."
    assert [reference.id for reference in result.references] == ["mcdonalds", "kmp"]


def test_second_pass_over_cleaned_output_is_a_no_op(extractor: ReferenceExtractor) -> None:
    first = extractor.extract("[Project: gmr] and [Skill:kmp]")
    second = extractor.extract(first.cleaned_content)

    assert "[" not in first.cleaned_content
    assert second.cleaned_content == first.cleaned_content
    assert second.references == ()


def test_repeated_marker_yields_one_reference(extractor: ReferenceExtractor) -> None:
    result = extractor.extract("[Skill: kmp] is great. More [Skill: kmp] please.")

    assert result.cleaned_content == "Kotlin Multiplatform is great. More Kotlin Multiplatform please."
    assert result.references == (ENTITIES[1],)


def test_unresolved_marker_is_left_in_place() -> None:
    extractor = ReferenceExtractor(StaticEntityResolver())

    result = extractor.extract("[Experience: unknown-id]")

    assert result.cleaned_content == "[Experience: unknown-id]"
    assert result.references == ()


def test_mixed_resolved_and_unresolved_markers(extractor: ReferenceExtractor) -> None:
    result = extractor.extract("[Skill: kmp] vs [Skill: flutter]")

    assert result.cleaned_content == "Kotlin Multiplatform vs [Skill: flutter]"
    assert result.references == (ENTITIES[1],)


@pytest.mark.parametrize(
    "text",
    [
        "[skill: kmp]",
        "[Hobby: kmp]",
        "[Skill kmp]",
        "[Skill: kmp",
        "Skill: kmp]",
        "[Skill: ]",
    ],
)
def test_non_matching_syntax_is_untouched(extractor: ReferenceExtractor, text: str) -> None:
    result = extractor.extract(text)

    assert result.cleaned_content == text
    assert result.references == ()


def test_whitespace_after_colon_is_optional_and_identifier_is_trimmed(extractor: ReferenceExtractor) -> None:
    result = extractor.extract("[Project:gmr ] [Project:   gmr]")

    assert result.cleaned_content == "Adidas GMR Adidas GMR"
    assert len(result.references) == 1


def test_reference_order_follows_first_occurrence(extractor: ReferenceExtractor) -> None:
    result = extractor.extract("[Project: gmr] [Skill: kmp] [Project: gmr] [Experience: mcdonalds]")

    assert [reference.id for reference in result.references] == ["gmr", "kmp", "mcdonalds"]


def test_resolver_from_records_accepts_type_alias() -> None:
    resolver = StaticEntityResolver.from_records(
        [
            {"id": "a", "kind": "Skill", "label": "Alpha"},
            {"id": "b", "type": "Project", "label": "Beta"},
        ]
    )

    assert len(resolver) == 2
    assert resolver.resolve(" b ") == EntityReference(id="b", kind="Project", label="Beta")


def test_resolver_from_records_rejects_missing_fields() -> None:
    with pytest.raises(ValueError):
        StaticEntityResolver.from_records([{"id": "a", "kind": "Skill"}])


def test_resolver_from_json_file(tmp_path: Path) -> None:
    path = tmp_path / "entities.json"
    path.write_text(json.dumps([{"id": "kmp", "kind": "Skill", "label": "KMP"}]), encoding="utf-8")

    resolver = StaticEntityResolver.from_json_file(path)

    assert resolver.resolve("kmp") is not None


def test_resolver_from_json_file_requires_array(tmp_path: Path) -> None:
    path = tmp_path / "entities.json"
    path.write_text(json.dumps({"id": "kmp"}), encoding="utf-8")

    with pytest.raises(ValueError):
        StaticEntityResolver.from_json_file(path)
