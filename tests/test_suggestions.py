"""Tests for the trailing suggestions block extractor."""

from __future__ import annotations

import pytest

from cvagent.chat.suggestions import SuggestionExtractor, parse_suggestions


@pytest.fixture
def extractor() -> SuggestionExtractor:
    return SuggestionExtractor()


def test_fenced_block_is_stripped_and_parsed(extractor: SuggestionExtractor) -> None:
    content = 'Answer text.\n\n```json\n{"suggestions": ["a","b"]}\n```'

    result = extractor.extract(content)

    assert result.cleaned_content == "Answer text."
    assert result.suggestions == ("a", "b")


def test_content_without_block_is_unchanged(extractor: SuggestionExtractor) -> None:
    content = "  Plain answer with no block.  "

    result = extractor.extract(content)

    assert result.cleaned_content == content
    assert result.suggestions == ()


def test_malformed_json_is_stripped_with_empty_suggestions(extractor: SuggestionExtractor) -> None:
    content = 'Answer.\n```json\n{"suggestions": ["a", }\n```'

    result = extractor.extract(content)

    assert result.cleaned_content == "Answer."
    assert result.suggestions == ()


def test_block_failing_schema_yields_no_suggestions(extractor: SuggestionExtractor) -> None:
    content = 'Answer.\n```json\n{"suggestions": [1, 2]}\n```'

    result = extractor.extract(content)

    assert result.cleaned_content == "Answer."
    assert result.suggestions == ()


def test_block_without_suggestions_key_yields_empty_list(extractor: SuggestionExtractor) -> None:
    result = extractor.extract('Answer.\n```json\n{"other": true}\n```')

    assert result.cleaned_content == "Answer."
    assert result.suggestions == ()


def test_only_first_fenced_block_is_used(extractor: SuggestionExtractor) -> None:
    content = (
        'Intro.\n```json\n{"suggestions": ["first"]}\n```\n'
        'Outro.\n```json\n{"suggestions": ["second"]}\n```'
    )

    result = extractor.extract(content)

    assert result.suggestions == ("first",)
    assert '["second"]' in result.cleaned_content
    assert '["first"]' not in result.cleaned_content


def test_raw_object_without_fence_is_accepted(extractor: SuggestionExtractor) -> None:
    content = 'Here you go.\n{"suggestions": ["Tell me more", "What else?"]}'

    result = extractor.extract(content)

    assert result.cleaned_content == "Here you go."
    assert result.suggestions == ("Tell me more", "What else?")


def test_raw_object_with_spaced_colon_is_accepted(extractor: SuggestionExtractor) -> None:
    result = extractor.extract('Done. {"suggestions" : ["x"]}')

    assert result.cleaned_content == "Done."
    assert result.suggestions == ("x",)


def test_unterminated_raw_object_is_left_alone(extractor: SuggestionExtractor) -> None:
    content = 'Done. {"suggestions": ["x"'

    result = extractor.extract(content)

    assert result.cleaned_content == content
    assert result.suggestions == ()


def test_parse_suggestions_rejects_non_object() -> None:
    assert parse_suggestions('["a"]') == ()
    assert parse_suggestions("not json") == ()
    assert parse_suggestions('{"suggestions": ["a"]}') == ("a",)
