"""Extraction of the trailing follow-up suggestions block from replies."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from jsonschema import Draft7Validator

LOGGER = logging.getLogger(__name__)

_JSON_BLOCK_RE = re.compile(r"```json\s*(?P<body>\{[\s\S]*?\})\s*```", re.MULTILINE)
_RAW_START_MARKERS: tuple[str, ...] = ('{"suggestions":', '{"suggestions" :')
_RAW_END_MARKER = "]}"
_SUGGESTIONS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "suggestions": {"type": "array", "items": {"type": "string"}},
    },
}
_VALIDATOR = Draft7Validator(_SUGGESTIONS_SCHEMA)


@dataclass(slots=True, frozen=True)
class SuggestionExtraction:
    """Reply text with the suggestions block removed, plus the parsed list."""

    cleaned_content: str
    suggestions: tuple[str, ...]


class SuggestionExtractor:
    """Strips the structured suggestions block the model appends to replies.

    The first fenced ``json`` block wins; without one, a bare
    ``{"suggestions": [...]}`` object is accepted. A block whose body does not
    parse still gets stripped from the visible text.
    """

    def extract(self, content: str) -> SuggestionExtraction:
        match = _JSON_BLOCK_RE.search(content)
        if match is not None:
            return self._parse_and_clean(content, match.group(0), match.group("body"))

        raw = _find_raw_suggestions(content)
        if raw is not None:
            return self._parse_and_clean(content, raw, raw)

        return SuggestionExtraction(cleaned_content=content, suggestions=())

    def _parse_and_clean(self, content: str, full_match: str, body: str) -> SuggestionExtraction:
        cleaned = content.replace(full_match, "").strip()
        return SuggestionExtraction(cleaned_content=cleaned, suggestions=parse_suggestions(body))


def parse_suggestions(body: str) -> tuple[str, ...]:
    """Parse a ``{"suggestions": [...]}`` payload; malformed input yields ``()``."""

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        LOGGER.debug("Suggestions block is not valid JSON; dropping it")
        return ()
    errors = sorted(_VALIDATOR.iter_errors(payload), key=lambda err: list(err.path))
    if errors:
        LOGGER.debug("Suggestions block failed validation: %s", errors[0].message)
        return ()
    return tuple(payload.get("suggestions") or ())


def _find_raw_suggestions(content: str) -> str | None:
    start = -1
    for marker in _RAW_START_MARKERS:
        start = content.find(marker)
        if start != -1:
            break
    if start == -1:
        return None
    end = content.find(_RAW_END_MARKER, start)
    if end == -1:
        return None
    return content[start : end + len(_RAW_END_MARKER)]


__all__ = ["SuggestionExtraction", "SuggestionExtractor", "parse_suggestions"]
