"""Resolution of inline ``[Kind: identifier]`` entity markers."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Protocol

from .message_model import EntityReference

LOGGER = logging.getLogger(__name__)

REFERENCE_KINDS: tuple[str, ...] = ("Experience", "Project", "Skill", "Achievement", "Education")
_REFERENCE_RE = re.compile(r"\[(?P<kind>" + "|".join(REFERENCE_KINDS) + r"):\s*(?P<ident>[^\[\]]+)\]")


class EntityResolver(Protocol):
    """Looks up the domain entity behind an inline reference identifier."""

    def resolve(self, identifier: str) -> EntityReference | None:
        ...


@dataclass(slots=True, frozen=True)
class ReferenceExtraction:
    """Cleaned content plus the references resolved from it."""

    cleaned_content: str
    references: tuple[EntityReference, ...]


class ReferenceExtractor:
    """Replaces resolvable markers with entity labels.

    Kind tokens are case-sensitive. Identifiers the resolver does not know
    stay in the text verbatim and produce no reference entry.
    """

    def __init__(self, resolver: EntityResolver) -> None:
        self._resolver = resolver

    def extract(self, content: str) -> ReferenceExtraction:
        references: list[EntityReference] = []
        seen: set[str] = set()
        cleaned = content
        for match in _REFERENCE_RE.finditer(content):
            identifier = match.group("ident").strip()
            resolved = self._resolver.resolve(identifier)
            if resolved is None:
                LOGGER.debug("Unresolved %s reference %r left in place", match.group("kind"), identifier)
                continue
            cleaned = cleaned.replace(match.group(0), resolved.label)
            if resolved.id not in seen:
                seen.add(resolved.id)
                references.append(resolved)
        return ReferenceExtraction(cleaned_content=cleaned, references=tuple(references))


class StaticEntityResolver:
    """In-memory resolver keyed by entity id."""

    def __init__(self, entities: Iterable[EntityReference] = ()) -> None:
        self._entities: dict[str, EntityReference] = {}
        for entity in entities:
            self.add(entity)

    def add(self, entity: EntityReference) -> None:
        self._entities[entity.id] = entity

    def resolve(self, identifier: str) -> EntityReference | None:
        return self._entities.get(identifier.strip())

    def __len__(self) -> int:
        return len(self._entities)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, object]]) -> StaticEntityResolver:
        entities: list[EntityReference] = []
        for record in records:
            try:
                entities.append(
                    EntityReference(
                        id=str(record["id"]),
                        kind=str(record.get("kind") or record.get("type") or ""),
                        label=str(record["label"]),
                    )
                )
            except KeyError as exc:
                raise ValueError(f"Entity record missing field {exc.args[0]!r}: {dict(record)!r}") from exc
        return cls(entities)

    @classmethod
    def from_json_file(cls, path: Path | str) -> StaticEntityResolver:
        """Load entities from a JSON array of ``{"id", "kind", "label"}`` objects."""

        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(payload, list):
            raise ValueError(f"Expected a JSON array of entities in {path}")
        return cls.from_records(payload)


__all__ = [
    "REFERENCE_KINDS",
    "EntityResolver",
    "ReferenceExtraction",
    "ReferenceExtractor",
    "StaticEntityResolver",
]
