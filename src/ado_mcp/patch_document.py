"""JSON-patch documents for work item create and update.

Azure DevOps only removes a relation by its position in the work item's relation
list, so removals requested by URL are reconciled against a read-back of the
current relations. Removals are emitted in descending index order: each removal
shifts the positions of every later relation.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .errors import invalid_params

ADD = "add"
REPLACE = "replace"
REMOVE = "remove"

TITLE_FIELD = "System.Title"
DESCRIPTION_FIELD = "System.Description"
RELATIONS_APPEND_PATH = "/relations/-"

_MISSING = object()


@dataclass(frozen=True, slots=True)
class PatchOperation:
    """One operation of a patch document."""

    op: str
    path: str
    value: Any = _MISSING

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"op": self.op, "path": self.path}
        if self.value is not _MISSING:
            out["value"] = self.value
        return out


@dataclass(frozen=True, slots=True)
class Relation:
    """A typed link from a work item to another artifact."""

    rel: str
    url: str
    attributes: Mapping[str, Any] | None = None

    def to_value(self) -> dict[str, Any]:
        value: dict[str, Any] = {"rel": self.rel, "url": self.url}
        if self.attributes:
            value["attributes"] = dict(self.attributes)
        return value


def field_path(name: str) -> str:
    return f"/fields/{name}"


def to_json_patch(document: Sequence[PatchOperation]) -> list[dict[str, Any]]:
    """Serialize a document, preserving operation order."""
    return [op.to_dict() for op in document]


def build_create_document(
    *,
    title: str,
    description: str | None = None,
    fields: Mapping[str, Any] | None = None,
) -> list[PatchOperation]:
    """Build the creation document: title, optional description, then fields in supplied order."""
    document = [PatchOperation(op=ADD, path=field_path(TITLE_FIELD), value=title)]
    if description:
        document.append(PatchOperation(op=ADD, path=field_path(DESCRIPTION_FIELD), value=description))
    for key, value in (fields or {}).items():
        document.append(PatchOperation(op=ADD, path=field_path(key), value=value))
    return document


def normalize_relation_url(url: str | None) -> str:
    """Case-fold and strip a single trailing slash."""
    normalized = (url or "").lower()
    if normalized.endswith("/"):
        normalized = normalized[:-1]
    return normalized


def _relation_url(relation: object) -> str | None:
    if isinstance(relation, Relation):
        return relation.url
    if isinstance(relation, Mapping):
        url = relation.get("url")
        return url if isinstance(url, str) else None
    return None


def find_relation_removals(relations: Sequence[object], remove_urls: Iterable[str]) -> list[int]:
    """Return relation positions to remove, sorted descending.

    Each requested URL matches the first relation whose normalized URL is equal.
    Unmatched requests are dropped; repeated requests for the same URL yield one
    position.
    """
    normalized_relations = [normalize_relation_url(_relation_url(r)) for r in relations]
    indices: set[int] = set()
    for url in remove_urls:
        target = normalize_relation_url(url)
        for index, candidate in enumerate(normalized_relations):
            if candidate == target:
                indices.add(index)
                break
    return sorted(indices, reverse=True)


def build_update_document(
    *,
    fields: Mapping[str, Any] | None = None,
    current_relations: Sequence[object] = (),
    remove_urls: Iterable[str] = (),
    add_relations: Iterable[Relation] = (),
) -> list[PatchOperation]:
    """Build the update document: replacements, then descending removals, then additions.

    ``current_relations`` is the read-back relation list; pass an empty sequence
    when it could not be fetched, which skips removal.

    Raises:
        AdoError: InvalidParams when the resulting document is empty.
    """
    document = [PatchOperation(op=REPLACE, path=field_path(k), value=v) for k, v in (fields or {}).items()]

    for index in find_relation_removals(current_relations, remove_urls):
        document.append(PatchOperation(op=REMOVE, path=f"/relations/{index}"))

    for relation in add_relations:
        document.append(PatchOperation(op=ADD, path=RELATIONS_APPEND_PATH, value=relation.to_value()))

    if not document:
        raise invalid_params("At least one field update or link operation is required")
    return document
