"""
mother_registry.mapping: Rebuild a flat agent view from stored triples.

The registry returns an atom's attributes as ``as_subject_triples``: each
triple has a ``predicate`` and an ``object``, both carrying ``data`` and an
optional ``label``. Only predicates listed in ``FIELD_TABLE`` reach the view,
plus the always-present ``tags`` and ``skillTags`` aggregates.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Optional

from mother_registry.config import KEYWORDS_PREDICATE
from mother_registry.skills import SKILL_TAGS_FIELD


class FieldKind(str, Enum):
    SINGLE = "single"        # first occurrence wins
    MULTI = "multi"          # distinct values collected into a list
    BOOLEAN = "boolean"      # first occurrence wins, "true" -> True
    SKILLS = "skills"        # multi, tags parsed out of the JSON-encoded skill


FIELD_TABLE: dict[str, FieldKind] = {
    "name": FieldKind.SINGLE,
    "description": FieldKind.SINGLE,
    "url": FieldKind.SINGLE,
    "version": FieldKind.SINGLE,
    "protocolVersion": FieldKind.SINGLE,
    "agent_card_url": FieldKind.SINGLE,
    "provider:organization": FieldKind.SINGLE,
    "provider:url": FieldKind.SINGLE,
    "authentication:schemes": FieldKind.MULTI,
    "skills": FieldKind.SKILLS,
    "capabilities:stateTransitionHistory": FieldKind.BOOLEAN,
}

TAGS_KEY = "tags"
SKILL_TAGS_KEY = "skillTags"


def _append_unique(values: list, value: Any) -> None:
    if value not in values:
        values.append(value)


def _skill_tags_from_json(raw: str) -> list[str]:
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return []
    tags = parsed.get("tags") if isinstance(parsed, dict) else None
    if not isinstance(tags, list):
        return []
    return [t.strip() for t in tags if isinstance(t, str) and t.strip()]


def _display(obj: dict) -> Any:
    return obj.get("label") or obj.get("data")


def map_atom_details(atom_details: Optional[dict],
                     field_table: Optional[dict[str, FieldKind]] = None) -> dict[str, Any]:
    """Flatten ``atom_details["as_subject_triples"]`` into a whitelisted dict."""
    table = FIELD_TABLE if field_table is None else field_table
    view: dict[str, Any] = {}
    tags: list[str] = []
    skill_tags: list[str] = []

    triples = (atom_details or {}).get("as_subject_triples") or []
    for triple in triples:
        predicate_obj = triple.get("predicate") or {}
        obj = triple.get("object") or {}
        predicate = predicate_obj.get("data") or predicate_obj.get("label")
        data = obj.get("data")
        if not predicate or data is None:
            continue

        if predicate == KEYWORDS_PREDICATE:
            value = _display(obj)
            if value:
                _append_unique(tags, value)
            continue

        if predicate == SKILL_TAGS_FIELD:
            value = _display(obj)
            if isinstance(value, str) and value.strip():
                _append_unique(skill_tags, value.strip())
            continue

        kind = table.get(predicate)
        if kind is None:
            continue

        if kind is FieldKind.SKILLS:
            collected = view.setdefault(predicate, [])
            for tag in _skill_tags_from_json(data):
                _append_unique(collected, tag)
        elif kind is FieldKind.MULTI:
            _append_unique(view.setdefault(predicate, []), _display(obj))
        elif kind is FieldKind.BOOLEAN:
            view.setdefault(predicate, data == "true")
        else:
            view.setdefault(predicate, _display(obj))

    view[TAGS_KEY] = tags
    view[SKILL_TAGS_KEY] = skill_tags
    return view
