"""Extract capability tags from an agent card's ``skills`` array."""

from __future__ import annotations

import json
from typing import Any

SKILL_TAGS_FIELD = "skill_tags"


def collect_skill_tags(payload: Any) -> list[str]:
    """Return the distinct, trimmed ``tags`` of every skill in ``payload["skills"]``.

    Skills may be objects or JSON-encoded strings; entries that cannot be
    decoded to an object are skipped. Never raises.
    """
    if not isinstance(payload, dict):
        return []
    skills = payload.get("skills")
    if not isinstance(skills, list):
        return []

    tags: dict[str, None] = {}
    for skill in skills:
        if not skill:
            continue
        if isinstance(skill, str):
            try:
                skill = json.loads(skill)
            except ValueError:
                continue
        if not isinstance(skill, dict):
            continue

        skill_tags = skill.get("tags")
        if not isinstance(skill_tags, list):
            continue
        for tag in skill_tags:
            if isinstance(tag, str) and tag.strip():
                tags[tag.strip()] = None

    return list(tags)
