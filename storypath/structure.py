"""Load story structure metadata and check it for authoring mistakes.

Query functions in ``branches`` and ``unlocks`` degrade safely on bad
content. ``validate_structure`` is the separate pass that reports those
mistakes so they can be fixed at authoring time.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .exceptions import ContentIntegrityError
from .models import (
    Condition,
    FoundItem,
    MadeChoice,
    PerspectiveGroup,
    PerspectiveVariant,
    ReadAllPerspectives,
    ReadChapter,
    ReadPerspective,
    StoryStructure,
    TargetType,
    UnknownCondition,
    UnlockDefinition,
)
from .storage import read_json, validate_slug

logger = logging.getLogger(__name__)

# wire tag -> (condition class, {wire key: field name})
CONDITION_TYPES: Dict[str, tuple] = {
    ReadChapter.TYPE: (ReadChapter, {"chapterId": "chapter_id"}),
    MadeChoice.TYPE: (
        MadeChoice,
        {"chapterId": "chapter_id", "choiceId": "choice_id", "optionId": "option_id"},
    ),
    ReadPerspective.TYPE: (
        ReadPerspective,
        {"baseChapterId": "base_chapter_id", "characterId": "character_id"},
    ),
    FoundItem.TYPE: (FoundItem, {"sceneId": "scene_id", "itemId": "item_id"}),
    ReadAllPerspectives.TYPE: (ReadAllPerspectives, {"baseChapterId": "base_chapter_id"}),
}


@dataclass(frozen=True)
class StructureIssue:
    code: str
    message: str
    subject: Optional[str] = None


def condition_from_dict(data: Any) -> Condition:
    """Parse one condition. Anything unrecognised or incomplete becomes ``UnknownCondition``."""
    if not isinstance(data, dict):
        return UnknownCondition(type="<invalid>", payload={"value": data})

    tag = data.get("type")
    entry = CONDITION_TYPES.get(tag) if isinstance(tag, str) else None
    if entry is None:
        return UnknownCondition(type=str(tag), payload=dict(data))

    cls, keys = entry
    kwargs = {}
    for wire_key, field_name in keys.items():
        value = data.get(wire_key)
        if not isinstance(value, str):
            # Missing fields cannot be satisfied, so the condition stays closed.
            logger.warning("Condition %s is missing %s", tag, wire_key)
            return UnknownCondition(type=tag, payload=dict(data))
        kwargs[field_name] = value
    return cls(**kwargs)


def condition_to_dict(condition: Condition) -> Dict[str, Any]:
    if isinstance(condition, UnknownCondition):
        return dict(condition.payload)
    _, keys = CONDITION_TYPES[condition.TYPE]
    data: Dict[str, Any] = {"type": condition.TYPE}
    for wire_key, field_name in keys.items():
        data[wire_key] = getattr(condition, field_name)
    return data


def _target_type(value: Any) -> Any:
    try:
        return TargetType(value)
    except ValueError:
        return str(value)


def _string_list(value: Any, where: str, source: str) -> tuple:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ContentIntegrityError(source, [StructureIssue("malformed", f"{where} must be a list of strings")])
    return tuple(value)


def _entries(data: dict, key: str, source: str) -> list:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ContentIntegrityError(source, [StructureIssue("malformed", f"{key} must be a list")])
    return value


def structure_from_dict(data: Any, source: str = "<memory>") -> StoryStructure:
    """Build a ``StoryStructure`` from a ``meta.json``-style document.

    Unknown keys (format, tags, cover image and so on) are ignored.

    Raises:
        ContentIntegrityError: If the document is not an object, has no usable
            chapter order, or its perspectives or unlocks are not lists
    """
    if not isinstance(data, dict):
        raise ContentIntegrityError(source, [StructureIssue("malformed", "story metadata must be an object")])
    if "chapterOrder" not in data:
        raise ContentIntegrityError(source, [StructureIssue("malformed", "chapterOrder is required")])

    chapter_order = _string_list(data["chapterOrder"], "chapterOrder", source)

    perspectives = []
    for raw in _entries(data, "perspectives", source):
        if not isinstance(raw, dict) or not isinstance(raw.get("baseChapterId"), str):
            logger.warning("Skipping malformed perspective group in %s", source)
            continue
        raw_variants = raw.get("variants")
        if not isinstance(raw_variants, list):
            if raw_variants is not None:
                logger.warning("Perspective group %s in %s has malformed variants", raw["baseChapterId"], source)
            raw_variants = []
        variants = tuple(
            PerspectiveVariant(character_id=v["characterId"], chapter_id=v["chapterId"])
            for v in raw_variants
            if isinstance(v, dict) and isinstance(v.get("characterId"), str) and isinstance(v.get("chapterId"), str)
        )
        perspectives.append(PerspectiveGroup(base_chapter_id=raw["baseChapterId"], variants=variants))

    unlocks = []
    for raw in _entries(data, "unlocks", source):
        if not isinstance(raw, dict) or not isinstance(raw.get("targetId"), str):
            logger.warning("Skipping malformed unlock definition in %s", source)
            continue
        conditions = raw.get("conditions")
        if conditions is None:
            conditions = []
        elif not isinstance(conditions, list):
            # An unreadable rule must keep its target locked.
            logger.warning("Unlock %s in %s has malformed conditions", raw["targetId"], source)
            conditions = [{"type": "<invalid>", "conditions": conditions}]
        unlocks.append(
            UnlockDefinition(
                target_id=raw["targetId"],
                target_type=_target_type(raw.get("targetType", TargetType.CHAPTER.value)),
                conditions=tuple(condition_from_dict(c) for c in conditions),
            )
        )

    published = data.get("chapterPublishedAt") or {}
    return StoryStructure(
        chapter_order=chapter_order,
        perspectives=tuple(perspectives),
        unlocks=tuple(unlocks),
        exploration_scenes=_string_list(data.get("explorationScenes") or [], "explorationScenes", source),
        chapter_published_at={k: v for k, v in published.items() if isinstance(v, str)}
        if isinstance(published, dict)
        else {},
    )


def load_structure(path: Path, strict: bool = False) -> StoryStructure:
    """Load story metadata from a JSON file.

    Raises:
        ContentIntegrityError: If the file is missing or malformed, or when
            ``strict`` is set and the structure has integrity issues
    """
    data = read_json(Path(path))
    if data is None:
        raise ContentIntegrityError(str(path), [StructureIssue("missing", f"{path} not found or not valid JSON")])
    structure = structure_from_dict(data, source=str(path))
    if strict:
        require_valid(structure, source=str(path))
    return structure


def load_story_structure(content_dir: Path, slug: str, strict: bool = False) -> StoryStructure:
    """Load ``<content_dir>/<slug>/meta.json``."""
    validate_slug(slug)
    return load_structure(Path(content_dir) / slug / "meta.json", strict=strict)


def _condition_references(condition: Condition) -> List[tuple]:
    if isinstance(condition, ReadChapter):
        return [("chapter", condition.chapter_id)]
    if isinstance(condition, MadeChoice):
        return [("chapter", condition.chapter_id)]
    if isinstance(condition, (ReadPerspective, ReadAllPerspectives)):
        return [("group", condition.base_chapter_id)]
    if isinstance(condition, FoundItem):
        return [("scene", condition.scene_id)]
    return []


def validate_structure(structure: StoryStructure) -> List[StructureIssue]:
    """Report authoring mistakes in a story structure. An empty list means clean."""
    issues: List[StructureIssue] = []
    order = structure.chapter_order
    order_set = set(order)

    if not order:
        issues.append(StructureIssue("empty_order", "chapterOrder is empty"))
    for chapter_id, count in Counter(order).items():
        if count > 1:
            issues.append(
                StructureIssue("duplicate_chapter", f"chapter {chapter_id!r} appears {count} times in chapterOrder", chapter_id)
            )

    bases = Counter(group.base_chapter_id for group in structure.perspectives)
    variant_owner: Dict[str, str] = {}
    for group in structure.perspectives:
        base = group.base_chapter_id
        if base not in order_set:
            issues.append(StructureIssue("base_not_in_order", f"perspective base {base!r} is not in chapterOrder", base))
        if not group.variants:
            issues.append(StructureIssue("empty_group", f"perspective group {base!r} has no variants", base))
        for variant in group.variants:
            owner = variant_owner.get(variant.chapter_id)
            if owner is not None:
                issues.append(
                    StructureIssue(
                        "duplicate_variant",
                        f"variant {variant.chapter_id!r} is claimed by {owner!r} and {base!r}",
                        variant.chapter_id,
                    )
                )
            else:
                variant_owner[variant.chapter_id] = base
            if variant.chapter_id in order_set:
                issues.append(
                    StructureIssue(
                        "variant_in_order",
                        f"variant {variant.chapter_id!r} also occupies a slot in chapterOrder",
                        variant.chapter_id,
                    )
                )
    for base, count in bases.items():
        if count > 1:
            issues.append(StructureIssue("duplicate_base", f"base chapter {base!r} has {count} perspective groups", base))

    known_chapters = order_set | set(variant_owner)
    known_scenes = set(structure.exploration_scenes)
    known_groups = set(bases)
    known_by_kind = {"chapter": known_chapters, "scene": known_scenes, "group": known_groups}

    targets = Counter(definition.target_id for definition in structure.unlocks)
    for target_id, count in targets.items():
        if count > 1:
            issues.append(
                StructureIssue("duplicate_unlock", f"target {target_id!r} has {count} unlock definitions", target_id)
            )

    for definition in structure.unlocks:
        target = definition.target_id
        if definition.target_type == TargetType.CHAPTER:
            valid_target = target in order_set
        elif definition.target_type == TargetType.PERSPECTIVE:
            valid_target = target in variant_owner
        elif definition.target_type == TargetType.EXPLORATION:
            valid_target = target in known_scenes
        else:
            valid_target = False
            issues.append(
                StructureIssue("unknown_target_type", f"target {target!r} has unknown type {definition.target_type!r}", target)
            )
        if not valid_target and isinstance(definition.target_type, TargetType):
            issues.append(
                StructureIssue(
                    "unknown_target",
                    f"unlock target {target!r} does not name a known {definition.target_type.value}",
                    target,
                )
            )

        for condition in definition.conditions:
            if isinstance(condition, UnknownCondition):
                issues.append(
                    StructureIssue("unknown_condition", f"unlock {target!r} uses unknown condition {condition.type!r}", target)
                )
                continue
            for kind, ref in _condition_references(condition):
                if ref not in known_by_kind[kind]:
                    issues.append(
                        StructureIssue(
                            "dangling_reference",
                            f"unlock {target!r} references unknown {kind} {ref!r}",
                            target,
                        )
                    )

    return issues


def require_valid(structure: StoryStructure, source: str = "<memory>") -> StoryStructure:
    """Raise ``ContentIntegrityError`` if the structure has any integrity issues."""
    issues = validate_structure(structure)
    if issues:
        raise ContentIntegrityError(source, issues)
    return structure
