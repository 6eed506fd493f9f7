"""Evaluate unlock conditions against a reader's progress.

Gating fails closed: a condition the engine does not recognise, or one that
needs story structure it was not given, evaluates to False. Content that has
no unlock rule at all is open by default.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .branches import find_perspective_group
from .models import (
    Condition,
    FoundItem,
    MadeChoice,
    ReadAllPerspectives,
    ReadChapter,
    ReaderProgress,
    ReadPerspective,
    StoryStructure,
    UnknownCondition,
    UnlockDefinition,
)

logger = logging.getLogger(__name__)


def evaluate_condition(
    condition: Condition,
    progress: ReaderProgress,
    structure: Optional[StoryStructure] = None,
) -> bool:
    """Check whether a single unlock condition holds."""
    if isinstance(condition, ReadChapter):
        return condition.chapter_id in progress.chapters_read

    if isinstance(condition, MadeChoice):
        return progress.choices.get(condition.choice_id) == condition.option_id

    if isinstance(condition, ReadPerspective):
        return condition.character_id in progress.perspectives_viewed.get(condition.base_chapter_id, ())

    if isinstance(condition, FoundItem):
        return condition.item_id in progress.discovered_items.get(condition.scene_id, ())

    if isinstance(condition, ReadAllPerspectives):
        if structure is None:
            return False
        group = find_perspective_group(structure, condition.base_chapter_id)
        if group is None:
            return False
        viewed = set(progress.perspectives_viewed.get(condition.base_chapter_id, ()))
        return group.character_ids() <= viewed

    if isinstance(condition, UnknownCondition):
        logger.debug("Unknown unlock condition type %r evaluates to False", condition.type)
    else:
        logger.debug("Unsupported condition object %r evaluates to False", condition)
    return False


def evaluate_unlock(
    definition: UnlockDefinition,
    progress: ReaderProgress,
    structure: Optional[StoryStructure] = None,
) -> bool:
    """Check that every condition of ``definition`` holds. No conditions means unlocked."""
    return all(evaluate_condition(c, progress, structure) for c in definition.conditions)


def find_unlock(structure: StoryStructure, target_id: str) -> Optional[UnlockDefinition]:
    for definition in structure.unlocks:
        if definition.target_id == target_id:
            return definition
    return None


def is_unlocked(target_id: str, structure: StoryStructure, progress: ReaderProgress) -> bool:
    definition = find_unlock(structure, target_id)
    if definition is None:
        # No rule: content is open.
        return True
    return evaluate_unlock(definition, progress, structure)


def diff_newly_unlocked(structure: StoryStructure, progress: ReaderProgress) -> List[str]:
    """Targets that are now unlocked but not yet recorded in ``unlocked_content``.

    Callers persist the result through ``progress.mark_unlocked`` (or
    ``progress.apply_unlocks``) so each unlock is announced once.
    """
    already = set(progress.unlocked_content)
    seen: set[str] = set()
    newly: List[str] = []
    for definition in structure.unlocks:
        target_id = definition.target_id
        # Duplicate rules for one target: the first one decides, as in find_unlock.
        if target_id in seen:
            continue
        seen.add(target_id)
        if target_id in already:
            continue
        if evaluate_unlock(definition, progress, structure):
            newly.append(target_id)
    return newly
