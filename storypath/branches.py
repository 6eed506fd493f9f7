"""Chapter ordering and perspective lookups over a story's structure.

Perspective variants have no slot of their own in ``chapter_order``; they
share the position of their base chapter. Every ordering query therefore
canonicalizes the chapter ID first. Unknown IDs resolve to ``None``, never
an exception; deciding whether that is a 404 is up to the caller.
"""

from __future__ import annotations

from typing import Optional, Tuple

from .models import PerspectiveGroup, PerspectiveVariant, StoryStructure


def _group_for_base(structure: StoryStructure, chapter_id: str) -> Optional[PerspectiveGroup]:
    for group in structure.perspectives:
        if group.base_chapter_id == chapter_id:
            return group
    return None


def _group_for_variant(structure: StoryStructure, chapter_id: str) -> Optional[PerspectiveGroup]:
    for group in structure.perspectives:
        if any(v.chapter_id == chapter_id for v in group.variants):
            return group
    return None


def find_perspective_group(structure: StoryStructure, base_chapter_id: str) -> Optional[PerspectiveGroup]:
    """Return the perspective group rooted at ``base_chapter_id`` (first match wins)."""
    return _group_for_base(structure, base_chapter_id)


def resolve_effective_order_id(structure: StoryStructure, chapter_id: str) -> str:
    """Map a perspective variant to its base chapter; other IDs pass through."""
    group = _group_for_variant(structure, chapter_id)
    if group is not None:
        return group.base_chapter_id
    return chapter_id


def get_next(structure: StoryStructure, chapter_id: str) -> Optional[str]:
    """Get the next chapter ID in the default reading order."""
    effective_id = resolve_effective_order_id(structure, chapter_id)
    order = structure.chapter_order
    if effective_id not in order:
        return None
    index = order.index(effective_id)
    if index >= len(order) - 1:
        return None
    return order[index + 1]


def get_previous(structure: StoryStructure, chapter_id: str) -> Optional[str]:
    """Get the previous chapter ID in the default reading order."""
    effective_id = resolve_effective_order_id(structure, chapter_id)
    order = structure.chapter_order
    if effective_id not in order:
        return None
    index = order.index(effective_id)
    if index == 0:
        return None
    return order[index - 1]


def get_sibling_perspectives(
    structure: StoryStructure, chapter_id: str
) -> Optional[Tuple[PerspectiveVariant, ...]]:
    """Get the perspective variants that share a position with ``chapter_id``.

    A base chapter and each of its variants all return the same variant
    list. Chapters outside any perspective group return ``None``.
    """
    group = _group_for_base(structure, chapter_id) or _group_for_variant(structure, chapter_id)
    if group is None:
        return None
    return group.variants


def get_base_chapter_id(structure: StoryStructure, chapter_id: str) -> Optional[str]:
    for group in structure.perspectives:
        if group.base_chapter_id == chapter_id:
            return chapter_id
        if any(v.chapter_id == chapter_id for v in group.variants):
            return group.base_chapter_id
    return None
