"""Reader actions and the reducer that applies them to a snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from . import progress
from .models import ProgressSnapshot, StoryStructure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarkChapterRead:
    slug: str
    chapter_id: str
    now: Optional[str] = None


@dataclass(frozen=True)
class RecordChoice:
    slug: str
    choice_id: str
    option_id: str
    now: Optional[str] = None


@dataclass(frozen=True)
class RecordPerspectiveViewed:
    slug: str
    base_chapter_id: str
    character_id: str
    now: Optional[str] = None


@dataclass(frozen=True)
class DiscoverItem:
    slug: str
    scene_id: str
    item_id: str
    now: Optional[str] = None


@dataclass(frozen=True)
class MarkUnlocked:
    slug: str
    target_id: str
    now: Optional[str] = None


@dataclass(frozen=True)
class SaveScrollPosition:
    slug: str
    chapter_id: str
    position: float


@dataclass(frozen=True)
class UpdatePreferences:
    changes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ApplyUnlocks:
    """Record every target of ``structure`` that the reader's progress now satisfies."""

    slug: str
    structure: StoryStructure
    now: Optional[str] = None


Action = Union[
    MarkChapterRead,
    RecordChoice,
    RecordPerspectiveViewed,
    DiscoverItem,
    MarkUnlocked,
    SaveScrollPosition,
    UpdatePreferences,
    ApplyUnlocks,
]


def reduce(snapshot: ProgressSnapshot, action: Action) -> ProgressSnapshot:
    """Return the snapshot that follows ``action``.

    Unrecognised actions leave the snapshot untouched.
    """
    if isinstance(action, MarkChapterRead):
        return progress.mark_chapter_read(snapshot, action.slug, action.chapter_id, now=action.now)
    if isinstance(action, RecordChoice):
        return progress.record_choice(snapshot, action.slug, action.choice_id, action.option_id, now=action.now)
    if isinstance(action, RecordPerspectiveViewed):
        return progress.record_perspective_viewed(
            snapshot, action.slug, action.base_chapter_id, action.character_id, now=action.now
        )
    if isinstance(action, DiscoverItem):
        return progress.discover_item(snapshot, action.slug, action.scene_id, action.item_id, now=action.now)
    if isinstance(action, MarkUnlocked):
        return progress.mark_unlocked(snapshot, action.slug, action.target_id, now=action.now)
    if isinstance(action, SaveScrollPosition):
        return progress.save_scroll_position(snapshot, action.slug, action.chapter_id, action.position)
    if isinstance(action, UpdatePreferences):
        return progress.update_preferences(snapshot, **action.changes)
    if isinstance(action, ApplyUnlocks):
        updated, _ = progress.apply_unlocks(snapshot, action.slug, action.structure, now=action.now)
        return updated

    logger.warning("Ignoring unknown action %r", action)
    return snapshot
