from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

CURRENT_VERSION = 1


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class TargetType(str, Enum):
    CHAPTER = "chapter"
    EXPLORATION = "exploration"
    PERSPECTIVE = "perspective"


@dataclass(frozen=True)
class PerspectiveVariant:
    character_id: str
    chapter_id: str


@dataclass(frozen=True)
class PerspectiveGroup:
    """A base chapter plus the character-specific retellings of it."""

    base_chapter_id: str
    variants: Tuple[PerspectiveVariant, ...] = ()

    def character_ids(self) -> set[str]:
        return {v.character_id for v in self.variants}


# Unlock conditions. The wire tag lives in ``TYPE`` so parsing and
# serialization share one table.


@dataclass(frozen=True)
class ReadChapter:
    TYPE = "read_chapter"

    chapter_id: str


@dataclass(frozen=True)
class MadeChoice:
    TYPE = "made_choice"

    chapter_id: str
    choice_id: str
    option_id: str


@dataclass(frozen=True)
class ReadPerspective:
    TYPE = "read_perspective"

    base_chapter_id: str
    character_id: str


@dataclass(frozen=True)
class FoundItem:
    TYPE = "found_item"

    scene_id: str
    item_id: str


@dataclass(frozen=True)
class ReadAllPerspectives:
    TYPE = "read_all_perspectives"

    base_chapter_id: str


@dataclass(frozen=True)
class UnknownCondition:
    """A condition tag this engine does not understand. Always evaluates False."""

    type: str
    payload: Dict[str, Any] = field(default_factory=dict)


Condition = Union[ReadChapter, MadeChoice, ReadPerspective, FoundItem, ReadAllPerspectives, UnknownCondition]


@dataclass(frozen=True)
class UnlockDefinition:
    target_id: str
    target_type: Union[TargetType, str] = TargetType.CHAPTER
    conditions: Tuple[Condition, ...] = ()


@dataclass(frozen=True)
class StoryStructure:
    chapter_order: Tuple[str, ...]
    perspectives: Tuple[PerspectiveGroup, ...] = ()
    unlocks: Tuple[UnlockDefinition, ...] = ()
    exploration_scenes: Tuple[str, ...] = ()
    chapter_published_at: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ReadingPreferences:
    font_size: str = "base"  # sm, base, lg, xl
    line_height: str = "relaxed"  # normal, relaxed, loose
    font_family: str = "serif"  # sans, serif
    atmosphere_effects: bool = True


PREFERENCE_CHOICES: Dict[str, Tuple[Any, ...]] = {
    "font_size": ("sm", "base", "lg", "xl"),
    "line_height": ("normal", "relaxed", "loose"),
    "font_family": ("sans", "serif"),
    "atmosphere_effects": (True, False),
}


@dataclass(frozen=True)
class ReaderProgress:
    chapters_read: Tuple[str, ...] = ()
    current_chapter_id: Optional[str] = None
    choices: Dict[str, str] = field(default_factory=dict)
    perspectives_viewed: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    discovered_items: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    unlocked_content: Tuple[str, ...] = ()
    last_read_at: str = field(default_factory=utc_now_iso)
    chapter_scroll_positions: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ProgressSnapshot:
    version: int = CURRENT_VERSION
    stories: Dict[str, ReaderProgress] = field(default_factory=dict)
    preferences: ReadingPreferences = field(default_factory=ReadingPreferences)


def default_snapshot() -> ProgressSnapshot:
    return ProgressSnapshot()
