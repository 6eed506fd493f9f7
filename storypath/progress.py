"""Pure transforms over the reader's progress snapshot.

Every helper takes the current ``ProgressSnapshot`` and returns the next
one. Nothing is mutated in place: when a call changes nothing the *same*
snapshot object comes back, so callers can skip a redundant write with an
identity check.

The module also owns the JSON document layout and its version migrations.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, fields, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from .exceptions import SnapshotFormatError, SnapshotVersionError
from .models import (
    CURRENT_VERSION,
    PREFERENCE_CHOICES,
    ProgressSnapshot,
    ReaderProgress,
    ReadingPreferences,
    StoryStructure,
    utc_now_iso,
)
from .unlocks import diff_newly_unlocked

logger = logging.getLogger(__name__)

StoryUpdater = Callable[[ReaderProgress], ReaderProgress]


def _stamp(now: Optional[str]) -> str:
    return now or utc_now_iso()


def get_story_progress(snapshot: ProgressSnapshot, slug: str) -> ReaderProgress:
    """Get the progress record for a story, or a fresh empty one."""
    return snapshot.stories.get(slug) or ReaderProgress()


def update_story_progress(snapshot: ProgressSnapshot, slug: str, updater: StoryUpdater) -> ProgressSnapshot:
    """Replace one story's record with ``updater(record)``.

    Returns ``snapshot`` itself when the updater hands back the record it was
    given, so a no-op never creates an empty record for an unseen story.
    """
    current = get_story_progress(snapshot, slug)
    updated = updater(current)
    if updated is current:
        return snapshot
    return replace(snapshot, stories={**snapshot.stories, slug: updated})


def mark_chapter_read(
    snapshot: ProgressSnapshot, slug: str, chapter_id: str, now: Optional[str] = None
) -> ProgressSnapshot:
    def _update(story: ReaderProgress) -> ReaderProgress:
        if chapter_id in story.chapters_read:
            return story
        return replace(
            story,
            chapters_read=story.chapters_read + (chapter_id,),
            current_chapter_id=chapter_id,
            last_read_at=_stamp(now),
        )

    return update_story_progress(snapshot, slug, _update)


def record_choice(
    snapshot: ProgressSnapshot, slug: str, choice_id: str, option_id: str, now: Optional[str] = None
) -> ProgressSnapshot:
    """Record the reader's answer to a branch choice. Later answers replace earlier ones."""

    def _update(story: ReaderProgress) -> ReaderProgress:
        if story.choices.get(choice_id) == option_id:
            return story
        return replace(
            story,
            choices={**story.choices, choice_id: option_id},
            last_read_at=_stamp(now),
        )

    return update_story_progress(snapshot, slug, _update)


def record_perspective_viewed(
    snapshot: ProgressSnapshot, slug: str, base_chapter_id: str, character_id: str, now: Optional[str] = None
) -> ProgressSnapshot:
    def _update(story: ReaderProgress) -> ReaderProgress:
        existing = story.perspectives_viewed.get(base_chapter_id, ())
        if character_id in existing:
            return story
        return replace(
            story,
            perspectives_viewed={**story.perspectives_viewed, base_chapter_id: existing + (character_id,)},
            last_read_at=_stamp(now),
        )

    return update_story_progress(snapshot, slug, _update)


def discover_item(
    snapshot: ProgressSnapshot, slug: str, scene_id: str, item_id: str, now: Optional[str] = None
) -> ProgressSnapshot:
    def _update(story: ReaderProgress) -> ReaderProgress:
        existing = story.discovered_items.get(scene_id, ())
        if item_id in existing:
            return story
        return replace(
            story,
            discovered_items={**story.discovered_items, scene_id: existing + (item_id,)},
            last_read_at=_stamp(now),
        )

    return update_story_progress(snapshot, slug, _update)


def mark_unlocked(
    snapshot: ProgressSnapshot, slug: str, target_id: str, now: Optional[str] = None
) -> ProgressSnapshot:
    def _update(story: ReaderProgress) -> ReaderProgress:
        if target_id in story.unlocked_content:
            return story
        return replace(
            story,
            unlocked_content=story.unlocked_content + (target_id,),
            last_read_at=_stamp(now),
        )

    return update_story_progress(snapshot, slug, _update)


def save_scroll_position(
    snapshot: ProgressSnapshot, slug: str, chapter_id: str, position: float
) -> ProgressSnapshot:
    """Remember how far the reader scrolled in a chapter. Does not count as reading activity."""
    rounded = int(round(position))

    def _update(story: ReaderProgress) -> ReaderProgress:
        if story.chapter_scroll_positions.get(chapter_id) == rounded:
            return story
        return replace(
            story,
            chapter_scroll_positions={**story.chapter_scroll_positions, chapter_id: rounded},
        )

    return update_story_progress(snapshot, slug, _update)


def apply_unlocks(
    snapshot: ProgressSnapshot, slug: str, structure: StoryStructure, now: Optional[str] = None
) -> Tuple[ProgressSnapshot, List[str]]:
    """Record every target that became unlocked and return the new snapshot plus those IDs."""
    newly = diff_newly_unlocked(structure, get_story_progress(snapshot, slug))
    for target_id in newly:
        snapshot = mark_unlocked(snapshot, slug, target_id, now=now)
    return snapshot, newly


def update_preferences(snapshot: ProgressSnapshot, **changes: Any) -> ProgressSnapshot:
    """Shallow-merge reading preferences; last write wins per field.

    Raises:
        ValueError: If a field name or value is not a known preference
    """
    current = snapshot.preferences
    for name, value in changes.items():
        allowed = PREFERENCE_CHOICES.get(name)
        if allowed is None:
            raise ValueError(f"Unknown reading preference: {name}")
        if value not in allowed or isinstance(value, bool) != isinstance(allowed[0], bool):
            raise ValueError(f"Invalid value {value!r} for {name}; expected one of {allowed}")

    if all(getattr(current, name) == value for name, value in changes.items()):
        return snapshot
    return replace(snapshot, preferences=replace(current, **changes))


# ── Serialization ──────────────────────────────────────────────

_STORY_KEYS = {
    "chapters_read": "chaptersRead",
    "current_chapter_id": "currentChapterId",
    "chapter_scroll_positions": "chapterScrollPositions",
    "choices": "choices",
    "perspectives_viewed": "perspectivesViewed",
    "discovered_items": "discoveredItems",
    "unlocked_content": "unlockedContent",
    "last_read_at": "lastReadAt",
}

_PREFERENCE_KEYS = {
    "font_size": "fontSize",
    "line_height": "lineHeight",
    "font_family": "fontFamily",
    "atmosphere_effects": "atmosphereEffects",
}


def _story_to_dict(story: ReaderProgress) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "chaptersRead": list(story.chapters_read),
        "choices": dict(story.choices),
        "perspectivesViewed": {k: list(v) for k, v in story.perspectives_viewed.items()},
        "discoveredItems": {k: list(v) for k, v in story.discovered_items.items()},
        "unlockedContent": list(story.unlocked_content),
        "lastReadAt": story.last_read_at,
    }
    if story.current_chapter_id is not None:
        data["currentChapterId"] = story.current_chapter_id
    if story.chapter_scroll_positions:
        data["chapterScrollPositions"] = dict(story.chapter_scroll_positions)
    return data


def snapshot_to_dict(snapshot: ProgressSnapshot) -> Dict[str, Any]:
    """Convert a snapshot to the persisted JSON document layout."""
    prefs = asdict(snapshot.preferences)
    return {
        "version": snapshot.version,
        "stories": {slug: _story_to_dict(story) for slug, story in snapshot.stories.items()},
        "preferences": {_PREFERENCE_KEYS[k]: v for k, v in prefs.items()},
    }


def _expect(value: Any, kind: type, where: str) -> Any:
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise SnapshotFormatError(f"{where} must be {kind.__name__}, got {type(value).__name__}")
    return value


def _str_list(value: Any, where: str) -> Tuple[str, ...]:
    _expect(value, list, where)
    for item in value:
        _expect(item, str, f"{where}[]")
    # Keep first occurrence only; membership is what conditions check.
    return tuple(dict.fromkeys(value))


def _str_map(value: Any, where: str) -> Dict[str, str]:
    _expect(value, dict, where)
    for key, item in value.items():
        _expect(item, str, f"{where}.{key}")
    return dict(value)


def _str_list_map(value: Any, where: str) -> Dict[str, Tuple[str, ...]]:
    _expect(value, dict, where)
    return {key: _str_list(items, f"{where}.{key}") for key, items in value.items()}


def _scroll_map(value: Any, where: str) -> Dict[str, int]:
    _expect(value, dict, where)
    positions: Dict[str, int] = {}
    for key, item in value.items():
        if isinstance(item, bool) or not isinstance(item, (int, float)) or not math.isfinite(item):
            raise SnapshotFormatError(f"{where}.{key} must be a number")
        positions[key] = int(round(item))
    return positions


def _story_from_dict(data: Any, slug: str) -> ReaderProgress:
    where = f"stories.{slug}"
    _expect(data, dict, where)

    current = data.get("currentChapterId")
    if current is not None:
        _expect(current, str, f"{where}.currentChapterId")

    last_read_at = data.get("lastReadAt")
    if last_read_at is None:
        last_read_at = utc_now_iso()
    _expect(last_read_at, str, f"{where}.lastReadAt")

    return ReaderProgress(
        chapters_read=_str_list(data.get("chaptersRead", []), f"{where}.chaptersRead"),
        current_chapter_id=current,
        choices=_str_map(data.get("choices", {}), f"{where}.choices"),
        perspectives_viewed=_str_list_map(data.get("perspectivesViewed", {}), f"{where}.perspectivesViewed"),
        discovered_items=_str_list_map(data.get("discoveredItems", {}), f"{where}.discoveredItems"),
        unlocked_content=_str_list(data.get("unlockedContent", []), f"{where}.unlockedContent"),
        last_read_at=last_read_at,
        chapter_scroll_positions=_scroll_map(
            data.get("chapterScrollPositions", {}), f"{where}.chapterScrollPositions"
        ),
    )


def _preferences_from_dict(data: Any) -> ReadingPreferences:
    _expect(data, dict, "preferences")
    defaults = ReadingPreferences()
    values: Dict[str, Any] = {}
    for f in fields(ReadingPreferences):
        key = _PREFERENCE_KEYS[f.name]
        if key not in data:
            continue
        value = data[key]
        allowed = PREFERENCE_CHOICES[f.name]
        if value in allowed and isinstance(value, bool) == isinstance(allowed[0], bool):
            values[f.name] = value
        else:
            logger.warning(
                "Ignoring invalid preference %s=%r, using %r",
                key, value, getattr(defaults, f.name),
            )
    return ReadingPreferences(**values)


def snapshot_from_dict(data: Any) -> ProgressSnapshot:
    """Build a snapshot from a persisted document, migrating older versions.

    Raises:
        SnapshotVersionError: If the document version cannot be upgraded
        SnapshotFormatError: If the document does not match the layout
    """
    _expect(data, dict, "document")
    data = migrate(data)

    stories = _expect(data.get("stories", {}), dict, "stories")
    return ProgressSnapshot(
        version=CURRENT_VERSION,
        stories={slug: _story_from_dict(story, slug) for slug, story in stories.items()},
        preferences=_preferences_from_dict(data.get("preferences", {})),
    )


# ── Migrations ─────────────────────────────────────────────────


def _migrate_0_to_1(data: Dict[str, Any]) -> Dict[str, Any]:
    # Unversioned documents predate the version field; their stories may lack
    # the per-story maps, which the v1 reader fills with empty defaults.
    upgraded = dict(data)
    upgraded.setdefault("stories", {})
    upgraded.setdefault("preferences", {})
    upgraded["version"] = 1
    return upgraded


# version n -> function upgrading a raw document from n to n + 1
MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    0: _migrate_0_to_1,
}


def migrate(data: Dict[str, Any], migrations: Optional[Dict[int, Callable]] = None) -> Dict[str, Any]:
    """Upgrade a raw document to ``CURRENT_VERSION``.

    Raises:
        SnapshotVersionError: If the version is newer than this engine or a step is missing
    """
    steps = MIGRATIONS if migrations is None else migrations
    version = data.get("version", 0)
    if isinstance(version, bool) or not isinstance(version, int) or version < 0:
        raise SnapshotVersionError(version, CURRENT_VERSION)
    if version > CURRENT_VERSION:
        raise SnapshotVersionError(version, CURRENT_VERSION)

    while version < CURRENT_VERSION:
        step = steps.get(version)
        if step is None:
            raise SnapshotVersionError(version, CURRENT_VERSION)
        logger.info("Migrating progress document from version %d", version)
        data = step(data)
        version += 1
        data = {**data, "version": version}
    return data
