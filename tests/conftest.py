import json
from pathlib import Path

import pytest

from storypath.models import (
    FoundItem,
    MadeChoice,
    PerspectiveGroup,
    PerspectiveVariant,
    ProgressSnapshot,
    ReadAllPerspectives,
    ReadChapter,
    StoryStructure,
    TargetType,
    UnlockDefinition,
)
from storypath.storage import MemoryStorage


@pytest.fixture
def linear_structure() -> StoryStructure:
    """Three chapters, no perspectives or unlocks."""
    return StoryStructure(chapter_order=("a", "b", "c"))


@pytest.fixture
def perspective_structure() -> StoryStructure:
    """Chapter b retold from characters X and Y."""
    return StoryStructure(
        chapter_order=("a", "b", "c"),
        perspectives=(
            PerspectiveGroup(
                base_chapter_id="b",
                variants=(
                    PerspectiveVariant(character_id="X", chapter_id="b-x"),
                    PerspectiveVariant(character_id="Y", chapter_id="b-y"),
                ),
            ),
        ),
    )


@pytest.fixture
def gated_structure(perspective_structure: StoryStructure) -> StoryStructure:
    """Perspective structure plus a handful of unlock rules."""
    return StoryStructure(
        chapter_order=perspective_structure.chapter_order,
        perspectives=perspective_structure.perspectives,
        exploration_scenes=("attic",),
        unlocks=(
            UnlockDefinition(target_id="secret", conditions=(ReadChapter(chapter_id="a"),)),
            UnlockDefinition(
                target_id="c",
                target_type=TargetType.CHAPTER,
                conditions=(ReadChapter(chapter_id="b"), MadeChoice(chapter_id="b", choice_id="door", option_id="open")),
            ),
            UnlockDefinition(
                target_id="attic",
                target_type=TargetType.EXPLORATION,
                conditions=(ReadAllPerspectives(base_chapter_id="b"),),
            ),
            UnlockDefinition(
                target_id="b-y",
                target_type=TargetType.PERSPECTIVE,
                conditions=(FoundItem(scene_id="attic", item_id="letter"),),
            ),
            UnlockDefinition(target_id="placeholder", conditions=()),
        ),
    )


@pytest.fixture
def empty_snapshot() -> ProgressSnapshot:
    return ProgressSnapshot()


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def sample_meta() -> dict:
    """A meta.json document as authored in the content repository."""
    return {
        "format": "interactive",
        "status": "ongoing",
        "coverImage": "/covers/ghost.webp",
        "tags": ["mystery"],
        "chapterOrder": ["prologue", "hall", "finale"],
        "chapterPublishedAt": {"prologue": "2025-12-01T00:00:00Z"},
        "perspectives": [
            {
                "baseChapterId": "hall",
                "variants": [
                    {"characterId": "1547", "chapterId": "hall-1547"},
                    {"characterId": "1548", "chapterId": "hall-1548"},
                ],
            }
        ],
        "unlocks": [
            {
                "targetId": "finale",
                "targetType": "chapter",
                "conditions": [{"type": "read_all_perspectives", "baseChapterId": "hall"}],
            },
            {
                "targetId": "cellar",
                "targetType": "exploration",
                "conditions": [
                    {"type": "read_chapter", "chapterId": "prologue"},
                    {"type": "found_item", "sceneId": "cellar", "itemId": "key"},
                ],
            },
        ],
        "explorationScenes": ["cellar"],
    }


@pytest.fixture
def meta_file(tmp_path: Path, sample_meta: dict) -> Path:
    """Write sample_meta to <tmp>/stories/ghost/meta.json."""
    path = tmp_path / "stories" / "ghost" / "meta.json"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps(sample_meta), encoding="utf-8")
    return path
