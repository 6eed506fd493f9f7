"""Reading progress, chapter ordering and unlock gating for interactive fiction."""

from .branches import (
    get_base_chapter_id,
    get_next,
    get_previous,
    get_sibling_perspectives,
    resolve_effective_order_id,
)
from .models import ProgressSnapshot, ReaderProgress, ReadingPreferences, StoryStructure
from .storage import JsonFileStorage, MemoryStorage, ProgressStore, load_snapshot, save_snapshot
from .unlocks import diff_newly_unlocked, evaluate_condition, evaluate_unlock, is_unlocked

__all__ = [
    "ProgressSnapshot",
    "ReaderProgress",
    "ReadingPreferences",
    "StoryStructure",
    "resolve_effective_order_id",
    "get_next",
    "get_previous",
    "get_sibling_perspectives",
    "get_base_chapter_id",
    "evaluate_condition",
    "evaluate_unlock",
    "is_unlocked",
    "diff_newly_unlocked",
    "JsonFileStorage",
    "MemoryStorage",
    "ProgressStore",
    "load_snapshot",
    "save_snapshot",
]
