import errno
import json
from unittest.mock import patch

import pytest

from storypath.actions import ApplyUnlocks, MarkChapterRead, RecordChoice, UpdatePreferences
from storypath.exceptions import QuotaExceededError, StorageReadError, StorageWriteError
from storypath.models import CURRENT_VERSION, ProgressSnapshot
from storypath.progress import mark_chapter_read, record_choice, snapshot_to_dict
from storypath.storage import (
    JsonFileStorage,
    MemoryStorage,
    ProgressStore,
    load_snapshot,
    read_json,
    save_snapshot,
    store_for_path,
    validate_slug,
)

NOW = "2026-01-01T00:00:00+00:00"


class TestValidateSlug:
    """Test validation of story slugs used as keys and path segments."""

    def test_valid_slugs(self):
        assert validate_slug("ghost") == "ghost"
        assert validate_slug("the-hollow-2") == "the-hollow-2"
        assert validate_slug("a") == "a"

    def test_path_traversal_prevention(self):
        with pytest.raises(ValueError, match="path traversal"):
            validate_slug("../parent")
        with pytest.raises(ValueError, match="path traversal"):
            validate_slug("/absolute")
        with pytest.raises(ValueError, match="path traversal"):
            validate_slug("test\\path")

    def test_invalid_prefixes(self):
        with pytest.raises(ValueError, match="cannot start with dot or dash"):
            validate_slug(".hidden")
        with pytest.raises(ValueError, match="cannot start with dot or dash"):
            validate_slug("-test")

    def test_invalid_format(self):
        with pytest.raises(ValueError, match="lowercase letters, numbers, and hyphens"):
            validate_slug("Ghost")
        with pytest.raises(ValueError, match="lowercase letters, numbers, and hyphens"):
            validate_slug("my_story")

    def test_empty_slug(self):
        with pytest.raises(ValueError, match="cannot be empty"):
            validate_slug("")

    def test_length_limits(self):
        assert validate_slug("a" * 100) == "a" * 100
        with pytest.raises(ValueError, match="too long"):
            validate_slug("a" * 101)


class TestReadJson:
    """read_json falls back to the default instead of raising."""

    def test_missing_file(self, tmp_path):
        assert read_json(tmp_path / "nope.json", default={}) == {}

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        assert read_json(path) is None

    def test_valid_json(self, tmp_path):
        path = tmp_path / "ok.json"
        path.write_text('{"a": 1}', encoding="utf-8")
        assert read_json(path) == {"a": 1}


class TestJsonFileStorage:
    """File backend reads, writes and failure mapping."""

    def test_missing_file_reads_none(self, tmp_path):
        assert JsonFileStorage(tmp_path / "progress.json").read() is None

    def test_write_creates_parents(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "nested" / "dir" / "progress.json")
        storage.write('{"version": 1}')
        assert storage.read() == '{"version": 1}'

    def test_write_replaces_whole_file(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "progress.json")
        storage.write("x" * 100)
        storage.write("short")
        assert storage.read() == "short"
        assert [p.name for p in tmp_path.iterdir()] == ["progress.json"]

    def test_quota_error(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "progress.json")
        with patch("storypath.storage.os.replace", side_effect=OSError(errno.ENOSPC, "No space left on device")):
            with pytest.raises(QuotaExceededError) as exc_info:
                storage.write("{}")
        assert "full" in exc_info.value.user_message
        assert list(tmp_path.iterdir()) == []

    def test_other_write_error(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "progress.json")
        with patch("storypath.storage.os.replace", side_effect=OSError(errno.EACCES, "Permission denied")):
            with pytest.raises(StorageWriteError) as exc_info:
                storage.write("{}")
        assert not isinstance(exc_info.value, QuotaExceededError)

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "progress.json"
        path.write_bytes(b"\xff\xfe\xfa")
        with pytest.raises(StorageReadError):
            JsonFileStorage(path).read()


class TestLoadSnapshot:
    """Loading never raises and falls back to a default snapshot."""

    def test_empty_backend(self, memory_storage):
        assert load_snapshot(memory_storage) == ProgressSnapshot()

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "   ",
            "{not json",
            "[1, 2, 3]",
            '{"version": 1, "stories": {"ghost": {"chaptersRead": "prologue"}}}',
            json.dumps({"version": CURRENT_VERSION + 1, "stories": {}}),
            '{"version": 1, "stories": {}, "extra": ' + "9" * 5000 + "}",
            "[" * 200000 + "]" * 200000,
        ],
    )
    def test_bad_documents_fall_back(self, text):
        assert load_snapshot(MemoryStorage(initial=text)) == ProgressSnapshot()

    def test_read_failure_falls_back(self):
        assert load_snapshot(MemoryStorage(initial="{}", fail_reads=True)) == ProgressSnapshot()

    def test_valid_document(self):
        snapshot = mark_chapter_read(ProgressSnapshot(), "ghost", "prologue", now=NOW)
        storage = MemoryStorage(initial=json.dumps(snapshot_to_dict(snapshot)))
        assert load_snapshot(storage) == snapshot

    def test_file_round_trip(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "progress.json")
        snapshot = mark_chapter_read(ProgressSnapshot(), "ghost", "prologue", now=NOW)
        assert save_snapshot(storage, snapshot).ok
        assert load_snapshot(storage) == snapshot


class TestSaveSnapshot:
    """Save failures are reported as values."""

    def test_lone_surrogate_survives_file_round_trip(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "progress.json")
        snapshot = record_choice(ProgressSnapshot(), "ghost", "door", "op\udcffen", now=NOW)
        assert save_snapshot(storage, snapshot).ok
        assert load_snapshot(storage) == snapshot
        assert save_snapshot(storage, load_snapshot(storage)).ok

    def test_non_ascii_ids_round_trip(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "progress.json")
        snapshot = mark_chapter_read(ProgressSnapshot(), "ghost", "chapitre-été", now=NOW)
        assert save_snapshot(storage, snapshot).ok
        assert load_snapshot(storage).stories["ghost"].chapters_read == ("chapitre-été",)

    def test_success(self, memory_storage):
        result = save_snapshot(memory_storage, ProgressSnapshot())
        assert result.ok
        assert result.error is None
        assert json.loads(memory_storage.text)["version"] == CURRENT_VERSION

    def test_failure_returns_result(self):
        result = save_snapshot(MemoryStorage(fail_writes=True), ProgressSnapshot())
        assert not result.ok
        assert isinstance(result.error, StorageWriteError)

    def test_unexpected_backend_error_wrapped(self):
        class Broken:
            def read(self):
                return None

            def write(self, text):
                raise RuntimeError("disk on fire")

        result = save_snapshot(Broken(), ProgressSnapshot())
        assert not result.ok
        assert isinstance(result.error, StorageWriteError)
        assert "disk on fire" in result.error.message


class TestProgressStore:
    """Apply-then-save cycle around the reducer."""

    def test_dispatch_saves(self, memory_storage):
        store = ProgressStore(memory_storage)
        result = store.dispatch(MarkChapterRead("ghost", "prologue", now=NOW))
        assert result.ok
        assert memory_storage.writes == 1
        assert store.story("ghost").chapters_read == ("prologue",)
        assert load_snapshot(memory_storage) == store.snapshot

    def test_noop_skips_write(self, memory_storage):
        store = ProgressStore(memory_storage)
        store.dispatch(MarkChapterRead("ghost", "prologue", now=NOW))
        store.dispatch(MarkChapterRead("ghost", "prologue", now=NOW))
        store.dispatch(UpdatePreferences({"font_size": "base"}))
        assert memory_storage.writes == 1

    def test_hydrates_from_backend(self):
        snapshot = mark_chapter_read(ProgressSnapshot(), "ghost", "hall", now=NOW)
        store = ProgressStore(MemoryStorage(initial=json.dumps(snapshot_to_dict(snapshot))))
        assert store.story("ghost").current_chapter_id == "hall"

    def test_failed_write_keeps_memory(self):
        store = ProgressStore(MemoryStorage(fail_writes=True))
        result = store.dispatch(RecordChoice("ghost", "door", "open", now=NOW))
        assert not result.ok
        assert isinstance(store.last_save_error, StorageWriteError)
        assert store.story("ghost").choices == {"door": "open"}

    def test_successful_write_clears_error(self):
        storage = MemoryStorage(fail_writes=True)
        store = ProgressStore(storage)
        store.dispatch(MarkChapterRead("ghost", "a", now=NOW))
        storage.fail_writes = False
        store.dispatch(MarkChapterRead("ghost", "b", now=NOW))
        assert store.last_save_error is None
        assert load_snapshot(storage).stories["ghost"].chapters_read == ("a", "b")

    def test_subscribe_and_unsubscribe(self, memory_storage):
        store = ProgressStore(memory_storage)
        seen = []
        unsubscribe = store.subscribe(seen.append)
        store.dispatch(MarkChapterRead("ghost", "a", now=NOW))
        store.dispatch(MarkChapterRead("ghost", "a", now=NOW))
        unsubscribe()
        store.dispatch(MarkChapterRead("ghost", "b", now=NOW))
        assert len(seen) == 1
        assert seen[0].stories["ghost"].chapters_read == ("a",)

    def test_apply_unlocks_action(self, memory_storage, gated_structure):
        store = ProgressStore(memory_storage)
        store.dispatch(MarkChapterRead("ghost", "a", now=NOW))
        store.dispatch(ApplyUnlocks("ghost", gated_structure, now=NOW))
        assert store.story("ghost").unlocked_content == ("secret", "placeholder")
        assert memory_storage.writes == 2

    def test_store_for_path(self, tmp_path):
        store = store_for_path(tmp_path / "progress.json")
        store.dispatch(MarkChapterRead("ghost", "a", now=NOW))
        assert (tmp_path / "progress.json").exists()
        assert store_for_path(tmp_path / "progress.json").story("ghost").chapters_read == ("a",)
