from storypath.branches import (
    find_perspective_group,
    get_base_chapter_id,
    get_next,
    get_previous,
    get_sibling_perspectives,
    resolve_effective_order_id,
)
from storypath.models import PerspectiveGroup, PerspectiveVariant, StoryStructure


class TestLinearOrder:
    """Next/previous over a story without perspectives."""

    def test_next_chapter(self, linear_structure):
        assert get_next(linear_structure, "a") == "b"
        assert get_next(linear_structure, "b") == "c"

    def test_next_of_last_is_none(self, linear_structure):
        assert get_next(linear_structure, "c") is None

    def test_previous_chapter(self, linear_structure):
        assert get_previous(linear_structure, "c") == "b"
        assert get_previous(linear_structure, "b") == "a"

    def test_previous_of_first_is_none(self, linear_structure):
        assert get_previous(linear_structure, "a") is None

    def test_unknown_chapter_is_not_found(self, linear_structure):
        assert get_next(linear_structure, "zzz") is None
        assert get_previous(linear_structure, "zzz") is None

    def test_single_chapter_story(self):
        structure = StoryStructure(chapter_order=("only",))
        assert get_next(structure, "only") is None
        assert get_previous(structure, "only") is None


class TestPerspectiveOrdering:
    """Variants share their base chapter's slot in the order."""

    def test_variant_resolves_to_base(self, perspective_structure):
        assert resolve_effective_order_id(perspective_structure, "b-x") == "b"
        assert resolve_effective_order_id(perspective_structure, "b-y") == "b"

    def test_non_variant_passes_through(self, perspective_structure):
        assert resolve_effective_order_id(perspective_structure, "a") == "a"
        assert resolve_effective_order_id(perspective_structure, "b") == "b"
        assert resolve_effective_order_id(perspective_structure, "nope") == "nope"

    def test_next_and_previous_from_variant(self, perspective_structure):
        assert get_next(perspective_structure, "b-x") == "c"
        assert get_previous(perspective_structure, "b-y") == "a"

    def test_inverse_law(self, perspective_structure):
        for chapter_id in ("b", "b-x", "b-y"):
            assert get_previous(perspective_structure, get_next(perspective_structure, chapter_id)) == (
                resolve_effective_order_id(perspective_structure, chapter_id)
            )

    def test_inverse_law_longer_story(self):
        structure = StoryStructure(chapter_order=tuple(f"ch{i}" for i in range(10)))
        for chapter_id in structure.chapter_order[1:-1]:
            assert get_previous(structure, get_next(structure, chapter_id)) == chapter_id


class TestSiblingPerspectives:
    """Perspective lookups for bases, variants and unrelated chapters."""

    def test_base_returns_variants(self, perspective_structure):
        variants = get_sibling_perspectives(perspective_structure, "b")
        assert [v.character_id for v in variants] == ["X", "Y"]

    def test_variant_returns_full_sibling_list(self, perspective_structure):
        assert get_sibling_perspectives(perspective_structure, "b-x") == get_sibling_perspectives(
            perspective_structure, "b"
        )

    def test_unrelated_chapter_returns_none(self, perspective_structure, linear_structure):
        assert get_sibling_perspectives(perspective_structure, "a") is None
        assert get_sibling_perspectives(linear_structure, "b") is None

    def test_base_chapter_id(self, perspective_structure):
        assert get_base_chapter_id(perspective_structure, "b") == "b"
        assert get_base_chapter_id(perspective_structure, "b-x") == "b"
        assert get_base_chapter_id(perspective_structure, "a") is None
        assert get_base_chapter_id(perspective_structure, "missing") is None

    def test_duplicate_base_first_group_wins(self):
        structure = StoryStructure(
            chapter_order=("a",),
            perspectives=(
                PerspectiveGroup("a", (PerspectiveVariant("X", "a-x"),)),
                PerspectiveGroup("a", (PerspectiveVariant("Z", "a-z"),)),
            ),
        )
        assert [v.character_id for v in get_sibling_perspectives(structure, "a")] == ["X"]
        assert find_perspective_group(structure, "a").variants[0].chapter_id == "a-x"
