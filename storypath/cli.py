from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from rich import print
from rich.logging import RichHandler
from rich.table import Table

from .actions import (
    Action,
    ApplyUnlocks,
    DiscoverItem,
    MarkChapterRead,
    MarkUnlocked,
    RecordChoice,
    RecordPerspectiveViewed,
    UpdatePreferences,
)
from .branches import get_base_chapter_id, get_next, get_previous, get_sibling_perspectives
from .exceptions import ContentIntegrityError
from .models import PREFERENCE_CHOICES, StoryStructure
from .settings import EngineSettings, load_engine_settings, save_engine_settings
from .storage import ProgressStore, store_for_path, validate_slug
from .structure import load_story_structure, load_structure, validate_structure
from .unlocks import diff_newly_unlocked, is_unlocked

logger = logging.getLogger(__name__)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
    )


def _structure(args: argparse.Namespace, settings: EngineSettings) -> StoryStructure:
    meta = Path(args.meta)
    try:
        if not meta.suffix and settings.content_dir:
            # Bare slug: look it up under the configured content directory
            return load_story_structure(Path(settings.content_dir), args.meta)
        return load_structure(meta)
    except ContentIntegrityError as e:
        print(f"[red]Cannot load story metadata:[/] {e.message}")
        raise SystemExit(1)
    except ValueError as e:
        print(f"[red]Invalid story slug:[/] {e}")
        raise SystemExit(1)


def _story_slug(args: argparse.Namespace) -> str:
    meta = Path(args.meta)
    slug = getattr(args, "story", None) or (meta.name if not meta.suffix else meta.resolve().parent.name)
    try:
        return validate_slug(slug)
    except ValueError as e:
        print(f"[yellow]Invalid story slug {slug!r}:[/] {e}. Pass --story explicitly.")
        raise SystemExit(1)


def _store(args: argparse.Namespace, settings: EngineSettings) -> ProgressStore:
    path = Path(args.progress) if args.progress else settings.resolved_progress_path()
    return store_for_path(path)


def cmd_next(args: argparse.Namespace, settings: EngineSettings) -> None:
    structure = _structure(args, settings)
    target = get_next(structure, args.chapter) if args.cmd == "next" else get_previous(structure, args.chapter)
    if target is None:
        print("[dim](none)[/]")
    else:
        print(target)


def cmd_perspectives(args: argparse.Namespace, settings: EngineSettings) -> None:
    structure = _structure(args, settings)
    variants = get_sibling_perspectives(structure, args.chapter)
    if variants is None:
        print(f"[dim]{args.chapter} has no alternate perspectives[/]")
        return
    base = get_base_chapter_id(structure, args.chapter)
    table = Table(title=f"Perspectives of {base}")
    table.add_column("Character")
    table.add_column("Chapter")
    for variant in variants:
        marker = " [green]*[/]" if variant.chapter_id == args.chapter else ""
        table.add_row(variant.character_id, variant.chapter_id + marker)
    print(table)


def cmd_status(args: argparse.Namespace, settings: EngineSettings) -> None:
    structure = _structure(args, settings)
    slug = _story_slug(args)
    story = _store(args, settings).story(slug)

    read = set(story.chapters_read)
    table = Table(title=f"Progress for {slug}")
    table.add_column("Chapter")
    table.add_column("Read")
    table.add_column("Available")
    for chapter_id in structure.chapter_order:
        table.add_row(
            chapter_id,
            "[green]yes[/]" if chapter_id in read else "-",
            "[green]open[/]" if is_unlocked(chapter_id, structure, story) else "[red]locked[/]",
        )
    print(table)
    print(f"[bold]Current[/]: {story.current_chapter_id or '-'} | [bold]Last read[/]: {story.last_read_at}")
    if story.choices:
        print("[bold]Choices[/]: " + ", ".join(f"{k}={v}" for k, v in story.choices.items()))
    pending = diff_newly_unlocked(structure, story)
    if pending:
        print("[bold yellow]Unlocked but not yet announced[/]: " + ", ".join(pending))


def _record(args: argparse.Namespace, settings: EngineSettings, action: Action) -> None:
    structure = _structure(args, settings)
    slug = _story_slug(args)
    store = _store(args, settings)

    result = store.dispatch(action)
    newly = diff_newly_unlocked(structure, store.story(slug))
    if newly:
        result = store.dispatch(ApplyUnlocks(slug=slug, structure=structure))
        for target_id in newly:
            print(f"[bold magenta]Unlocked[/]: {target_id}")
    if not result.ok:
        print(f"[yellow]Progress not saved:[/] {result.error.user_message}")
    else:
        print("[green]Recorded.[/]")


def cmd_read(args: argparse.Namespace, settings: EngineSettings) -> None:
    _record(args, settings, MarkChapterRead(slug=_story_slug(args), chapter_id=args.chapter))


def cmd_choose(args: argparse.Namespace, settings: EngineSettings) -> None:
    _record(args, settings, RecordChoice(slug=_story_slug(args), choice_id=args.choice, option_id=args.option))


def cmd_view(args: argparse.Namespace, settings: EngineSettings) -> None:
    structure = _structure(args, settings)
    base = get_base_chapter_id(structure, args.chapter) or args.chapter
    _record(
        args,
        settings,
        RecordPerspectiveViewed(slug=_story_slug(args), base_chapter_id=base, character_id=args.character),
    )


def cmd_discover(args: argparse.Namespace, settings: EngineSettings) -> None:
    _record(args, settings, DiscoverItem(slug=_story_slug(args), scene_id=args.scene, item_id=args.item))


def cmd_unlock(args: argparse.Namespace, settings: EngineSettings) -> None:
    _record(args, settings, MarkUnlocked(slug=_story_slug(args), target_id=args.target))


def cmd_check(args: argparse.Namespace, settings: EngineSettings) -> None:
    structure = _structure(args, settings)
    story = _store(args, settings).story(_story_slug(args))
    if is_unlocked(args.target, structure, story):
        print(f"[green]{args.target} is unlocked[/]")
    else:
        print(f"[red]{args.target} is locked[/]")


def cmd_validate(args: argparse.Namespace, settings: EngineSettings) -> None:
    structure = _structure(args, settings)
    issues = validate_structure(structure)
    if not issues:
        print(f"[green]No issues in[/] {args.meta}")
        return
    table = Table(title=f"{len(issues)} issue(s) in {args.meta}")
    table.add_column("Code", style="yellow", no_wrap=True)
    table.add_column("Message")
    for issue in issues:
        table.add_row(issue.code, issue.message)
    print(table)
    raise SystemExit(1)


def cmd_prefs(args: argparse.Namespace, settings: EngineSettings) -> None:
    store = _store(args, settings)
    changes = {
        name: getattr(args, name)
        for name in PREFERENCE_CHOICES
        if getattr(args, name, None) is not None
    }
    if changes:
        result = store.dispatch(UpdatePreferences(changes=changes))
        if not result.ok:
            print(f"[yellow]Preferences not saved:[/] {result.error.user_message}")
    prefs = store.snapshot.preferences
    print(
        f"[bold]Font size[/]: {prefs.font_size} | [bold]Line height[/]: {prefs.line_height} | "
        f"[bold]Font[/]: {prefs.font_family} | [bold]Atmosphere[/]: {'on' if prefs.atmosphere_effects else 'off'}"
    )


def cmd_config(args: argparse.Namespace, settings: EngineSettings) -> None:
    s = load_engine_settings(apply_env=False)
    if args.progress_path:
        s.progress_path = args.progress_path
    if args.content_dir:
        s.content_dir = args.content_dir
    if args.log_level:
        s.log_level = args.log_level
    save_engine_settings(s)
    print(f"Progress file: [cyan]{s.resolved_progress_path()}[/] | Content: [cyan]{s.content_dir or '-'}[/]")


def main(argv: Optional[list[str]] = None) -> None:
    p = argparse.ArgumentParser(prog="storypath", description="Interactive fiction reading progress")
    p.add_argument("--progress", help="Progress file (defaults to the configured location)")
    sub = p.add_subparsers(dest="cmd", required=True)

    meta_help = "Path to the story meta.json, or a slug under the configured content directory"

    for name, help_text in (("next", "Show the chapter after CHAPTER"), ("prev", "Show the chapter before CHAPTER")):
        sp = sub.add_parser(name, help=help_text)
        sp.add_argument("meta", help=meta_help)
        sp.add_argument("chapter")
        sp.set_defaults(func=cmd_next)

    sp = sub.add_parser("perspectives", help="List alternate perspectives of a chapter")
    sp.add_argument("meta", help=meta_help)
    sp.add_argument("chapter")
    sp.set_defaults(func=cmd_perspectives)

    sp = sub.add_parser("status", help="Show reading progress for a story")
    sp.add_argument("meta", help=meta_help)
    sp.add_argument("--story", help="Story slug (defaults to the meta.json directory name)")
    sp.set_defaults(func=cmd_status)

    sp = sub.add_parser("read", help="Mark a chapter as read")
    sp.add_argument("meta", help=meta_help)
    sp.add_argument("chapter")
    sp.add_argument("--story")
    sp.set_defaults(func=cmd_read)

    sp = sub.add_parser("choose", help="Record a branch choice")
    sp.add_argument("meta", help=meta_help)
    sp.add_argument("choice")
    sp.add_argument("option")
    sp.add_argument("--story")
    sp.set_defaults(func=cmd_choose)

    sp = sub.add_parser("view", help="Record a perspective as viewed")
    sp.add_argument("meta", help=meta_help)
    sp.add_argument("chapter", help="Base chapter or one of its variants")
    sp.add_argument("character")
    sp.add_argument("--story")
    sp.set_defaults(func=cmd_view)

    sp = sub.add_parser("discover", help="Record an item found in an exploration scene")
    sp.add_argument("meta", help=meta_help)
    sp.add_argument("scene")
    sp.add_argument("item")
    sp.add_argument("--story")
    sp.set_defaults(func=cmd_discover)

    sp = sub.add_parser("unlock", help="Record a target as already announced to the reader")
    sp.add_argument("meta", help=meta_help)
    sp.add_argument("target")
    sp.add_argument("--story")
    sp.set_defaults(func=cmd_unlock)

    sp = sub.add_parser("check", help="Check whether a target is unlocked")
    sp.add_argument("meta", help=meta_help)
    sp.add_argument("target")
    sp.add_argument("--story")
    sp.set_defaults(func=cmd_check)

    sp = sub.add_parser("validate", help="Check story metadata for authoring mistakes")
    sp.add_argument("meta", help=meta_help)
    sp.set_defaults(func=cmd_validate)

    sp = sub.add_parser("prefs", help="Show or update reading preferences")
    sp.add_argument("--font-size", dest="font_size", choices=PREFERENCE_CHOICES["font_size"])
    sp.add_argument("--line-height", dest="line_height", choices=PREFERENCE_CHOICES["line_height"])
    sp.add_argument("--font-family", dest="font_family", choices=PREFERENCE_CHOICES["font_family"])
    sp.add_argument("--atmosphere", dest="atmosphere_effects", action="store_true", default=None)
    sp.add_argument("--no-atmosphere", dest="atmosphere_effects", action="store_false")
    sp.set_defaults(func=cmd_prefs)

    sp = sub.add_parser("config", help="Configure progress and content locations")
    sp.add_argument("--progress-path")
    sp.add_argument("--content-dir")
    sp.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sp.set_defaults(func=cmd_config)

    args = p.parse_args(argv)
    settings = load_engine_settings()
    _setup_logging(settings.log_level)
    args.func(args, settings)


if __name__ == "__main__":
    main()
