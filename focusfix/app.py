from __future__ import annotations

import argparse
import asyncio
import logging
import math
from dataclasses import replace
from datetime import date, datetime, timedelta

from . import __version__
from .ai import OpenAICompatibleClient, ThemeClassifier
from .capture import ScreenCaptureService
from .config import SETTINGS_POLL_SECONDS, TrackerSettings
from .database import FocusDatabase
from .errors import CaptureUnavailable, ConfigurationError
from .paths import database_path, ensure_directories
from .scheduler import TrackingScheduler
from .similarity import SimilarityGate
from .taxonomy import next_theme_id, parse_theme_path
from .timeline import (
    build_time_segments,
    format_duration,
    group_segments_by_day,
    local_day_start,
    summarize_by_category,
)
from .viewport import TimelineViewport

DEFAULT_RANGE_DAYS = 7


def _now_stamp() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_status(message: str) -> None:
    print(f"[{_now_stamp()}] {message}", flush=True)


def _open_database() -> FocusDatabase:
    ensure_directories()
    return FocusDatabase(database_path())


def _build_classifier(settings: TrackerSettings, db: FocusDatabase) -> tuple[OpenAICompatibleClient, ThemeClassifier]:
    client = OpenAICompatibleClient(settings.model_endpoint, settings.api_key)
    classifier = ThemeClassifier(client, db.load_taxonomy(), settings.model_name)
    return client, classifier


async def _track(db: FocusDatabase, poll_seconds: float = SETTINGS_POLL_SECONDS) -> None:
    settings = TrackerSettings.load(db)
    settings.validate()
    client, classifier = _build_classifier(settings, db)
    scheduler = TrackingScheduler(
        capture_service=ScreenCaptureService(),
        classifier=classifier,
        gate=SimilarityGate(settings.similarity_threshold),
        on_event=db.append_event,
        on_status=_print_status,
    )

    await scheduler.start(settings)
    try:
        while True:
            await asyncio.sleep(poll_seconds)
            latest = TrackerSettings.load(db)
            try:
                latest.validate()
                classifier.update_themes(db.load_taxonomy())
                classifier.update_model(latest.model_name)
                client.configure(latest.model_endpoint, latest.api_key)
                await scheduler.apply_settings(latest)
            except ConfigurationError as exc:
                if scheduler.is_running:
                    await scheduler.stop()
                _print_status(f"tracking paused: {exc}")
    finally:
        await scheduler.stop()


def _cmd_run(db: FocusDatabase, args: argparse.Namespace) -> int:
    db.set_setting("tracking_enabled", "true")
    try:
        asyncio.run(_track(db))
    except ConfigurationError as exc:
        print(f"Cannot start tracking: {exc}")
        return 2
    except KeyboardInterrupt:
        print("\nTracking stopped.")
    finally:
        db.set_setting("tracking_enabled", "false")
    return 0


def _cmd_capture_once(db: FocusDatabase, args: argparse.Namespace) -> int:
    try:
        frame = ScreenCaptureService().capture()
    except CaptureUnavailable as exc:
        print(f"Capture failed: {exc}")
        return 1
    print(
        f"captured={frame.captured_at.isoformat()} size={frame.width}x{frame.height} "
        f"format={frame.format} bytes={len(frame.data)}"
    )
    return 0


def _cmd_analyze_once(db: FocusDatabase, args: argparse.Namespace) -> int:
    settings = TrackerSettings.load(db)
    try:
        settings.validate()
        _, classifier = _build_classifier(settings, db)
        frame = ScreenCaptureService().capture()
    except ConfigurationError as exc:
        print(f"Cannot analyse: {exc}")
        return 2
    except CaptureUnavailable as exc:
        print(f"Capture failed: {exc}")
        return 1

    event = classifier.classify(frame.data)
    db.append_event(event)
    label = "degraded" if event.degraded else "ok"
    print(f"[{label}] {event.theme.path} ({event.confidence:.0f}%) {event.analysis_text}")
    return 0


def _cmd_timeline(db: FocusDatabase, args: argparse.Namespace) -> int:
    end_day = args.end or date.today()
    start_day = args.start or end_day - timedelta(days=DEFAULT_RANGE_DAYS)
    if start_day > end_day:
        print("Start date must not be after end date.")
        return 2

    settings = TrackerSettings.load(db)
    events = db.load_events(start_day, end_day)
    segments = build_time_segments(events, timedelta(minutes=settings.default_segment_minutes))
    by_day = group_segments_by_day(segments)
    if not by_day:
        print("No activity recorded in this date range.")
        return 0

    viewport = TimelineViewport(base_day_width=args.width, zoom=args.zoom)
    for day, day_segments in by_day.items():
        day_start = local_day_start(day)
        print(f"{day.isoformat()} ({day.strftime('%A')})")
        for segment in day_segments:
            left, width = viewport.segment_span(segment, day_start)
            print(
                f"  {segment.start.strftime('%H:%M')}-{segment.end.strftime('%H:%M')}  "
                f"{format_duration(segment.duration_seconds):>8}  {segment.theme.path}  "
                f"({segment.confidence:.0f}%)  x={left:.1f} w={width:.1f}"
            )
        totals = summarize_by_category(day_segments)
        print("  Totals: " + ", ".join(f"{name} {format_duration(seconds)}" for name, seconds in totals.items()))
    return 0


def _cmd_themes(db: FocusDatabase, args: argparse.Namespace) -> int:
    themes = db.load_taxonomy()
    if args.add:
        try:
            themes.append(parse_theme_path(args.add, next_theme_id(themes)))
        except ValueError as exc:
            print(exc)
            return 2
        db.save_taxonomy(themes)
    if args.edit is not None:
        theme_id, path = args.edit
        try:
            index = next(i for i, theme in enumerate(themes) if str(theme.id) == theme_id)
        except StopIteration:
            print(f"No theme with id {theme_id}.")
            return 1
        try:
            themes[index] = parse_theme_path(path, themes[index].id)
        except ValueError as exc:
            print(exc)
            return 2
        db.save_taxonomy(themes)
    if args.remove is not None:
        remaining = [theme for theme in themes if theme.id != args.remove]
        if len(remaining) == len(themes):
            print(f"No theme with id {args.remove}.")
            return 1
        themes = remaining
        db.save_taxonomy(themes)

    for theme in themes:
        print(f"{theme.id:>4}  {theme.path}")
    if not themes:
        print("Taxonomy is empty; tracking cannot start until a theme is added.")
    return 0


def _cmd_settings(db: FocusDatabase, args: argparse.Namespace) -> int:
    settings = TrackerSettings.load(db)
    if args.key is not None:
        if args.value is None:
            print("A value is required.")
            return 2
        try:
            settings = settings.with_value(args.key, args.value)
        except ConfigurationError as exc:
            print(exc)
            return 2
        settings.save(db)

    shown = replace(settings, api_key="*" * min(len(settings.api_key), 8))
    for key, value in vars(shown).items():
        print(f"{key} = {value}")
    return 0


def _cmd_check_api(db: FocusDatabase, args: argparse.Namespace) -> int:
    settings = TrackerSettings.load(db)
    client = OpenAICompatibleClient(settings.model_endpoint, settings.api_key)
    ok, message = client.check_connection(settings.model_name)
    print(message)
    return 0 if ok else 1


def _cmd_prune(db: FocusDatabase, args: argparse.Namespace) -> int:
    removed = db.prune_events_before(args.before)
    print(f"Removed {removed} events recorded before {args.before.isoformat()}.")
    return 0


def _iso_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date: {value} (expected YYYY-MM-DD)") from exc


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid number: {value}") from exc
    if not math.isfinite(number) or number <= 0:
        raise argparse.ArgumentTypeError(f"Must be a positive number: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="focusfix")
    parser.add_argument("--version", action="store_true", help="Print app version and exit")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command")

    commands.add_parser("run", help="Track activity until interrupted").set_defaults(handler=_cmd_run)
    commands.add_parser("capture-once", help="Capture one screenshot and exit").set_defaults(
        handler=_cmd_capture_once
    )
    commands.add_parser("analyze-once", help="Capture, classify and store one sample").set_defaults(
        handler=_cmd_analyze_once
    )

    timeline = commands.add_parser("timeline", help="Print the reconstructed timeline")
    timeline.add_argument("--from", dest="start", type=_iso_day, help="First day (YYYY-MM-DD)")
    timeline.add_argument("--to", dest="end", type=_iso_day, help="Last day (YYYY-MM-DD)")
    timeline.add_argument(
        "--width", type=_positive_float, default=1000.0, help="Pixel width of one day at zoom 1"
    )
    timeline.add_argument("--zoom", type=_positive_float, default=1.0, help="Zoom factor")
    timeline.set_defaults(handler=_cmd_timeline)

    themes = commands.add_parser("themes", help="List or edit the theme taxonomy")
    themes.add_argument("--add", metavar="PATH", help="Add 'Category > Subcategory > Specific'")
    themes.add_argument(
        "--edit",
        nargs=2,
        metavar=("ID", "PATH"),
        help="Replace a theme's path, keeping its id and position",
    )
    themes.add_argument("--remove", type=int, metavar="ID", help="Remove a theme by id")
    themes.set_defaults(handler=_cmd_themes)

    settings = commands.add_parser("settings", help="Show or change a setting")
    settings.add_argument("key", nargs="?")
    settings.add_argument("value", nargs="?")
    settings.set_defaults(handler=_cmd_settings)

    commands.add_parser("check-api", help="Test the model endpoint").set_defaults(handler=_cmd_check_api)

    prune = commands.add_parser("prune", help="Delete events recorded before a day")
    prune.add_argument("--before", type=_iso_day, required=True)
    prune.set_defaults(handler=_cmd_prune)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.version:
        print(__version__)
        return 0
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 0
    return handler(_open_database(), args)
