"""Command line front end: run an action or quick prompt against a text file."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from dataclasses import asdict, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Sequence, TextIO, get_args, get_origin, get_type_hints

from .actions.models import Action, InputSource, OutputMode
from .ai.factory import BackendFactory
from .editor.document_model import DocumentState
from .editor.locations import Location, LocationExtra
from .editor.mutations import DocumentEditor, FileTargetStore
from .errors import InputSourceError, StreamingError
from .events import EventBus, NoticePosted
from .services.settings import Settings, load_settings, redact_secret
from .streaming.controller import StreamController
from .streaming.models import Cancelled, Completed, Failed
from .streaming.processor import PromptProcessor
from .streaming.review import ReviewItem, ReviewManager
from .streaming.router import ResultRouter
from .streaming.side_channels import ESCAPE_KEY
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
DEFAULT_SETTINGS_PATH = Path.home() / ".quillstream" / "settings.json"
QUICK_PROMPT_NAME = "Quick prompt"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def configure_logging(debug: bool = False, *, settings: Settings | None = None, force: bool = False) -> None:
    log_path = logging_utils.setup_logging(settings, debug=debug, force=force)
    level = logging_utils.log_level_for(settings, debug=debug)
    _LOGGER.debug("Logging to %s (level=%s)", log_path, logging.getLevelName(level))


class ConsoleDisplay:
    """Live display that echoes the streamed text to a terminal stream."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stderr
        self._printed = ""
        self._visible = False

    def show(self, offset: int) -> None:
        self._visible = True
        self._printed = ""
        self._stream.write(f"--- streaming (offset {offset}) ---")
        self._stream.flush()

    def update(self, display_text: str) -> None:
        if not self._visible:
            return
        if display_text.startswith(self._printed):
            self._stream.write(display_text[len(self._printed):])
        else:
            self._stream.write("\n" + display_text)
        self._printed = display_text
        self._stream.flush()

    def hide(self) -> None:
        if not self._visible:
            return
        self._visible = False
        self._stream.write("\n--- done ---\n")
        self._stream.flush()


class ConsoleHost:
    """Host capabilities for a terminal: Ctrl-C plays the role of Escape."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def add_key_listener(self, key: str, handler: Callable[[], None]) -> Callable[[], None]:
        if key != ESCAPE_KEY:
            raise ValueError(f"Unsupported key: {key}")
        loop = self._loop or asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, handler)

        def _remove() -> None:
            loop.remove_signal_handler(signal.SIGINT)

        return _remove


class ConsoleReviewSurface(ReviewManager):
    """Review manager that asks for the decision on the terminal."""

    def __init__(
        self,
        event_bus: EventBus | None = None,
        *,
        reader: Callable[[str], str] = input,
        stream: TextIO | None = None,
    ) -> None:
        super().__init__(event_bus)
        self._reader = reader
        self._stream = stream or sys.stderr

    async def present(self, item: ReviewItem) -> None:
        await super().present(item)
        self._stream.write(f"\n=== Result ===\n{item.preview()}\n")
        while self.pending is item:
            choice = (await asyncio.to_thread(self._reader, _review_prompt(item))).strip().lower()
            if choice in {"a", "accept", ""}:
                await self.accept()
            elif choice in {"c", "cancel", "q"}:
                self.cancel()
            elif choice.startswith("r"):
                _, _, raw_location = choice.partition(" ")
                try:
                    location = Location.parse(raw_location or "end")
                except (KeyError, ValueError):
                    self._stream.write(f"Unknown location: {raw_location}\n")
                    continue
                await self.redirect(location)
            else:
                self._stream.write("Please answer a, r <location> or c.\n")


def _review_prompt(item: ReviewItem) -> str:
    default = item.default_location.value
    return f"[a]ccept at {default} / [r]edirect <start|end|after_selection|replace_selection> / [c]ancel: "


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `quillstream` console script."""

    args = _parse_cli_args(argv)
    debug = args.debug or _env_flag("QUILLSTREAM_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("QUILLSTREAM_SETTINGS_PATH") or DEFAULT_SETTINGS_PATH
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return EXIT_USAGE
    if args.model:
        cli_overrides["default_model_id"] = args.model
    settings = load_settings(Path(settings_path).expanduser(), overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings)
        return EXIT_OK

    if settings.debug_logging and not debug:
        configure_logging(debug, settings=settings, force=True)

    if args.file is None:
        print("A file is required unless --dump-settings is given.", file=sys.stderr)
        return EXIT_USAGE
    try:
        action = _select_action(args, settings)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_USAGE

    try:
        return asyncio.run(_run(args, settings, action))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Interrupted by user")
        return EXIT_CANCELLED


async def _run(args: argparse.Namespace, settings: Settings, action: Action) -> int:
    path = Path(args.file).expanduser()
    document = DocumentState.from_path(path) if path.exists() else DocumentState(path=path)
    if args.selection:
        start, end = _parse_selection(args.selection)
        document.select(start, end)
    else:
        document.select(0, len(document.text))

    event_bus = EventBus()
    event_bus.subscribe(NoticePosted, _print_notice)
    factory = BackendFactory(settings)
    controller = StreamController(factory, event_bus=event_bus, host=ConsoleHost(), settings=settings)
    router = ResultRouter(controller, event_bus=event_bus, settings=settings)
    targets = FileTargetStore(args.targets_dir or path.parent)
    processor = PromptProcessor(
        controller,
        router,
        factory,
        settings=settings,
        event_bus=event_bus,
        clipboard=_read_stdin,
        targets=targets,
    )
    review = ConsoleReviewSurface(event_bus) if args.review else None
    # An explicit --location or --target takes precedence over the quick prompt mode.
    output_mode = OutputMode(args.mode) if args.prompt and not (args.location or args.target) else None

    try:
        outcome = await processor.run_action(
            action,
            document,
            editor=DocumentEditor(document, targets=targets),
            extra_prompt=args.extra_prompt,
            output_mode=output_mode,
            streaming=not args.no_stream,
            display=None if args.quiet else ConsoleDisplay(),
            review_surface=review,
        )
    except InputSourceError:
        return EXIT_USAGE
    except StreamingError as exc:
        _LOGGER.debug("Run failed: %s", exc)
        return EXIT_FAILED
    finally:
        await factory.aclose()

    if isinstance(outcome, Cancelled):
        return EXIT_CANCELLED
    if isinstance(outcome, Failed):
        return EXIT_FAILED
    if isinstance(outcome, Completed) and document.dirty:
        if args.dry_run:
            sys.stdout.write(document.text)
        else:
            saved = document.save()
            _LOGGER.info("Wrote %s", saved)
    return EXIT_OK


def _select_action(args: argparse.Namespace, settings: Settings) -> Action:
    if args.prompt:
        action = Action(
            name=QUICK_PROMPT_NAME,
            prompt=args.prompt,
            model_id=settings.default_model_id or "",
        )
    elif args.action:
        found = settings.find_action(args.action)
        if found is None:
            raise ValueError(f"Unknown action: {args.action}")
        action = found
    else:
        raise ValueError("Either --action or --prompt is required.")
    if args.input:
        action = replace(action, input_source=InputSource(args.input))
    if args.location:
        action = replace(action, location=Location.parse(args.location))
    if args.target:
        action = replace(action, location=Location.EXTERNAL_TARGET, location_extra=LocationExtra(args.target))
    if not args.review:
        action = replace(action, show_review=False)
    if not action.model_id:
        raise ValueError("No model configured: pass --model or set default_model_id.")
    return action


def _print_notice(event: NoticePosted) -> None:
    print(event.message, file=sys.stderr)


def _read_stdin() -> str:
    if sys.stdin is None or sys.stdin.isatty():
        raise InputSourceError("Pipe text on standard input to use it as the clipboard.")
    return sys.stdin.read()


def _parse_selection(value: str) -> tuple[int, int]:
    start_text, sep, end_text = value.partition(":")
    if not sep:
        offset = int(start_text)
        return offset, offset
    return int(start_text or 0), int(end_text or 0)


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="quillstream",
        description="Stream a model's answer into a text file, or inspect the configuration.",
    )
    parser.add_argument("file", nargs="?", help="Text file to edit.")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--action", metavar="NAME", help="Run the configured action called NAME.")
    source.add_argument("--prompt", metavar="TEXT", help="Run an ad-hoc quick prompt.")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in OutputMode],
        default=OutputMode.REPLACE.value,
        help="Quick prompt output mode (default: replace).",
    )
    parser.add_argument("--model", metavar="MODEL_ID", help="Model id to use instead of the default.")
    parser.add_argument("--input", choices=[source.value for source in InputSource], help="Input source override.")
    parser.add_argument("--location", choices=[location.value for location in Location], help="Output location override.")
    parser.add_argument("--target", metavar="NAME", help="Append the result to the named file instead.")
    parser.add_argument("--targets-dir", metavar="DIR", help="Directory holding external targets (default: the file's directory).")
    parser.add_argument("--selection", metavar="START:END", help="Selection offsets (default: the whole file).")
    parser.add_argument("--extra-prompt", metavar="TEXT", help="Extra user prompt sent before the input.")
    parser.add_argument("--review", action="store_true", help="Ask before writing results of actions that request review.")
    parser.add_argument("--no-stream", action="store_true", help="Request the whole answer in one response.")
    parser.add_argument("--dry-run", action="store_true", help="Print the edited text instead of saving it.")
    parser.add_argument("--quiet", action="store_true", help="Do not echo the streamed text.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging on the console.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.quillstream/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override settings before running (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields or key in {"providers", "models", "actions"}:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(type_hints.get(key, fields[key].type), raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    if raw_value.lower() in {"none", "null"} and target is not str:
        return None
    if target is bool:
        return _parse_bool(raw_value)
    if target is int:
        return int(raw_value, 10)
    if target is float:
        return float(raw_value)
    return raw_value


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(settings: Settings, stream: TextIO | None = None) -> None:
    payload = asdict(settings)
    for provider in payload.get("providers", []):
        provider["api_key"] = redact_secret(provider.get("api_key", ""))
    json.dump(payload, stream or sys.stdout, indent=2, sort_keys=True, default=_json_default)
    (stream or sys.stdout).write("\n")


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return str(value)


if __name__ == "__main__":  # pragma: no cover - module entry point
    raise SystemExit(main())
