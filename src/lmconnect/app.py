"""Application bootstrap helpers for the lmconnect chat client."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, TextIO, cast

from .chat.message_model import AttachedFile
from .chat.session import ChatSession, SessionRegistry
from .errors import FileReadFailure
from .services.settings import Settings, SettingsStore, parse_flag, parse_setting
from .ui.events import ErrorOccurred, Event, ReplyReceived, SubmitMessage
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)

WINDOW_TITLE = "LM Studio Connect"


@dataclass(slots=True)
class QtRuntime:
    """Container returned by :func:`create_qapp`."""

    app: Any
    loop: asyncio.AbstractEventLoop


def configure_logging(
    debug: bool = False,
    *,
    payload_logging: bool = False,
    headless: bool = False,
    force: bool = False,
) -> None:
    """Configure the log file; headless runs keep stderr for replies and errors only."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(
        level,
        console_level=None if headless else logging.WARNING,
        payload_logging=payload_logging,
        force=force,
    )
    _LOGGER.debug(
        "Logging configured (level=%s, payloads=%s)", logging.getLevelName(level), payload_logging
    )


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def create_qapp() -> QtRuntime:
    """Create a qasync-powered QApplication instance."""

    from PySide6.QtWidgets import QApplication
    from qasync import QEventLoop

    os.environ.setdefault("QT_ENABLE_HIGHDPI_SCALING", "1")
    app = cast(Any, QApplication.instance() or QApplication(sys.argv))
    app.setApplicationName("lmconnect")
    app.setApplicationDisplayName(WINDOW_TITLE)

    loop = QEventLoop(app)
    asyncio.set_event_loop(loop)
    app.aboutToQuit.connect(loop.stop)  # type: ignore[attr-defined]
    logging_utils.route_qt_messages()
    return QtRuntime(app=app, loop=loop)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``lmconnect`` console script."""

    args = _parse_cli_args(argv)

    debug = _env_flag("LMCONNECT_DEBUG", default=False)
    headless = args.prompt is not None or args.dump_settings
    configure_logging(debug, headless=headless)

    settings_path = args.settings_path or os.environ.get("LMCONNECT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    overrides_mapping: Dict[str, Any] | None = cli_overrides or None
    settings = load_settings(resolved_path, store=settings_store, overrides=overrides_mapping)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    if settings.debug_logging:
        configure_logging(debug, payload_logging=True, headless=headless, force=True)

    if args.prompt is not None:
        return asyncio.run(
            run_prompt(
                settings,
                args.prompt,
                attach=args.attach,
                as_html=args.html,
                store=settings_store,
            )
        )
    if args.attach or args.html:
        print("--attach and --html require --prompt", file=sys.stderr)
        return 2

    return _run_gui(settings, settings_store)


async def run_prompt(
    settings: Settings,
    prompt: str,
    *,
    attach: str | None = None,
    as_html: bool = False,
    store: SettingsStore | None = None,
    session: ChatSession | None = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> int:
    """Send one message without a UI and print the reply; returns the exit code."""

    out = stdout or sys.stdout
    err = stderr or sys.stderr
    active = session or ChatSession("cli", settings=settings, store=store)
    try:
        attachment = None
        if attach:
            try:
                attachment = AttachedFile.from_path(attach)
            except FileReadFailure as exc:
                err.write(f"{exc}\n")
                return 1
        events = await active.handle(SubmitMessage(text=prompt, file=attachment))
    finally:
        await active.aclose()
    return _print_events(events, as_html=as_html, stdout=out, stderr=err)


def _print_events(events: List[Event], *, as_html: bool, stdout: TextIO, stderr: TextIO) -> int:
    status = 0
    for event in events:
        if isinstance(event, ReplyReceived):
            stdout.write(event.html if as_html else event.text)
            stdout.write("\n")
        elif isinstance(event, ErrorOccurred):
            stderr.write(f"{event.message}\n")
            status = 1
    return status


def _run_gui(settings: Settings, store: SettingsStore) -> int:
    from .chat.chat_panel import ChatPanel

    runtime = create_qapp()
    registry = SessionRegistry(
        lambda session_id: ChatSession(session_id, settings=settings, store=store)
    )
    panel = ChatPanel(registry.get_or_create("default"))
    panel.setWindowTitle(WINDOW_TITLE)
    panel.resize(720, 640)
    panel.show()

    loop = runtime.loop
    try:
        loop.run_forever()
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
    finally:
        loop.run_until_complete(shutdown(registry))
        loop.close()
    return 0


async def shutdown(registry: SessionRegistry) -> None:
    """Cancel in-flight requests, then close every session's HTTP client."""

    current = asyncio.current_task()
    pending = [task for task in asyncio.all_tasks() if task is not current and not task.done()]
    if pending:
        _LOGGER.debug("Cancelling %s pending task(s) before exit", len(pending))
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
    await registry.aclose()


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return parse_flag(value)
    except ValueError:
        return default


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="lmconnect",
        add_help=True,
        description="Chat with a local LM Studio (OpenAI-compatible) model.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload and exit.",
    )
    parser.add_argument(
        "--settings",
        "--settings-path",
        dest="settings_path",
        metavar="PATH",
        help="Override the default ~/.lmconnect/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument(
        "--prompt",
        metavar="TEXT",
        help="Send a single message without opening the window and print the reply.",
    )
    parser.add_argument(
        "--attach",
        metavar="FILE",
        help="Attach a text file to the --prompt message.",
    )
    parser.add_argument(
        "--html",
        action="store_true",
        help="Print the rendered HTML of the reply instead of the raw text.",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for entry in items:
        key, sep, raw_value = entry.partition("=")
        key = key.strip()
        if not sep:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        if not key:
            raise ValueError("Override is missing a field name.")
        overrides[key] = parse_setting(key, raw_value)
    return overrides


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    metadata = {
        "path": str(store.path),
        "log_path": str(logging_utils.get_log_path() or ""),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    output = {"settings": payload, "meta": metadata}
    json.dump(output, destination, indent=2, ensure_ascii=False)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("LMCONNECT_"))


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
