# ooxlate/cli.py
"""
Command line front end.

    ooxlate INPUT [OUTPUT] [--mode xml|workbook] [--config PATH]
            [--concurrency N] [--all-text] [-v]

Exit codes: 0 success, 1 failure, 130 interrupted.
"""

import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from ooxlate import __app_name__, __version__
from ooxlate.config.settings import PIPELINE_MODES, AppSettings, get_default_settings_path
from ooxlate.models.types import TranslationResult, TranslationStatus
from ooxlate.services.cancellation import CancellationToken
from ooxlate.services.events import EventKind, TranslationEvent

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


def setup_logging(verbose: bool = False):
    """Configure logging to console and file.

    Log file location: ~/.ooxlate/logs/ooxlate.log (append mode)

    Returns:
        tuple: (console_handler, file_handler) to keep references alive
    """
    logs_dir = Path.home() / ".ooxlate" / "logs"
    log_file_path = logs_dir / "ooxlate.log"

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S'
    ))

    file_handler = None
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
    except OSError as e:
        # Console-only logging
        print(f"[WARNING] Failed to create log file {log_file_path}: {e}", file=sys.stderr)
        file_handler = None

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(console_handler)
    if file_handler:
        root_logger.addHandler(file_handler)

    # HTTP client request logs
    for name in ['openai', 'httpx', 'httpcore']:
        logging.getLogger(name).setLevel(logging.WARNING)

    if file_handler:
        logger.debug("Log file: %s", log_file_path)

    return console_handler, file_handler


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ooxlate",
        description="Translate the text of .xlsx and .docx files with an OpenAI-compatible LLM.",
    )
    parser.add_argument("input", type=Path, help="Input .xlsx or .docx file")
    parser.add_argument(
        "output", type=Path, nargs="?",
        help="Output file (default: <name>_translated<ext> beside the input)",
    )
    parser.add_argument("--mode", choices=PIPELINE_MODES, help="Pipeline mode (default: from settings)")
    parser.add_argument("--config", type=Path, help="Settings file (default: ~/.ooxlate/settings.json)")
    parser.add_argument("--concurrency", type=int, metavar="N", help="Maximum concurrent requests")
    parser.add_argument(
        "--all-text", action="store_true",
        help="Translate all meaningful text, not only text containing CJK characters",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug output")
    parser.add_argument("--version", action="version", version=f"{__app_name__} {__version__}")
    return parser


def load_settings(args: argparse.Namespace) -> AppSettings:
    settings = AppSettings.load(args.config or get_default_settings_path())

    overrides = {}
    if args.mode:
        overrides["pipeline_mode"] = args.mode
    if args.concurrency is not None:
        overrides["max_concurrent_requests"] = args.concurrency
    if args.all_text:
        overrides["only_translate_cjk"] = False
    if not overrides:
        return settings

    # load() returns a cached instance
    settings = dataclasses.replace(settings, **overrides)
    settings._validate()
    return settings


def print_event(event: TranslationEvent) -> None:
    if event.kind == EventKind.TRANSLATED:
        print(f"{event.original} -> {event.translated}", flush=True)
    elif event.kind == EventKind.PROGRESS:
        print(f"  [{event.stage.value}] {event.done}/{event.total}", file=sys.stderr, flush=True)
    elif event.kind == EventKind.ERROR:
        print(f"  [{event.stage.value}] error: {event.error}", file=sys.stderr, flush=True)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    # Imported late so --help does not load the openai client
    from ooxlate.services.translation_service import TranslationService

    service = TranslationService(load_settings(args))
    token = CancellationToken()
    results: list[TranslationResult] = []
    stream = service.translate_file_events(args.input, args.output, token, on_result=results.append)

    interrupted = False
    while True:
        try:
            for event in stream:
                print_event(event)
            break
        except KeyboardInterrupt:
            if interrupted:
                raise
            interrupted = True
            print("Cancelling...", file=sys.stderr, flush=True)
            token.cancel("interrupted")

    result = results[0] if results else None
    if result is None:
        return EXIT_FAILED
    print(result.get_summary(), file=sys.stderr)
    for warning in result.warnings:
        print(f"  warning: {warning}", file=sys.stderr)
    if result.succeeded:
        print(result.output_path)
        return EXIT_OK
    if interrupted or result.status == TranslationStatus.CANCELLED:
        return EXIT_INTERRUPTED
    return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
