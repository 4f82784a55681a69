from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import traceback
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import AppConfig, load_config
from .library import ContentLibrary, FileLibrarySource, LibraryLoadError
from .metadata import OmdbResolver, ResolverStatistics
from .models import MatchRequest
from .orchestrator import MatchingOrchestrator
from .streams import build_streams
from .utils import ensure_directory, load_yaml_file
from .validation import ValidationIssue, validate_config_data

LOGGER = logging.getLogger(__name__)
CONSOLE = Console()
LOG_LEVEL_CHOICES = ["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]
LOG_RECORD_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_CONFIG_PATH = "/config/iptv-matcher.yaml"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_env_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return None


def _env_bool(name: str) -> Optional[bool]:
    return _parse_env_bool(os.getenv(name))


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    arguments = list(sys.argv[1:] if argv is None else argv)
    if arguments and arguments[0] == "validate-config":
        return _parse_validate_args(arguments[1:])
    if arguments and arguments[0] == "match":
        arguments = arguments[1:]
    return _parse_match_args(arguments)


def _config_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(os.getenv("CONFIG_PATH", DEFAULT_CONFIG_PATH)),
        help="Path to the YAML configuration file",
    )


def _parse_match_args(arguments: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Match a catalog identifier against the IPTV library")
    parser.add_argument("identifier", help="Catalog id such as tt1234567 or tt1234567:1:2")
    _config_argument(parser)
    parser.add_argument("--library", type=Path, help="Library YAML file (overrides library.path)")
    parser.add_argument("--json", action="store_true", help="Print stream descriptors as JSON")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging on the console")
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVEL_CHOICES,
        help="Log level for the persistent log file (default INFO, or DEBUG when --verbose)",
    )
    parser.add_argument(
        "--console-level",
        choices=LOG_LEVEL_CHOICES,
        help="Log level for console output (defaults to --log-level)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Path to the persistent log file (default ./iptv-matcher.log or $LOG_FILE)",
    )
    namespace = parser.parse_args(arguments)
    namespace.command = "match"
    return namespace


def _parse_validate_args(arguments: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate iptv-matcher configuration")
    _config_argument(parser)
    parser.add_argument(
        "--show-trace",
        action="store_true",
        help="Print exception tracebacks when validation fails",
    )
    namespace = parser.parse_args(arguments)
    namespace.command = "validate-config"
    return namespace


def _resolve_previous_log_path(log_file: Path) -> Path:
    if log_file.suffix:
        return log_file.with_suffix(f"{log_file.suffix}.previous")
    return log_file.with_name(f"{log_file.name}.previous")


def _resolve_level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def configure_logging(log_level_name: str, log_file: Path, console_level_name: Optional[str] = None) -> None:
    log_level = _resolve_level(log_level_name)
    console_level = _resolve_level(console_level_name or log_level_name)

    log_file = log_file.resolve()
    ensure_directory(log_file.parent)

    previous_log = _resolve_previous_log_path(log_file)
    if previous_log.exists():
        previous_log.unlink()
    rotated = False
    if log_file.exists():
        log_file.replace(previous_log)
        rotated = True

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_RECORD_FORMAT, LOG_DATE_FORMAT)

    file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)

    plain_console_env = _env_bool("PLAIN_CONSOLE_LOGS")
    rich_console_env = _env_bool("RICH_CONSOLE_LOGS")
    if plain_console_env is True:
        use_rich_console = False
    elif rich_console_env is True:
        use_rich_console = True
    else:
        use_rich_console = CONSOLE.is_terminal

    if use_rich_console:
        console_handler: logging.Handler = RichHandler(console=CONSOLE, rich_tracebacks=True, markup=False)
    else:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
    console_handler.setLevel(console_level)

    root_logger.setLevel(min(log_level, console_level))
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    logging.captureWarnings(True)

    if rotated:
        LOGGER.debug("Rotated previous log to %s", previous_log)


def _resolve_log_settings(args: argparse.Namespace) -> Tuple[str, Path, Optional[str]]:
    verbose = args.verbose
    env_verbose = _env_bool("VERBOSE")
    if not verbose and env_verbose is not None:
        verbose = env_verbose

    log_file_env = os.getenv("LOG_FILE")
    if args.log_file:
        log_file = args.log_file
    elif log_file_env:
        log_file = Path(log_file_env)
    else:
        log_file = Path("iptv-matcher.log")

    log_level = args.log_level or os.getenv("LOG_LEVEL") or ("DEBUG" if verbose else "INFO")
    console_level: Optional[str]
    if args.console_level:
        console_level = args.console_level
    elif os.getenv("CONSOLE_LEVEL"):
        console_level = os.getenv("CONSOLE_LEVEL")
    elif verbose:
        console_level = "DEBUG"
    else:
        console_level = None
    return log_level.upper(), log_file, console_level.upper() if console_level else None


def apply_runtime_overrides(config: AppConfig, args: argparse.Namespace) -> None:
    api_key_override = os.getenv("OMDB_API_KEY")
    if api_key_override is not None and api_key_override.strip():
        config.resolver.omdb_api_key = api_key_override.strip()

    library_override = getattr(args, "library", None) or os.getenv("LIBRARY_PATH")
    if library_override:
        config.library.path = Path(library_override).expanduser()


def build_orchestrator(config: AppConfig) -> MatchingOrchestrator:
    if config.library.path is None:
        raise ValueError("No library file configured; set library.path, --library or LIBRARY_PATH")
    source = FileLibrarySource(config.library.path)
    library = ContentLibrary(loader=source.load)
    resolver = OmdbResolver(config.resolver)
    return MatchingOrchestrator(
        library,
        resolver,
        source.fetch_episodes,
        settings=config.matching,
    )


def _log_resolver_summary(stats: ResolverStatistics) -> None:
    if not stats.has_activity():
        return
    snapshot = stats.snapshot()
    LOGGER.info(
        "OMDb lookups | Hits: %d | Misses: %d | Requests: %d | Not Found: %d | Failures: %d",
        snapshot["cache_hits"],
        snapshot["cache_misses"],
        snapshot["network_requests"],
        snapshot["not_found"],
        snapshot["failures"],
    )


def _render_results(request: MatchRequest, results: Sequence[Any]) -> None:
    if not results:
        CONSOLE.print(f"[yellow]No library entries matched {request.cache_key}[/yellow]")
        return

    table = Table(title=f"Matches for {request.cache_key}")
    table.add_column("#", justify="right")
    if request.is_episode:
        table.add_column("Series")
        table.add_column("Episode")
        table.add_column("Series score", justify="right")
    else:
        table.add_column("Title")
        table.add_column("Score", justify="right")
        table.add_column("Year adj.", justify="right")
    table.add_column("Quality")
    table.add_column("Source")

    for position, item in enumerate(results, start=1):
        if request.is_episode:
            table.add_row(
                str(position),
                item.series_name,
                item.episode.title,
                f"{item.series_score:.2f}",
                item.quality.label,
                item.source.label,
            )
        else:
            table.add_row(
                str(position),
                item.title,
                f"{item.final_score:.2f}",
                f"{item.year_adjustment:+.2f}",
                item.quality.label,
                item.source.label,
            )
    CONSOLE.print(table)


def run_match(args: argparse.Namespace) -> int:
    log_level, log_file, console_level = _resolve_log_settings(args)
    configure_logging(log_level, log_file, console_level)

    if not args.config.exists():
        LOGGER.error("Configuration file %s does not exist", args.config)
        return 1

    try:
        config = load_config(args.config)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Failed to load configuration: %s", exc)
        return 1

    apply_runtime_overrides(config, args)

    if not MatchingOrchestrator.handles(args.identifier):
        LOGGER.warning("Identifier %r does not look like a catalog id (tt…)", args.identifier)

    try:
        orchestrator = build_orchestrator(config)
    except ValueError as exc:
        LOGGER.error("%s", exc)
        return 1

    request = MatchingOrchestrator.parse_request(args.identifier)
    try:
        orchestrator.library.refresh()
    except LibraryLoadError as exc:
        LOGGER.error("Failed to load library: %s", exc)
        return 1
    results = orchestrator.resolve(args.identifier)
    if isinstance(orchestrator.resolver, OmdbResolver):
        _log_resolver_summary(orchestrator.resolver.stats)

    if args.json:
        CONSOLE.print_json(json.dumps({"streams": build_streams(request, results)}, ensure_ascii=False))
    else:
        _render_results(request, results)
    return 0


def run_validate_config(args: argparse.Namespace) -> int:
    config_path: Path = args.config
    if not config_path.exists():
        CONSOLE.print(f"[bold red]Configuration file not found: {config_path}[/bold red]")
        return 1

    try:
        data = load_yaml_file(config_path)
    except Exception as exc:  # noqa: BLE001
        CONSOLE.print(f"[bold red]Failed to load configuration: {exc}[/bold red]")
        if getattr(args, "show_trace", False):
            CONSOLE.print(traceback.format_exc(), style="dim")
        return 1

    report = validate_config_data(data)

    if report.is_valid:
        try:
            load_config(config_path)
        except Exception as exc:  # noqa: BLE001
            report.errors.append(
                ValidationIssue(
                    severity="error",
                    path="<load_config>",
                    message=f"{type(exc).__name__}: {exc}",
                    code="load-config",
                )
            )
            if getattr(args, "show_trace", False):
                CONSOLE.print(traceback.format_exc(), style="dim")

    if report.errors:
        CONSOLE.print(f"[bold red]{len(report.errors)} validation error(s) detected:[/bold red]")
        for issue in report.errors:
            CONSOLE.print(f"  • [bold]{issue.path}[/bold]: {issue.message} ({issue.code})")
    else:
        CONSOLE.print("[bold green]Configuration passed validation.[/bold green]")

    if report.warnings:
        CONSOLE.print(f"[yellow]{len(report.warnings)} warning(s):[/yellow]")
        for issue in report.warnings:
            CONSOLE.print(f"  • [bold]{issue.path}[/bold]: {issue.message} ({issue.code})")

    return 0 if report.is_valid else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    if getattr(args, "command", "match") == "validate-config":
        return run_validate_config(args)
    return run_match(args)


if __name__ == "__main__":
    sys.exit(main())
