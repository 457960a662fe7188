"""Command-line parsing helpers."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path


COMMANDS = ("sync", "refresh", "import", "clear-cache", "unresolved", "resolve")


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to a config.json file")
    parser.add_argument("--data-dir", help="Directory holding the collection and caches")


@dataclass
class RunOptions:
    """Parsed CLI options shared by every command."""

    command: str
    config_path: Path | None
    data_dir: Path | None
    import_file: Path | None = None
    item_id: int | None = None
    pick: int | None = None


def _build_parser(command: str) -> argparse.ArgumentParser:
    descriptions = {
        "sync": "Fetch missing AniList metadata for the local collection.",
        "refresh": "Queue newly missing items first, clear any pause, then fetch.",
        "import": "Replace the collection from a JSON file, then fetch missing metadata.",
        "clear-cache": "Drop all fetched metadata and fetch everything again.",
        "unresolved": "List items AniList could not match automatically.",
        "resolve": "Match an unresolved item by searching AniList for its title.",
    }
    parser = argparse.ArgumentParser(prog=f"animelist-enricher {command}", description=descriptions[command])
    _add_common_args(parser)
    if command == "import":
        parser.add_argument("file", help="JSON list of collection items")
    if command == "resolve":
        parser.add_argument("item_id", type=int, help="MyAnimeList id of the unresolved item")
        parser.add_argument("--pick", type=int, help="1-based candidate number to apply without prompting")
    return parser


def resolve_config_path(args: argparse.Namespace) -> Path | None:
    """Resolve the config path from CLI arguments.

    Args:
        args: Parsed argparse namespace.

    Returns:
        Resolved config path, or None when no config file is available.
    """
    if args.config:
        return Path(args.config).expanduser().resolve()
    default_file = Path.cwd() / "config.json"
    if default_file.exists():
        return default_file.resolve()
    return None


def parse_cli(argv: list[str] | None = None) -> RunOptions:
    """Parse command-line arguments into RunOptions.

    The command defaults to ``sync`` when the first argument is not one.
    """
    args = sys.argv[1:] if argv is None else list(argv)
    command = "sync"
    if args and args[0] in COMMANDS:
        command = args.pop(0)
    ns = _build_parser(command).parse_args(args)
    return RunOptions(
        command=command,
        config_path=resolve_config_path(ns),
        data_dir=Path(ns.data_dir).expanduser().resolve() if ns.data_dir else None,
        import_file=Path(ns.file).expanduser().resolve() if command == "import" else None,
        item_id=ns.item_id if command == "resolve" else None,
        pick=ns.pick if command == "resolve" else None,
    )
