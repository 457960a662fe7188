#!/usr/bin/env python3
"""CLI entrypoint for the anime collection metadata enricher."""

from __future__ import annotations

from cli import parse_cli
from config import load_config
from core.run import run
from logger import get_logger


def main(argv: list[str] | None = None) -> int:
    """Run the CLI entrypoint.

    Returns:
        Process exit code.
    """
    print("\nAnimeList Enricher (AniList metadata)\n")
    options = parse_cli(argv)
    if options.command == "import":
        if not options.import_file or not options.import_file.is_file():
            print(f"Not a file: {options.import_file}")
            return 2
    if options.data_dir and options.data_dir.exists() and not options.data_dir.is_dir():
        print(f"Not a directory: {options.data_dir}")
        return 2

    if options.config_path:
        if not options.config_path.exists():
            print(f"Config path not found: {options.config_path}")
            return 2
        if options.config_path.is_dir():
            print(f"Config path must be a file: {options.config_path}")
            return 2

    try:
        cfg = load_config(options.config_path)
    except ValueError as exc:
        print(f"Invalid config: {exc}")
        return 2
    log = get_logger()
    log.set_level(cfg.logging.level)
    log.set_timestamps(cfg.logging.timestamps)
    return run(options, cfg)


if __name__ == "__main__":
    raise SystemExit(main())
