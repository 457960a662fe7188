"""Command pipelines that drive the enrichment engine from the CLI."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List

from anilist.client import AniListClient, RateLimitError
from cli import RunOptions
from config import Config
from core.backoff import BackoffPolicy
from core.engine import EnrichmentEngine, UnknownItemError
from core.fetching import MetadataFetcher
from core.models import TrackedItem
from core.progress import format_progress
from core.prompts import prompt_choice
from core.scheduling import Scheduler
from core.storage import JsonStore
from logger import get_logger

log = get_logger()


@dataclass
class RunSummary:
    """Collection state at the end of a sync."""

    tracked: int
    complete: int
    unresolved: int
    stopped: bool


def resolve_data_dir(options: RunOptions, cfg: Config) -> Path:
    """Pick the data directory: CLI flag first, then config."""
    if options.data_dir:
        return options.data_dir
    return Path(cfg.storage.data_dir).expanduser()


def build_fetcher(cfg: Config) -> AniListClient:
    return AniListClient(
        api_url=cfg.anilist.api_url,
        timeout=cfg.anilist.timeout_seconds,
        search_limit=cfg.anilist.search_limit,
        max_description_length=cfg.anilist.max_description_length,
    )


def build_engine(
    cfg: Config,
    data_dir: Path,
    fetcher: MetadataFetcher | None = None,
    scheduler: Scheduler | None = None,
) -> EnrichmentEngine:
    """Wire storage, fetcher and pacing policy into an engine."""
    return EnrichmentEngine(
        store=JsonStore(data_dir),
        fetcher=fetcher or build_fetcher(cfg),
        scheduler=scheduler,
        policy=BackoffPolicy.from_config(cfg.queue),
    )


def load_import_file(path: Path) -> List[TrackedItem] | None:
    """Read a JSON list of collection items.

    Returns:
        Parsed items, or None when the file is unreadable or not a list.
    """
    try:
        raw: Any = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        log.error(f"Could not read import file {path}: {exc}")
        return None
    if isinstance(raw, dict):
        raw = raw.get("items") or raw.get("animeList")
    if not isinstance(raw, list):
        log.error(f"Import file must contain a list of items: {path}")
        return None
    items: List[TrackedItem] = []
    for idx, entry in enumerate(raw, 1):
        if not isinstance(entry, dict):
            log.warn(f"⚠️ Skipping import entry {idx}: not an object")
            continue
        try:
            items.append(TrackedItem.from_dict(entry))
        except (TypeError, ValueError) as exc:
            log.warn(f"⚠️ Skipping import entry {idx}: {exc}")
    return items


def summarize(engine: EnrichmentEngine, stopped: bool) -> RunSummary:
    items = engine.collection.items()
    return RunSummary(
        tracked=len(items),
        complete=sum(1 for item in items if item.has_complete_metadata),
        unresolved=len(engine.unresolved_ids),
        stopped=stopped,
    )


def drain(engine: EnrichmentEngine, poll_seconds: float = 1.0) -> bool:
    """Block until the engine is idle; Ctrl-C stops it.

    Returns:
        True when the queue drained, False when the user stopped it.
    """
    last_line = ""
    try:
        while not engine.wait_until_idle(timeout=poll_seconds):
            rate_limit = engine.rate_limit_state
            network = engine.network_error_state
            if rate_limit.active:
                line = f"Rate limited: resuming in {rate_limit.seconds_remaining}s"
            elif network.active:
                line = f"Network error: retrying in {network.seconds_remaining}s"
            else:
                line = format_progress(engine.progress)
            if line != last_line:
                log.debug(f"  {line}")
                last_line = line
    except KeyboardInterrupt:
        engine.stop()
        return False
    finally:
        engine.shutdown()
    return True


def finalize_run(summary: RunSummary) -> int:
    """Log final summary and return exit code."""
    log.info("\nDone.")
    log.info(f"  Tracked:    {summary.tracked}")
    log.info(f"  Complete:   {summary.complete}")
    log.info(f"  Unresolved: {summary.unresolved}")
    if summary.unresolved:
        log.info("  (run the 'unresolved' and 'resolve' commands to match them manually)")
    if summary.stopped:
        log.info("  (stopped before the queue drained)")
        return 1
    return 0


def run_sync(options: RunOptions, cfg: Config, engine: EnrichmentEngine) -> int:
    """Load the collection, apply the command and fetch until the queue drains."""
    if options.command == "import":
        if options.import_file is None or not options.import_file.is_file():
            log.info(f"Not a file: {options.import_file}")
            return 2
        items = load_import_file(options.import_file)
        if items is None:
            return 2
        engine.load(start=False)
        engine.import_replaced(items)
        log.info(f"Imported {len(items)} item(s).")
    else:
        found = engine.load()
        if not found:
            log.info("No collection found. Use the 'import' command first.")
            engine.shutdown()
            return 2
        if options.command == "refresh":
            engine.refresh()
        elif options.command == "clear-cache":
            engine.clear_cache()

    log.info(f"Tracking {len(engine.collection)} item(s); {len(engine.queue)} queued for metadata.")
    drained = drain(engine)
    return finalize_run(summarize(engine, stopped=not drained))


def list_unresolved(engine: EnrichmentEngine) -> int:
    engine.load(start=False)
    ids = sorted(engine.unresolved_ids)
    if not ids:
        log.info("No unresolved items.")
        return 0
    log.info(f"{len(ids)} unresolved item(s):")
    for item_id in ids:
        item = engine.collection.get(item_id)
        title = item.title if item else "(no longer tracked)"
        log.info(f"  {item_id}: {title}")
    return 0


def run_resolve(options: RunOptions, cfg: Config, engine: EnrichmentEngine) -> int:
    """Search candidates for one item and apply the chosen match."""
    engine.load(start=False)
    item_id = int(options.item_id or 0)
    try:
        candidates = engine.candidates_for(item_id, limit=cfg.anilist.search_limit, min_score=cfg.anilist.min_score)
    except UnknownItemError:
        log.info(f"Item not found in collection: {item_id}")
        return 2
    except RateLimitError as exc:
        log.info(f"AniList rate limit hit; try again in {exc.retry_after or 60} seconds.")
        engine.shutdown()
        return 1
    except Exception as exc:
        log.info(f"❌ Search failed: {exc}")
        return 1
    if item_id not in engine.unresolved_ids:
        log.info(f"Note: item {item_id} is not in the unresolved list.")
    if not candidates:
        log.info("No matches found.")
        return 1

    for idx, candidate in enumerate(candidates, 1):
        meta = candidate.metadata
        year = meta.start_date[:4] if meta.start_date else "?"
        log.info(f"  {idx}. {meta.title} ({year}, {meta.format or '?'}) MAL {meta.mal_id} score={candidate.score:.1f}")

    choice = options.pick
    if choice is None:
        choice = prompt_choice("Choose a match", len(candidates))
        if choice is None:
            log.info("Cancelled.")
            return 0
    if not 1 <= choice <= len(candidates):
        log.info(f"Invalid choice: {choice}")
        return 2

    engine.resolve(item_id, candidates[choice - 1])
    engine.shutdown()
    return 0


def run(options: RunOptions, cfg: Config, fetcher: MetadataFetcher | None = None) -> int:
    """Execute a CLI command.

    Args:
        options: Parsed run options.
        cfg: Loaded configuration.
        fetcher: Optional metadata source; defaults to the AniList client.

    Returns:
        Process exit code.
    """
    data_dir = resolve_data_dir(options, cfg)
    engine = build_engine(cfg, data_dir, fetcher=fetcher)
    if options.command == "unresolved":
        return list_unresolved(engine)
    if options.command == "resolve":
        return run_resolve(options, cfg, engine)
    return run_sync(options, cfg, engine)
