#!/usr/bin/env python3
"""
Picqer to SQLite Sync

Mirrors Picqer warehouse entities (receipts, purchase orders, picklists, ...)
into a local SQLite database. Tables are created and extended from the entity
manifests; each entity is fetched incrementally from its last watermark.

Usage:
    picqer-sync sync                      # Incremental sync of every entity
    picqer-sync sync receipts --full      # Full resync of one entity
    picqer-sync sync --days 7             # Re-fetch the last 7 days
    picqer-sync status                    # Watermark and last count per entity
    picqer-sync runs --entity receipts    # Recent sync runs

Exit codes:
    0 - Command completed successfully
    1 - One or more entities failed to sync, or a fatal error occurred
"""

import argparse
import asyncio
import logging
import sys
import traceback
from typing import Optional

from picqer_sync.config import Config, load_config, load_entity_manifests
from picqer_sync.picqer_client import PicqerClient
from picqer_sync.sync.database import DatabaseManager
from picqer_sync.sync.fetcher import PaginatedFetcher
from picqer_sync.sync.orchestrator import SyncOrchestrator, SyncResult
from picqer_sync.sync.progress import ProgressTracker
from picqer_sync.sync.schema_guard import SchemaGuard
from picqer_sync.sync.sync_state import SyncStateStore
from picqer_sync.sync.upsert import UpsertWriter
from picqer_sync.type_mapping import EntityManifest

# Maximum length of error message to display in failure report
MAX_ERROR_MESSAGE_LENGTH = 100


def _log(message: str, logger: Optional[logging.Logger] = None):
    """Log message using logger if provided, otherwise print."""
    if logger:
        logger.info(message)
    else:
        print(message)


def build_orchestrator(client, config: Config, manifests: dict[str, EntityManifest], db_manager) -> SyncOrchestrator:
    """Wire the sync components around one client and one database connection."""
    return SyncOrchestrator(
        manifests=manifests,
        schema_guard=SchemaGuard(db_manager),
        state_store=SyncStateStore(db_manager),
        progress=ProgressTracker(db_manager),
        fetcher=PaginatedFetcher(client, page_size=config.page_size, safety_ceiling=config.safety_ceiling),
        writer=UpsertWriter(db_manager),
        default_lookback_days=config.default_lookback_days,
    )


def _report_results(results: dict[str, SyncResult], logger=None):
    """Report per-entity outcome."""
    for name, result in results.items():
        if result.success:
            line = (
                f"  ✓ {name}: {result.items_processed} records"
                f" ({result.items_failed} failed), {result.children_processed} children"
                f" in {result.duration_ms}ms"
            )
            if result.degraded:
                line += " [degraded: some pages were skipped]"
            _log(line, logger)
        else:
            error = result.error or "unknown error"
            error_preview = error[:MAX_ERROR_MESSAGE_LENGTH] + "..." if len(error) > MAX_ERROR_MESSAGE_LENGTH else error
            _log(f"  ❌ {name}: {error_preview}", logger)


def _print_summary(results: dict[str, SyncResult], logger=None):
    """Print sync summary."""
    _log("\nSync complete!", logger)
    _log("=" * 60, logger)
    _log(f"Entities synced: {sum(1 for r in results.values() if r.success)}/{len(results)}", logger)
    _log(f"Total records written: {sum(r.items_processed for r in results.values())}", logger)
    _log(f"Total records failed: {sum(r.items_failed for r in results.values())}", logger)
    _log("=" * 60, logger)


async def run_sync_workflow(
    client,
    config: Config,
    manifests: dict[str, EntityManifest],
    db_manager,
    entity_types: Optional[list[str]] = None,
    full: bool = False,
    days: Optional[int] = None,
    logger=None,
):
    """
    Core sync workflow - extracted for testability.

    It can be called directly from tests with a fake client.

    Args:
        client: PicqerClient (real or fake for testing)
        config: Configuration object
        manifests: Entity manifests keyed by entity type
        db_manager: DatabaseManager instance
        entity_types: Entity types to sync (default: all manifests)
        full: Ignore watermarks and fetch everything
        days: Fetch records updated in the last N days
        logger: Optional logger for output (if None, uses print)

    Returns:
        dict: Sync results with keys:
            - success (bool): True if every requested entity synced
            - results (dict): entity type -> SyncResult
            - failed_entities (list): List of (entity_type, error_message) tuples
    """
    requested = list(entity_types) if entity_types else list(manifests)
    unknown = [name for name in requested if name not in manifests]
    known = [name for name in requested if name in manifests]

    failed_entities = [(name, "Unknown entity type") for name in unknown]
    for name in unknown:
        _log(f"  ❌ Unknown entity type '{name}', skipping", logger)

    if not known:
        _log("\n❌ No valid entities to sync", logger)
        return {"success": False, "results": {}, "failed_entities": failed_entities}

    mode = "full" if full else (f"last {days} days" if days is not None else "incremental")
    _log(f"\nSyncing {len(known)} entities ({mode})...", logger)

    orchestrator = build_orchestrator(client, config, manifests, db_manager)
    results = await orchestrator.sync_all(known, full=full, days=days)

    failed_entities.extend((name, result.error or "") for name, result in results.items() if not result.success)

    _report_results(results, logger)
    _print_summary(results, logger)

    return {
        "success": len(failed_entities) == 0,
        "results": results,
        "failed_entities": failed_entities,
    }


async def run_sync(
    config: Config,
    entity_types: Optional[list[str]] = None,
    full: bool = False,
    days: Optional[int] = None,
    manifests: Optional[dict[str, EntityManifest]] = None,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """
    Programmatic async entry point for Picqer sync.

    Designed for use from schedulers or other orchestration tools.

    Args:
        config: Configuration object with Picqer credentials and database settings.
                Required fields: api_url, api_key, sqlite_db_path
        entity_types: Entity types to sync (default: every configured entity)
        full: Ignore watermarks and fetch everything
        days: Fetch records updated in the last N days instead of since the watermark
        manifests: Entity manifests. If None, loads from package data (entities.json)
        logger: Optional Python logger for output. If None, prints to stdout.

    Returns:
        bool: True if every entity synced, False if any failed

    Example:
        ```python
        from picqer_sync import run_sync
        from picqer_sync.config import Config

        config = Config(
            api_url="https://example.picqer.com/api/v1",
            api_key="...",
            sqlite_db_path="picqer.db",
        )
        success = await run_sync(config, entity_types=["receipts"])
        ```
    """
    if manifests is None:
        if logger:
            logger.info("Loading entity manifests from package defaults")
        manifests = load_entity_manifests()

    try:
        async with PicqerClient(config) as client:
            with DatabaseManager(config.sqlite_db_path) as db_manager:
                results = await run_sync_workflow(
                    client=client,
                    config=config,
                    manifests=manifests,
                    db_manager=db_manager,
                    entity_types=entity_types,
                    full=full,
                    days=days,
                    logger=logger,
                )
            if logger:
                logger.debug(f"Client stats: {client.stats}")

        return results["success"]

    except Exception:
        if logger:
            logger.exception("Sync workflow failed with exception")
        raise


def show_status(config: Config, manifests: dict[str, EntityManifest], entity_types: Optional[list[str]] = None) -> int:
    """Print watermark, last count and last status per entity. Returns exit code."""
    names = list(entity_types) if entity_types else list(manifests)
    exit_code = 0
    with DatabaseManager(config.sqlite_db_path) as db_manager:
        orchestrator = build_orchestrator(None, config, manifests, db_manager)
        print(f"{'ENTITY':<16} {'LAST SYNC':<34} {'COUNT':>7}  STATUS")
        for name in names:
            if name not in manifests:
                print(f"{name:<16} unknown entity type")
                exit_code = 1
                continue
            status = orchestrator.get_status(name)
            last_sync = status.last_sync.isoformat() if status.last_sync else "never"
            print(f"{name:<16} {last_sync:<34} {status.last_count:>7}  {status.last_status or '-'}")
    return exit_code


def show_runs(
    config: Config,
    entity_type: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 20,
) -> int:
    """Print recent sync runs, newest first. Returns exit code."""
    with DatabaseManager(config.sqlite_db_path) as db_manager:
        SchemaGuard(db_manager).ensure_sync_tables()
        runs = ProgressTracker(db_manager).list_runs(entity_type=entity_type, status=status, limit=limit)

    if not runs:
        print("No sync runs recorded")
        return 0

    for run in runs:
        started = run.started_at.isoformat() if run.started_at else "-"
        duration = f"{run.duration_seconds:.1f}s" if run.duration_seconds is not None else "-"
        line = f"{started}  {run.entity_type:<16} {run.status:<12} {run.item_count:>7} items  {duration:>8}"
        if run.items_failed:
            line += f"  {run.items_failed} failed"
        if run.degraded:
            line += "  degraded"
        if run.error_message:
            line += f"  {run.error_message[:MAX_ERROR_MESSAGE_LENGTH]}"
        print(line)
    return 0


async def async_main(entity_types=None, full=False, days=None, env_file=None, entities_config=None):
    """
    CLI entry point for the sync command - wraps run_sync() with CLI-specific concerns.

    Args:
        entity_types: Entity types to sync (default: all)
        full: Ignore watermarks and fetch everything
        days: Fetch records updated in the last N days
        env_file: Path to .env file (default: .env in working dir or system env vars)
        entities_config: Path to entities config file (default: package data)
    """
    print("=" * 60)
    print("PICQER TO SQLITE SYNC")
    print("=" * 60)

    try:
        print("\n[1/2] Loading configuration...")
        config = load_config(env_file=env_file)
        manifests = load_entity_manifests(path=entities_config)
        print(f"✓ Configuration loaded ({len(manifests)} entities, database: {config.sqlite_db_path})")

        print("\n[2/2] Running sync workflow...")

        console_logger = logging.getLogger("sync")
        console_logger.setLevel(logging.INFO)
        if not console_logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(message)s"))
            console_logger.addHandler(handler)

        success = await run_sync(
            config=config,
            entity_types=entity_types,
            full=full,
            days=days,
            manifests=manifests,
            logger=console_logger,
        )

        if success:
            print("\n✓ Sync completed successfully")
            sys.exit(0)
        else:
            print("\n❌ Sync failed - check logs for details")
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(1)
    except Exception as e:
        print(f"\n❌ SYNC FAILED: {e}")
        traceback.print_exc()
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync Picqer entities to SQLite database")
    parser.add_argument(
        "--env-file",
        help="Path to .env file (default: .env in working dir or system env vars)",
    )
    parser.add_argument(
        "--entities-config",
        help="Path to entities config file (default: package data)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Sync entities from Picqer")
    sync_parser.add_argument("entities", nargs="*", help="Entity types to sync (default: all)")
    window = sync_parser.add_mutually_exclusive_group()
    window.add_argument("--full", action="store_true", help="Ignore the watermark and fetch everything")
    window.add_argument("--days", type=int, help="Fetch records updated in the last N days")

    status_parser = subparsers.add_parser("status", help="Show last sync per entity")
    status_parser.add_argument("entities", nargs="*", help="Entity types (default: all)")

    runs_parser = subparsers.add_parser("runs", help="Show recent sync runs")
    runs_parser.add_argument("--entity", help="Only runs of this entity type")
    runs_parser.add_argument("--status", choices=["in_progress", "completed", "failed"], help="Only runs with this status")
    runs_parser.add_argument("--limit", type=int, default=20, help="Maximum number of runs (default: 20)")

    return parser


def main(argv=None):
    """CLI entry point for picqer-sync command."""
    args = build_parser().parse_args(argv)

    if args.command == "sync":
        asyncio.run(
            async_main(
                entity_types=args.entities or None,
                full=args.full,
                days=args.days,
                env_file=args.env_file,
                entities_config=args.entities_config,
            )
        )
        return

    try:
        config = load_config(env_file=args.env_file)
        if args.command == "status":
            manifests = load_entity_manifests(path=args.entities_config)
            exit_code = show_status(config, manifests, args.entities or None)
        else:
            exit_code = show_runs(config, entity_type=args.entity, status=args.status, limit=args.limit)
    except Exception as e:
        print(f"\n❌ {args.command.upper()} FAILED: {e}")
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
