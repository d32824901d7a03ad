"""
podgraph CLI - Command-line interface for the resolution pipeline.

Commands:
- podgraph init-db: Create the database schema
- podgraph enqueue: Load extraction output (JSON / JSONL) into the staging store
- podgraph resolve-entities: Resolve staged entities
- podgraph resolve-relationships: Resolve staged relationships (robust mode)
- podgraph run: Full batch run, entities then relationships
- podgraph stats: Show staging, cache and relationship statistics
- podgraph purge: Delete processed staged rows older than N days
- podgraph seed-obvious: Create well-known relationships missing from the graph
- podgraph serve: Launch the HTTP API
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Tuple


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _is_relationship(record: Dict[str, Any]) -> bool:
    if record.get("kind") == "relationship":
        return True
    return any(k in record for k in ("sourceName", "source_name", "source"))


def load_records(path: Path) -> Tuple[List[Any], List[Any]]:
    """
    Read extraction output into staged rows.

    Accepts a JSON object with ``entities`` / ``relationships`` lists, a JSON
    list of records, or JSONL with one record per line. Records with a source
    name are relationships, everything else is an entity.

    Returns:
        (staged entities, staged relationships)
    """
    from .models import StagedEntity, StagedRelationship

    text = path.read_text(encoding="utf-8")
    if path.suffix == ".jsonl":
        records = [json.loads(line) for line in text.splitlines() if line.strip()]
    else:
        data = json.loads(text)
        if isinstance(data, dict):
            records = [dict(r, kind="entity") for r in data.get("entities", [])]
            records += [dict(r, kind="relationship") for r in data.get("relationships", [])]
        else:
            records = list(data)

    entities, relationships = [], []
    for record in records:
        if _is_relationship(record):
            relationships.append(StagedRelationship.from_dict(record))
        else:
            entities.append(StagedEntity.from_dict(record))
    return entities, relationships


def _open_service(args):
    """Build the service from global options, refusing to run on a bad config."""
    from .resolution_config import load_resolution_config
    from .service import ResolutionService
    from .storage import Database

    config = load_resolution_config(args.config)
    issues = config.validate()
    for issue in issues:
        print(f"[ERROR] {issue}", file=sys.stderr)
    if issues:
        sys.exit(1)

    db = Database(args.db)
    db.init_schema()
    return ResolutionService(db, config)


def cmd_init_db(args) -> None:
    """Handle the init-db command."""
    from .storage import Database

    db = Database(args.db)
    try:
        db.init_schema()
    finally:
        db.close()
    print(f"Database ready at {db.db_path}")


def cmd_enqueue(args) -> None:
    """Handle the enqueue command."""
    path = Path(args.file)
    if not path.exists():
        print(f"Error: file not found: {path}", file=sys.stderr)
        sys.exit(1)

    entities, relationships = load_records(path)
    service = _open_service(args)
    try:
        counts = service.enqueue(entities, relationships)
    finally:
        service.close()
    print(f"Staged {counts['entities']} entities and {counts['relationships']} relationships")


def cmd_resolve_entities(args) -> None:
    """Handle the resolve-entities command."""
    service = _open_service(args)
    try:
        result = asyncio.run(
            service.resolve_entities(
                entity_batch_size=args.batch_size,
                use_hybrid=not args.conservative,
                use_llm=not args.no_llm,
                clear_cache=args.clear_cache,
                max_batches=args.max_batches,
                clear_older_than_days=args.clear_older_than,
            )
        )
    finally:
        service.close()

    if not args.verbose:
        result = {k: v for k, v in result.items() if k != "mergeDetails"}
    _print_json(result)
    if result.get("aborted"):
        sys.exit(2)


def cmd_resolve_relationships(args) -> None:
    """Handle the resolve-relationships command."""
    service = _open_service(args)
    try:
        result = asyncio.run(
            service.resolve_relationships_robust(
                batch_size=args.batch_size,
                strict=args.strict,
                max_batches=args.max_batches,
            )
        )
    finally:
        service.close()

    if not args.verbose:
        result = {k: v for k, v in result.items() if k != "details"}
    _print_json(result)
    if result.get("aborted"):
        sys.exit(2)


def cmd_run(args) -> None:
    """Handle the run command."""
    service = _open_service(args)
    try:
        result = asyncio.run(
            service.run(
                entity_batch_size=args.entity_batch_size,
                relationship_batch_size=args.relationship_batch_size,
                max_batches=args.max_batches,
                use_hybrid=not args.conservative,
                use_llm=not args.no_llm,
                clear_cache=args.clear_cache,
                clear_older_than_days=args.clear_older_than,
            )
        )
    finally:
        service.close()

    if not args.verbose:
        result["entities"].pop("mergeDetails", None)
        result["relationships"].pop("details", None)
    _print_json(result)
    if result.get("aborted"):
        sys.exit(2)


def cmd_stats(args) -> None:
    """Handle the stats command."""
    service = _open_service(args)
    try:
        staging = service.staging_stats()
        relationships = service.relationship_stats()
    finally:
        service.close()

    if args.json:
        _print_json({"staging": staging, "relationships": relationships})
        return

    print("Staging")
    print("=" * 40)
    print(f"  Pending entities:        {staging['pendingEntities']}")
    print(f"  Processed entities:      {staging['processedEntities']}")
    print(f"  Pending relationships:   {staging['pendingRelationships']}")
    print(f"  Processed relationships: {staging['processedRelationships']}")
    print(f"  Unresolved relationships: {staging['unresolvedRelationships']}")
    print("\nConnections")
    print("=" * 40)
    print(f"  Connections:      {relationships['connections']}")
    print(f"  Total strength:   {relationships['totalStrength']}")
    print(f"  Average strength: {relationships['averageStrength']}")
    print(f"  Max strength:     {relationships['maxStrength']}")


def cmd_purge(args) -> None:
    """Handle the purge command."""
    if args.older_than_days < 0:
        print("Error: --older-than-days must not be negative", file=sys.stderr)
        sys.exit(1)

    service = _open_service(args)
    try:
        removed = service.purge(args.older_than_days)
    finally:
        service.close()
    print(
        f"Removed {removed['entitiesRemoved']} staged entities and "
        f"{removed['relationshipsRemoved']} staged relationships"
    )


def cmd_seed_obvious(args) -> None:
    """Handle the seed-obvious command."""
    service = _open_service(args)
    try:
        result = asyncio.run(service.seed_obvious_relationships())
    finally:
        service.close()

    print(f"Created {result['created']} relationships")
    for detail in result["details"]:
        marker = "+" if detail["success"] else "-"
        line = f"  {marker} {detail['description']}"
        if detail.get("error") and args.verbose:
            line += f" ({detail['error']})"
        print(line)


def cmd_serve(args) -> None:
    """Handle the serve command."""
    from .constants import API_KEY
    from .server import serve

    service = _open_service(args)
    try:
        serve(service, host=args.host, port=args.port, api_key=args.api_key or API_KEY)
    finally:
        service.close()


def _add_entity_run_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--conservative",
        action="store_true",
        help="Conservative matching: no LLM, stricter fuzzy threshold",
    )
    parser.add_argument(
        "--no-llm",
        action="store_true",
        help="Disable the LLM matching strategy",
    )
    parser.add_argument(
        "--clear-cache",
        action="store_true",
        help="Flush the entity and LLM caches before running",
    )
    parser.add_argument(
        "--clear-older-than",
        type=int,
        default=None,
        metavar="DAYS",
        help="After the run, purge processed staged rows older than DAYS",
    )


def main() -> None:
    """Main CLI entry point."""
    from .constants import DB_PATH, SERVER_HOST, SERVER_PORT

    parser = argparse.ArgumentParser(
        description="podgraph - Entity and relationship resolution for podcast knowledge graphs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  podgraph init-db                          Create the database schema
  podgraph enqueue extraction.jsonl         Stage extracted mentions
  podgraph resolve-entities --no-llm        Resolve entities without the LLM
  podgraph resolve-relationships --strict   Resolve relationships (strict threshold)
  podgraph run                              Entities, then relationships
  podgraph serve --port 8080                Launch the HTTP API
        """,
    )

    # Global options
    parser.add_argument(
        "--db",
        default=str(DB_PATH),
        help=f"SQLite database path (default: {DB_PATH})",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML resolution config (default: $PODGRAPH_CONFIG)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- init-db command ---
    subparsers.add_parser(
        "init-db",
        help="Create the database schema",
    )

    # --- enqueue command ---
    enqueue_parser = subparsers.add_parser(
        "enqueue",
        help="Load extraction output into the staging store",
    )
    enqueue_parser.add_argument(
        "file",
        help="JSON or JSONL file of extracted entities and relationships",
    )

    # --- resolve-entities command ---
    entities_parser = subparsers.add_parser(
        "resolve-entities",
        help="Resolve staged entities into canonical entities",
    )
    entities_parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Rows per batch (default: ENTITY_BATCH_SIZE)",
    )
    entities_parser.add_argument(
        "--max-batches",
        type=int,
        default=None,
        help="Stop after this many batches (default: MAX_BATCHES)",
    )
    _add_entity_run_options(entities_parser)
    entities_parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Include per-merge details",
    )

    # --- resolve-relationships command ---
    relationships_parser = subparsers.add_parser(
        "resolve-relationships",
        help="Resolve staged relationships into connections",
    )
    relationships_parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Rows per batch (default: RELATIONSHIP_BATCH_SIZE)",
    )
    relationships_parser.add_argument(
        "--max-batches",
        type=int,
        default=None,
        help="Stop after this many batches (default: MAX_BATCHES)",
    )
    relationships_parser.add_argument(
        "--strict",
        action="store_true",
        help="Use the strict acceptance threshold",
    )
    relationships_parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Include per-relationship details",
    )

    # --- run command ---
    run_parser = subparsers.add_parser(
        "run",
        help="Resolve entities then relationships until the inbox is drained",
    )
    run_parser.add_argument("--entity-batch-size", type=int, default=None)
    run_parser.add_argument("--relationship-batch-size", type=int, default=None)
    run_parser.add_argument(
        "--max-batches",
        type=int,
        default=None,
        help="Per-phase batch bound (default: MAX_BATCHES)",
    )
    _add_entity_run_options(run_parser)
    run_parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Include per-row details",
    )

    # --- stats command ---
    stats_parser = subparsers.add_parser(
        "stats",
        help="Show staging and connection statistics",
    )
    stats_parser.add_argument(
        "--json",
        action="store_true",
        help="Print raw JSON",
    )

    # --- purge command ---
    purge_parser = subparsers.add_parser(
        "purge",
        help="Delete processed staged rows older than N days",
    )
    purge_parser.add_argument(
        "--older-than-days",
        type=int,
        required=True,
        help="Age threshold in days",
    )

    # --- seed-obvious command ---
    seed_parser = subparsers.add_parser(
        "seed-obvious",
        help="Create well-known relationships missing from the graph",
    )
    seed_parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show why entries were skipped",
    )

    # --- serve command ---
    serve_parser = subparsers.add_parser(
        "serve",
        help="Launch the HTTP API",
    )
    serve_parser.add_argument(
        "--host",
        default=SERVER_HOST,
        help=f"Bind address (default: {SERVER_HOST})",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=SERVER_PORT,
        help=f"Port to run on (default: {SERVER_PORT})",
    )
    serve_parser.add_argument(
        "--api-key",
        default=None,
        help="Bearer key required by the API (default: $PODGRAPH_API_KEY)",
    )

    # Parse arguments
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    # Dispatch to command handler
    commands = {
        "init-db": cmd_init_db,
        "enqueue": cmd_enqueue,
        "resolve-entities": cmd_resolve_entities,
        "resolve-relationships": cmd_resolve_relationships,
        "run": cmd_run,
        "stats": cmd_stats,
        "purge": cmd_purge,
        "seed-obvious": cmd_seed_obvious,
        "serve": cmd_serve,
    }

    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(1)
    except Exception as e:
        _print_actionable_error(e)
        sys.exit(1)


def _print_actionable_error(e: Exception) -> None:
    """Print actionable error messages for common failure modes."""
    from .utils.errors import LLMUnavailableError, StoreUnavailableError

    msg = str(e)
    msg_lower = msg.lower()

    if isinstance(e, StoreUnavailableError):
        print(
            f"Error: database unavailable ({msg}).\n"
            "  Check --db / PODGRAPH_DB_PATH and that the file is a podgraph database.",
            file=sys.stderr,
        )
    elif "openai_api_key" in msg_lower or "openai" in msg_lower and "key" in msg_lower:
        print(
            "Error: OpenAI API key not configured.\n"
            "  Set OPENAI_API_KEY in your environment or .env file,\n"
            "  or run with --no-llm.",
            file=sys.stderr,
        )
    elif "connection" in msg_lower and "ollama" in msg_lower or "11434" in msg:
        print(
            "Error: Cannot connect to Ollama.\n"
            "  Make sure Ollama is running: ollama serve",
            file=sys.stderr,
        )
    elif isinstance(e, LLMUnavailableError):
        print(
            f"Error: LLM endpoint unavailable ({msg}).\n"
            "  Retry later or run with --no-llm.",
            file=sys.stderr,
        )
    elif isinstance(e, json.JSONDecodeError):
        print(f"Error: input is not valid JSON: {msg}", file=sys.stderr)
    # Generic fallback with the original error
    else:
        print(f"Error: {e}", file=sys.stderr)


if __name__ == "__main__":
    main()
