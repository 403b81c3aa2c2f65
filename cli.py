"""Command-line front end.

Usage:
    python cli.py export --connector zendesk --out ./exports/zendesk
    python cli.py verify --connector freshdesk
    python cli.py migrate --from ./exports/zendesk --to freshdesk [--dry-run] [--limit 10]

Credentials come from the environment (or a .env file in the working
directory). Exit code 0 on success, 1 on a fatal error or when any ticket
failed to migrate.
"""

import argparse
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from connectors import create_connector, list_available_connectors, load_connector_config, load_env_file
from connectors.errors import AuthError, ConfigError, HelpdeskError
from core.observability.logging import configure_logging, get_logger
from migration.engine import MigrationEngine

logger = get_logger("cli")


async def run_export(connector_type: str, out_dir: str) -> int:
    config = load_connector_config(connector_type)
    async with create_connector(config) as connector:
        result = await connector.export(out_dir)
    counts = result.manifest.counts
    print(f"{counts.tickets} tickets exported ({counts.messages} messages) -> {result.out_dir}")
    if result.partial_failures:
        print(f"{len(result.partial_failures)} sections or sub-resources failed; see warnings above")
    return 0


async def run_verify(connector_type: str) -> int:
    config = load_connector_config(connector_type)
    async with create_connector(config) as connector:
        result = await connector.verify()
    if not result.success:
        print(f"✗ {connector_type}: {result.error}")
        return 1
    suffix = f", {result.ticket_count} tickets" if result.ticket_count is not None else ""
    print(f"✓ {connector_type}: {result.detail}{suffix}")
    return 0


async def run_migrate(source_dir: str, target: str, dry_run: bool, limit: Optional[int]) -> int:
    if not Path(source_dir).is_dir():
        raise ConfigError(f"Export directory not found: {source_dir}")

    if dry_run:
        result = await MigrationEngine(source_dir, target).run(dry_run=True, limit=limit)
        print(f"Dry run: {len(result.previews)} tickets would be migrated to {target}")
        return 0

    # Credentials are checked before any ticket is read
    config = load_connector_config(target)
    async with create_connector(config) as connector:
        result = await MigrationEngine(source_dir, target, connector).run(limit=limit)

    if result.nothing_to_migrate:
        print("No tickets to migrate.")
        return 0
    print(
        f"Succeeded: {result.succeeded}  Failed: {result.failed}  "
        f"Failed messages: {result.failed_messages}"
    )
    print(f"Migration map: {result.map_path}")
    return 1 if result.failed else 0


def build_parser() -> argparse.ArgumentParser:
    connectors = list_available_connectors()

    parser = argparse.ArgumentParser(description="Export and migrate helpdesk data")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument("--json-logs", action="store_true", help="Emit structured JSON logs")
    sub = parser.add_subparsers(dest="command", required=True)

    export = sub.add_parser("export", help="Export a helpdesk into canonical JSONL")
    export.add_argument("--connector", required=True, choices=connectors)
    export.add_argument("--out", required=True, help="Export directory")

    verify = sub.add_parser("verify", help="Check connector credentials")
    verify.add_argument("--connector", required=True, choices=connectors)

    migrate = sub.add_parser("migrate", help="Replay an export into another helpdesk")
    migrate.add_argument("--from", dest="source", required=True, help="Export directory")
    migrate.add_argument("--to", dest="target", required=True, choices=connectors)
    migrate.add_argument("--dry-run", action="store_true", help="Preview only, no API calls")
    migrate.add_argument("--limit", type=int, default=None, help="Maximum tickets to migrate (0 = all)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point."""
    args = build_parser().parse_args(argv)

    load_env_file()
    configure_logging(level=getattr(logging, str(args.log_level).upper(), logging.INFO), json_format=args.json_logs)

    try:
        if args.command == "export":
            return asyncio.run(run_export(args.connector, args.out))
        if args.command == "verify":
            return asyncio.run(run_verify(args.connector))
        return asyncio.run(run_migrate(args.source, args.target, args.dry_run, args.limit))
    except (ConfigError, AuthError) as e:
        logger.error(str(e))
        print(f"✗ {e}")
        return 1
    except HelpdeskError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
