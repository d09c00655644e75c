#!/usr/bin/env python3
"""
Registry maintenance CLI for EthicCheck

Thin batch callers of the duplicate detector and import guard.

Usage:
    python registry_maintenance.py dedupe-evidence [--dry-run]
    python registry_maintenance.py backfill-tickers [--dry-run]
    python registry_maintenance.py find-duplicates [--json]
    python registry_maintenance.py merge SURVIVOR_ID DUPLICATE_ID
"""

import sys
import json
import argparse
import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from config_manager import ConfigManager, ConfigurationError, setup_logging
from registry.connection import DatabaseSettings, init_db, close_db
from registry.duplicate_detector import DuplicateDetector
from registry.import_guard import ImportGuard
from registry.repositories import StorageError

logger = logging.getLogger(__name__)


def dedupe_evidence(session, config, args) -> int:
    summary = DuplicateDetector(session, config).sweep_duplicate_evidence(dry_run=args.dry_run)
    verb = "would be deleted" if args.dry_run else "deleted"
    print(f"Companies processed: {summary.companies_processed}")
    print(f"Companies with duplicate evidence: {summary.companies_with_duplicates}")
    print(f"Evidence records {verb}: {summary.deleted}")
    for name, count in summary.details.items():
        print(f"- {name}: {count}")
    return 0


def backfill_tickers(session, config, args) -> int:
    summary = ImportGuard(session, config).backfill_tickers(dry_run=args.dry_run)
    print(f"Companies without ticker: {summary.examined}")
    print(f"No reference ticker: {summary.skipped}")
    for name, ticker in summary.assignments.items():
        print(f"{'[dry-run] ' if args.dry_run else ''}{name} -> {ticker}")
    for name, errors in summary.failures.items():
        print(f"Rejected {name}: {'; '.join(errors)}")
    return 0


def find_duplicates(session, config, args) -> int:
    pairs = DuplicateDetector(session, config).find_duplicate_company_candidates()
    if args.json:
        print(json.dumps([pair.to_dict() for pair in pairs], indent=2))
        return 0

    print(f"Potential duplicate pairs: {len(pairs)}")
    for pair in pairs:
        for side in (pair.first, pair.second):
            print(f"  {side.company_id}  {side.name} ({side.ticker or '-'}) "
                  f"evidence={side.evidence_count} aliases={side.alias_count}")
        print()
    return 0


def merge(session, config, args) -> int:
    result = ImportGuard(session, config).merge_companies(args.survivor_id, args.duplicate_id)
    if not result.success:
        for error in result.errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    print(f"Merged into {result.survivor_id}")
    print(f"Evidence moved: {result.moved_evidence}, dropped as duplicate: {result.dropped_evidence}")
    print(f"Financials moved: {result.moved_financials}, aliases added: {result.added_aliases}")
    for error in result.errors:
        print(f"Warning: {error}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="EthicCheck registry maintenance")
    parser.add_argument("--config", "-c", default=None, help="Path to config.yaml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser("dedupe-evidence", help="Delete duplicate evidence across the registry")
    p.add_argument("--dry-run", action="store_true", help="Report without deleting")
    p.set_defaults(handler=dedupe_evidence)

    p = subparsers.add_parser("backfill-tickers", help="Assign reference tickers to companies without one")
    p.add_argument("--dry-run", action="store_true", help="Report without writing")
    p.set_defaults(handler=backfill_tickers)

    p = subparsers.add_parser("find-duplicates", help="List potential duplicate companies")
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.set_defaults(handler=find_duplicates)

    p = subparsers.add_parser("merge", help="Merge a duplicate company into a survivor")
    p.add_argument("survivor_id", type=UUID, help="Company that remains")
    p.add_argument("duplicate_id", type=UUID, help="Company that is folded in and deleted")
    p.set_defaults(handler=merge)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = ConfigManager(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config, verbose=args.verbose)

    try:
        provider = init_db(DatabaseSettings.from_config(config), echo=config.database.echo)
        with provider.session_scope() as session:
            return args.handler(session, config, args)
    except (StorageError, SQLAlchemyError) as e:
        logger.error(f"Maintenance command failed: {e}")
        return 1
    finally:
        close_db()


if __name__ == "__main__":
    sys.exit(main())
