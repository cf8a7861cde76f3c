"""
Region maintenance command line.

USAGE:
  region-engine [--database-url URL] COMMAND [OPTIONS]

COMMANDS:
  show REGION_ID                 Print the region aggregate
  update REGION_ID --json BODY   Apply a partial update (fields plus optional
                                 fulfillment_providers / payment_providers / countries)
  reconcile [--dry-run]          Merge duplicate regions sharing name and currency
  repair                         Backfill default provider links on every region
  repair-shipping                Fill missing provider / price type / profile on shipping options
  status                         Per-region counts and orphaned dependents

Output is JSON on stdout. Exit code 1 on errors or when any donor failed to merge.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from region_engine.config.settings import settings
from region_engine.domain.exceptions import RegionEngineError, ValidationError
from region_engine.domain.region_changes import field_changes_from_payload, replacement_lists_from_payload
from region_engine.interfaces.region_consistency_service import RegionConsistencyService
from region_engine.services.region_consistency_service import StandardRegionConsistencyService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="region-engine", description="Region aggregate maintenance")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    show = sub.add_parser("show", help="Print a region aggregate")
    show.add_argument("region_id")

    update = sub.add_parser("update", help="Apply a partial region update")
    update.add_argument("region_id")
    update.add_argument("--json", dest="body", required=True, help="JSON object with the changes")

    reconcile = sub.add_parser("reconcile", help="Merge duplicate regions")
    reconcile.add_argument("--dry-run", action="store_true", help="Report the merge plan without changing anything")

    sub.add_parser("repair", help="Backfill default provider links")
    sub.add_parser("repair-shipping", help="Fill missing shipping option defaults")
    sub.add_parser("status", help="Per-region counts and orphaned dependents")
    return parser


def run(args: argparse.Namespace, service: RegionConsistencyService) -> int:
    if args.command == "show":
        _print(service.get_region_aggregate(args.region_id).to_dict())
        return 0

    if args.command == "update":
        try:
            body = json.loads(args.body)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"body is not valid JSON: {exc}", "update_region", args.region_id)
        if not isinstance(body, dict):
            raise ValidationError("body must be a JSON object", "update_region", args.region_id)
        aggregate = service.update_region_aggregate(
            args.region_id,
            field_changes_from_payload(body),
            replacement_lists_from_payload(body),
        )
        _print(aggregate.to_dict())
        return 0

    if args.command == "reconcile":
        report = service.reconcile_duplicate_regions(dry_run=args.dry_run)
        _print(report.to_dict())
        return 0 if report.ok else 1

    if args.command == "repair":
        _print(service.repair_region_provider_associations().to_dict())
        return 0

    if args.command == "repair-shipping":
        _print(service.repair_shipping_option_defaults().to_dict())
        return 0

    if args.command == "status":
        _print(service.get_region_status_report().to_dict())
        return 0

    raise ValueError(f"unknown command {args.command}")


def main(argv: Optional[List[str]] = None, service: Optional[RegionConsistencyService] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")

    if service is None:
        config = settings
        if args.database_url:
            config = settings.model_copy(update={"DATABASE_URL": args.database_url})
        service = StandardRegionConsistencyService.from_settings(config)

    try:
        return run(args, service)
    except RegionEngineError as exc:
        logger.error(f"{args.command} failed: {exc}")
        _print(exc.to_dict())
        return 1


def _print(payload) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


if __name__ == "__main__":
    sys.exit(main())
