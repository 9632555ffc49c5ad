#!/usr/bin/env python3
"""
Run the agent pipelines from the command line.

    run_agents.py daily   [--reference-date YYYY-MM-DD] [--daily-only]
    run_agents.py monthly [--reference-date YYYY-MM-DD] [--account ID] [--force]
    run_agents.py audit   [--reference-date YYYY-MM-DD] [--start YYYY-MM-DD --end YYYY-MM-DD]

Prints the JSON report; exits 1 when any run failed.
"""

import argparse
import asyncio
import json
import sys
from datetime import date
from pathlib import Path
from uuid import UUID

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.agents import jobs
from src.core.agents.audit import AuditStatus


def parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date: {value} (expected YYYY-MM-DD)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the agent pipelines")
    commands = parser.add_subparsers(dest="command", required=True)

    daily = commands.add_parser("daily", help="Daily run for all accounts (monthly too when due)")
    daily.add_argument("--daily-only", action="store_true", help="Skip the monthly pipeline")

    monthly = commands.add_parser("monthly", help="Monthly pipeline")
    monthly.add_argument("--account", type=UUID, help="Only this account id")
    monthly.add_argument("--force", action="store_true", help="Bypass the idempotency guard (with --account)")

    audit = commands.add_parser("audit", help="System audit of a period")
    audit.add_argument("--start", type=parse_date)
    audit.add_argument("--end", type=parse_date)

    for sub in (daily, monthly, audit):
        sub.add_argument("--reference-date", type=parse_date, help="Treat this date as today")

    return parser


async def run(args: argparse.Namespace) -> tuple[dict, bool]:
    """Return the report and whether everything succeeded."""
    if args.command == "daily":
        report = await jobs.run_batch(args.reference_date, include_monthly=not args.daily_only)
        return report.as_dict(), report.counts["failed"] == 0

    if args.command == "monthly":
        if args.account:
            outcome = await jobs.run_monthly_for(args.account, args.reference_date, force=args.force)
            if outcome is None:
                return {"error": f"Account {args.account} not found"}, False
            return outcome.as_dict(), outcome.status.value != "failed"
        report = await jobs.run_batch(args.reference_date, include_daily=False)
        return report.as_dict(), report.counts["failed"] == 0

    report = await jobs.run_audit(args.reference_date, args.start, args.end)
    return report.as_dict(), report.status != AuditStatus.FAILED


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    if args.command == "audit" and (args.start is None) != (args.end is None):
        parser.error("--start and --end must be given together")

    report, ok = asyncio.run(run(args))
    print(json.dumps(report, indent=2, default=str))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
