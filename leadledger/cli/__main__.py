"""
leadledger CLI - scheduled jobs and operator commands.

Usage:
    leadledger credits reset-weekly [--force] [--json]
    leadledger credits balance CONTRACTOR [--json]
    leadledger commission sweep [--json]
    leadledger commission remind [--json]
    leadledger commission list [--status STATUS] [--json]
    leadledger jobs auto-confirm [--json]

Every command accepts --db PATH (default: $LEADLEDGER_DATA_DIR/leadledger.db).
"""

import argparse
import logging
import sys

from leadledger.cli.commands import cmd_commission, cmd_credits, cmd_jobs
from leadledger.commission.models import CommissionStatus
from leadledger.errors import MarketError
from leadledger.logging_config import setup_leadledger_logging
from leadledger.market import Marketplace

logger = logging.getLogger(__name__)


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--db", help="Path to the SQLite database", default=None)
    parser.add_argument("--json", "-j", action="store_true", help="Output as JSON")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="leadledger",
        description="Lead access and commission settlement engine",
    )
    parser.add_argument(
        "--log-level", default="INFO", help="Log level for the ledger log file (default: INFO)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # credits
    p_credits = subparsers.add_parser("credits", help="Contractor lead credits")
    credits_sub = p_credits.add_subparsers(dest="credits_action", required=True)
    p_reset = credits_sub.add_parser("reset-weekly", help="Restore weekly credit allocations")
    p_reset.add_argument(
        "--force", action="store_true", help="Reset everyone, even if not yet due"
    )
    _add_common(p_reset)
    p_balance = credits_sub.add_parser("balance", help="Show a contractor's balance")
    p_balance.add_argument("contractor", help="Contractor ID")
    _add_common(p_balance)

    # commission
    p_commission = subparsers.add_parser("commission", help="Commission settlement")
    commission_sub = p_commission.add_subparsers(dest="commission_action", required=True)
    _add_common(commission_sub.add_parser("sweep", help="Mark overdue commissions"))
    _add_common(commission_sub.add_parser("remind", help="Send due-date reminders"))
    p_list = commission_sub.add_parser("list", help="List commissions")
    p_list.add_argument("--status", choices=[s.value for s in CommissionStatus])
    _add_common(p_list)

    # jobs
    p_jobs = subparsers.add_parser("jobs", help="Job lifecycle maintenance")
    jobs_sub = p_jobs.add_subparsers(dest="jobs_action", required=True)
    _add_common(jobs_sub.add_parser("auto-confirm", help="Confirm stale completions"))

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_leadledger_logging(args.log_level)

    try:
        market = Marketplace.open(db_path=args.db)
    except ValueError as e:
        logger.error(f"Failed to open database: {e}")
        print(f"✗ {e}", file=sys.stderr)
        return 1

    try:
        if args.command == "credits":
            return cmd_credits(args, market)
        elif args.command == "commission":
            return cmd_commission(args, market)
        elif args.command == "jobs":
            return cmd_jobs(args, market)
    except MarketError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"✗ {e.message}", file=sys.stderr)
        return 1
    except ValueError as e:
        logger.error(f"Input validation error: {e}")
        print(f"✗ {e}", file=sys.stderr)
        return 1
    finally:
        market.close()
    return 1


if __name__ == "__main__":
    sys.exit(main())
