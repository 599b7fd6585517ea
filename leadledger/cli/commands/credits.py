"""Credit CLI commands.

- leadledger credits reset-weekly [--force]  : weekly allocation (cron)
- leadledger credits balance CONTRACTOR      : balance and ledger check
"""

import json
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import argparse

    from leadledger import Marketplace

logger = logging.getLogger(__name__)


def cmd_credits(args: "argparse.Namespace", market: "Marketplace") -> int:
    """Handle credits subcommands."""
    if args.credits_action == "reset-weekly":
        summary = market.reset_weekly_credits(force=args.force)
        if args.json:
            print(json.dumps(summary.to_dict(), indent=2))
        else:
            print(f"✓ Reset {summary.contractors_reset} contractors")
            print(f"  credits added:   {summary.credits_added}")
            print(f"  credits removed: {summary.credits_removed}")
            if summary.skipped:
                print(f"  not yet due:     {summary.skipped}")
        return 0

    if args.credits_action == "balance":
        contractor = market.credits.get_contractor(args.contractor)
        consistent = market.credits.reconcile(args.contractor)
        if args.json:
            print(
                json.dumps(
                    {
                        "contractor_id": contractor.id,
                        "credits_balance": contractor.credits_balance,
                        "weekly_credits_limit": contractor.weekly_credits_limit,
                        "last_credit_reset": contractor.to_dict()["last_credit_reset"],
                        "ledger_consistent": consistent,
                    },
                    indent=2,
                )
            )
        else:
            print(f"Contractor {contractor.id}")
            print(f"  balance:      {contractor.credits_balance}")
            print(f"  weekly limit: {contractor.weekly_credits_limit}")
            print(f"  last reset:   {contractor.last_credit_reset or 'never'}")
            if not consistent:
                print("  ⚠ balance does not match ledger")
        return 0 if consistent else 2

    raise ValueError(f"Unknown credits action: {args.credits_action}")
