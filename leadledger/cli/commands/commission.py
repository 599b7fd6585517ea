"""Commission CLI commands.

- leadledger commission sweep            : mark overdue, suspend (cron)
- leadledger commission remind           : due-date reminders (cron)
- leadledger commission list [--status]  : list commissions
"""

import json
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import argparse

    from leadledger import Marketplace

logger = logging.getLogger(__name__)


def cmd_commission(args: "argparse.Namespace", market: "Marketplace") -> int:
    """Handle commission subcommands."""
    if args.commission_action == "sweep":
        overdue = market.sweep_overdue_commissions()
        if args.json:
            print(json.dumps({"overdue": [c.to_dict() for c in overdue]}, indent=2))
        else:
            print(f"✓ {len(overdue)} commissions marked overdue")
            for c in overdue:
                print(f"  {c.id}  job {c.job_id}  {c.total_amount}  due {c.due_date:%Y-%m-%d}")
        return 0

    if args.commission_action == "remind":
        reminders = market.send_commission_reminders()
        if args.json:
            print(
                json.dumps(
                    {
                        "reminders": [
                            {
                                "commission_id": r.commission.id,
                                "contractor_id": r.commission.contractor_id,
                                "hours_remaining": r.hours_remaining,
                            }
                            for r in reminders
                        ]
                    },
                    indent=2,
                )
            )
        else:
            print(f"✓ {len(reminders)} reminders sent")
        return 0

    if args.commission_action == "list":
        commissions = market.commissions.list(status=args.status)
        if args.json:
            print(json.dumps([c.to_dict() for c in commissions], indent=2))
            return 0
        if not commissions:
            print("No commissions found.")
            return 0
        print(f"{'ID':<38} {'STATUS':<9} {'TOTAL':>10}  DUE")
        for c in commissions:
            print(f"{c.id:<38} {c.status:<9} {str(c.total_amount):>10}  {c.due_date:%Y-%m-%d}")
        return 0

    raise ValueError(f"Unknown commission action: {args.commission_action}")
