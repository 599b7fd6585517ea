"""Job CLI commands.

- leadledger jobs auto-confirm  : confirm stale completions (cron)
"""

import json
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import argparse

    from leadledger import Marketplace


def cmd_jobs(args: "argparse.Namespace", market: "Marketplace") -> int:
    if args.jobs_action == "auto-confirm":
        results = market.auto_confirm_stale_completions()
        if args.json:
            print(json.dumps([r.to_dict() for r in results], indent=2))
        else:
            with_commission = sum(1 for r in results if r.commission is not None)
            print(f"✓ Auto-confirmed {len(results)} jobs ({with_commission} with commission)")
        return 0

    raise ValueError(f"Unknown jobs action: {args.jobs_action}")
