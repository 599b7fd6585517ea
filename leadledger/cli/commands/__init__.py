"""CLI command handlers."""

from leadledger.cli.commands.commission import cmd_commission
from leadledger.cli.commands.credits import cmd_credits
from leadledger.cli.commands.jobs import cmd_jobs

__all__ = ["cmd_commission", "cmd_credits", "cmd_jobs"]
