"""Command-line entry points (``python -m leadledger.cli``)."""
