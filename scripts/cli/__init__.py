"""
Approval CLI -- command-line front end for the approval workflow engine.

Submit, decide, resubmit and revoke requests, inspect the pending queue and
entity history, verify action chains, and purge decided requests.

Entry point: python -m scripts.cli.main <command> ...
"""

from scripts.cli.main import main

__all__ = ["main"]
