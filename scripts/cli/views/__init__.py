"""CLI views: approval requests, pending queue, history, chain verification."""

from scripts.cli.views.requests import (
    show_history,
    show_pending,
    show_purge,
    show_request,
    show_verification,
)

__all__ = [
    "show_request",
    "show_pending",
    "show_history",
    "show_verification",
    "show_purge",
]
