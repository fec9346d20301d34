"""CLI entry point: argument parsing and command dispatch."""

import argparse
import sys
from collections.abc import Callable, Sequence
from uuid import UUID

import yaml

from approval_kernel.domain.approval import EntityType, RequestSource, RequestType
from approval_kernel.exceptions import ApprovalKernelError
from scripts.cli import config as cli_config
from scripts.cli.util import enable_quiet_logging, parse_json_arg, restore_logging
from scripts.cli.views import (
    show_history,
    show_pending,
    show_purge,
    show_request,
    show_verification,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="approval",
        description="Approval workflow engine: submit, decide and audit change requests.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"YAML override file (default: ${cli_config.CONFIG_ENV} if set)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables and install immutability triggers")

    p = sub.add_parser("submit", help="Open a pending request for an entity")
    p.add_argument("entity_type", choices=[e.value for e in EntityType])
    p.add_argument("entity_id")
    p.add_argument("request_type", choices=[t.value for t in RequestType])
    p.add_argument("--by", required=True, dest="actor")
    p.add_argument("--proposed", required=True, help="Proposed state as JSON")
    p.add_argument("--current", default=None, help="Current state as JSON")
    p.add_argument("--summary", default=None)
    p.add_argument("--source", default=None, choices=[s.value for s in RequestSource])
    p.add_argument("--label", default=None)

    p = sub.add_parser("approve", help="Approve a pending request")
    p.add_argument("request_id", type=UUID)
    p.add_argument("--by", required=True, dest="actor")
    p.add_argument("--role", required=True)
    p.add_argument("--note", default=None)

    p = sub.add_parser("reject", help="Reject a pending request")
    p.add_argument("request_id", type=UUID)
    p.add_argument("--by", required=True, dest="actor")
    p.add_argument("--role", required=True)
    p.add_argument("--reason", default=None)

    p = sub.add_parser("resubmit", help="Reopen a rejected request")
    p.add_argument("request_id", type=UUID)
    p.add_argument("--by", required=True, dest="actor")
    p.add_argument("--proposed", default=None, help="Replacement proposed state as JSON")
    p.add_argument("--summary", default=None)

    p = sub.add_parser("revoke", help="Withdraw a pending request")
    p.add_argument("request_id", type=UUID)
    p.add_argument("--by", required=True, dest="actor")
    p.add_argument("--reason", default=None)

    p = sub.add_parser("pending", help="List pending requests, newest first")
    p.add_argument("--entity-type", default=None, choices=[e.value for e in EntityType])

    p = sub.add_parser("history", help="Show every request for one entity")
    p.add_argument("entity_type", choices=[e.value for e in EntityType])
    p.add_argument("entity_id")

    p = sub.add_parser("verify", help="Verify a request's action hash chain")
    p.add_argument("request_id", type=UUID)

    p = sub.add_parser("purge", help="Administratively remove a decided request")
    p.add_argument("request_id", type=UUID)
    p.add_argument("--by", required=True, dest="actor")
    p.add_argument("--role", required=True)
    p.add_argument("--reason", default=None)

    return parser


def _dispatch(args, orchestrator) -> int:
    command = args.command

    if command == "submit":
        request = orchestrator.submit_approval(
            args.entity_type,
            args.entity_id,
            args.request_type,
            parse_json_arg(args.proposed, "proposed_state"),
            requested_by=args.actor,
            current_state=parse_json_arg(args.current, "current_state"),
            source=args.source,
            label=args.label,
            summary=args.summary,
        )
        show_request(request, "SUBMITTED")
    elif command == "approve":
        request = orchestrator.decide(
            args.request_id, "APPROVE", args.actor, args.role, args.note,
        )
        show_request(request, "APPROVED")
    elif command == "reject":
        request = orchestrator.decide(
            args.request_id, "REJECT", args.actor, args.role, args.reason,
        )
        show_request(request, "REJECTED")
    elif command == "resubmit":
        request = orchestrator.resubmit(
            args.request_id,
            args.actor,
            new_proposed_state=parse_json_arg(args.proposed, "new_proposed_state"),
            change_summary=args.summary,
        )
        show_request(request, "RESUBMITTED")
    elif command == "revoke":
        request = orchestrator.revoke(args.request_id, args.actor, args.reason)
        show_request(request, "REVOKED")
    elif command == "pending":
        show_pending(orchestrator.list_pending(entity_type=args.entity_type))
    elif command == "history":
        show_history(orchestrator.history(args.entity_type, args.entity_id))
    elif command == "verify":
        result = orchestrator.verify_action_chain(args.request_id)
        show_verification(result)
        return 0 if result.is_valid else 1
    elif command == "purge":
        show_purge(orchestrator.purge(args.request_id, args.actor, args.role, args.reason))
    return 0


def main(
    argv: Sequence[str] | None = None,
    session_factory: Callable | None = None,
    orchestrator_factory: Callable | None = None,
) -> int:
    """Run one CLI command and return the process exit status.

    ``session_factory`` and ``orchestrator_factory`` let an embedding
    process (or a test) reuse an already-initialised engine; when omitted
    the engine is bootstrapped from configuration.
    """
    from approval_config import get_active_config
    from approval_kernel.db.engine import create_tables, get_session_factory
    from approval_services import ApprovalOrchestrator, bootstrap

    args = build_parser().parse_args(argv)

    try:
        config = get_active_config(args.config or cli_config.default_config_path())
        if session_factory is None:
            bootstrap(config)
            session_factory = get_session_factory()
        if args.command == "init-db":
            create_tables(install_triggers=True)
            print("  Tables and immutability triggers installed.")
            return 0
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        print(f"  ERROR [CONFIG]: {exc}", file=sys.stderr)
        return 1

    if orchestrator_factory is None:
        def orchestrator_factory(session):
            return ApprovalOrchestrator.from_config(session, config)

    muted = enable_quiet_logging()
    session = session_factory()
    try:
        return _dispatch(args, orchestrator_factory(session))
    except ApprovalKernelError as exc:
        print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    finally:
        session.close()
        restore_logging(muted)


if __name__ == "__main__":
    sys.exit(main())
