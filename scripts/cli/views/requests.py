"""CLI views: single request, pending queue, entity history, chain checks."""

from scripts.cli.util import clip, fmt_ts

W = 78


def _banner(title: str) -> None:
    print()
    print("=" * W)
    print(f"  {title}".center(W))
    print("=" * W)


def show_request(request, heading: str = "APPROVAL REQUEST"):
    _banner(heading)
    print(f"  {'Request:':<16} {request.request_id}")
    print(f"  {'Entity:':<16} {request.entity_type.value} / {request.entity_id}")
    print(f"  {'Type:':<16} {request.request_type.value}")
    print(f"  {'Status:':<16} {request.status.value}")
    print(f"  {'Requested by:':<16} {request.requested_by} at {fmt_ts(request.requested_at)}")
    if request.decided_by:
        print(f"  {'Decided by:':<16} {request.decided_by} at {fmt_ts(request.decided_at)}")
    if request.rejection_reason:
        print(f"  {'Reason:':<16} {request.rejection_reason}")
    if request.change_summary:
        print(f"  {'Summary:':<16} {request.change_summary}")
    print()


def show_pending(pending_items):
    """Print the pending queue.  Accepts any iterable (consumed once)."""
    rows = list(pending_items)
    if not rows:
        print("\n  No pending approval requests.\n")
        return
    _banner("PENDING APPROVALS")
    print(f"  {'Request':<36}  {'Entity':<22}  {'Type':<7}  {'By':<10}  {'Last action'}")
    print(f"  {'-'*36}  {'-'*22}  {'-'*7}  {'-'*10}  {'-'*14}")
    for item in rows:
        req = item.request
        entity = clip(f"{req.entity_type.value}/{req.entity_id}", 22)
        last = item.last_action_type.value if item.last_action_type else "-"
        print(
            f"  {str(req.request_id):<36}  {entity:<22}  {req.request_type.value:<7}  "
            f"{clip(req.requested_by, 10):<10}  {last}"
        )
    print(f"\n  Total: {len(rows)} pending")
    print()


def show_history(histories):
    first = histories[0].request
    _banner(f"HISTORY  {first.entity_type.value} / {first.entity_id}")
    for history in histories:
        req = history.request
        print(f"\n  Request {req.request_id}  [{req.status.value}]  {req.request_type.value}")
        print(f"    {'#':>3}  {'Action':<15}  {'By':<12}  {'At':<19}  {'Status change'}")
        for action in history.actions:
            if action.changes_status:
                before = action.previous_status.value if action.previous_status else "-"
                change = f"{before} -> {action.new_status.value}"
            else:
                change = ""
            print(
                f"    {action.sequence:>3}  {action.action_type.value:<15}  "
                f"{clip(action.action_by, 12):<12}  {fmt_ts(action.action_at):<19}  {change}"
            )
            if action.justification:
                print(f"         note: {action.justification}")
    print()


def show_verification(result):
    verdict = "OK" if result.is_valid else "BROKEN"
    final = result.final_status.value if result.final_status else "-"
    print(
        f"\n  Chain {verdict}: request {result.request_id}, "
        f"{result.action_count} actions, replayed status {final}"
    )
    for error in result.errors:
        print(f"    - {error}")
    print()


def show_purge(record):
    print(
        f"\n  Purged request {record.request_id} "
        f"({record.entity_type.value}/{record.entity_id}, {record.final_status.value}); "
        f"{record.action_count} actions removed.\n"
    )
