"""
Kernel Invariants Contract.

These invariants are structural.  They live in the transition table, the
storage constraints and the database triggers, and no WorkflowPolicy or
configuration file can switch them off.  Configuration decides WHO may
decide; it never decides WHETHER these rules apply.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the approval kernel."""

    SINGLE_PENDING = "single_pending"
    """At most one PENDING_APPROVAL request per (entity_type, entity_id).
    Enforced by ApprovalManager and a partial unique index."""

    LEGAL_TRANSITIONS = "legal_transitions"
    """Status changes follow TRANSITION_RULES only; APPROVED is terminal.
    Enforced by domain.transitions before any mutation."""

    ACTION_PER_MUTATION = "action_per_mutation"
    """Every mutation writes exactly one action row in the same savepoint."""

    APPEND_ONLY_HISTORY = "append_only_history"
    """Action rows are never updated or deleted outside an administrative
    purge.  Enforced by ORM listeners and database triggers."""

    HASH_CHAIN = "hash_chain"
    """Each action hashes its payload and links to the previous action of
    the same request."""

    FIRST_WRITER_WINS = "first_writer_wins"
    """Concurrent decisions on one request serialize; the loser sees an
    illegal transition.  Enforced by row locks and the version counter."""


ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# Enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "approval_services",
    "approval_config",
    "scripts",
)
