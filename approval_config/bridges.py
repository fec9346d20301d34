"""
Config -> Kernel Bridges.

Functions that convert ApprovalEngineConfig into kernel inputs.  They live
here because the kernel must NEVER import approval_config.

Usage:
    from approval_config import get_active_config
    from approval_config.bridges import build_workflow_policy, engine_kwargs

    config = get_active_config()
    init_engine_from_url(**engine_kwargs(config))
    manager = ApprovalManager(session, policy=build_workflow_policy(config))
"""

from __future__ import annotations

from typing import Any

from approval_config.schema import ApprovalEngineConfig
from approval_kernel.domain.approval import WorkflowPolicy


def build_workflow_policy(config: ApprovalEngineConfig) -> WorkflowPolicy:
    return WorkflowPolicy(
        privileged_roles=frozenset(config.workflow.privileged_roles),
        allow_self_decision=config.workflow.allow_self_decision,
    )


def engine_kwargs(config: ApprovalEngineConfig) -> dict[str, Any]:
    """Keyword arguments for approval_kernel.db.engine.init_engine_from_url."""
    db = config.database
    return {
        "database_url": db.url,
        "echo": db.echo,
        "pool_size": db.pool_size,
        "max_overflow": db.max_overflow,
        "pool_timeout": db.pool_timeout,
        "pool_recycle": db.pool_recycle,
    }
