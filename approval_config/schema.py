"""
ApprovalEngineConfig schema.

Typed, frozen view of the approval engine's YAML configuration.  The
loader parses YAML into these types; bridges.py turns them into kernel
inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings handed to approval_kernel.db.engine."""

    url: str
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class WorkflowSettings:
    """Who may decide, and how pending work is streamed."""

    privileged_roles: tuple[str, ...] = ("ADMIN",)
    allow_self_decision: bool = False
    pending_batch_size: int = 100


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalEngineConfig:
    """The complete runtime configuration.

    ``checksum`` is the SHA-256 of the canonical merged source document and
    identifies the configuration in logs.
    """

    database: DatabaseSettings
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    sources: tuple[str, ...] = ()
    checksum: str = ""
