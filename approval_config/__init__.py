"""
approval_config -- single public entrypoint for approval engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime, through
    ``get_active_config()``.  Services and the CLI never read YAML or
    environment variables themselves.

Architecture position:
    Configuration.  Sits above ``approval_kernel`` and below
    ``approval_services``.  The kernel MUST NEVER import from
    ``approval_config``; ``bridges.py`` translates configuration into
    kernel inputs.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Deterministic identity: the same merged document always yields the
      same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the override file does not exist.
    - ``ValueError`` -- a section or value fails validation.

Audit relevance:
    Every successful call emits an ``APPROVAL_CONFIG_TRACE`` log entry with
    the checksum, the source files, and the privileged roles in force.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from approval_config.loader import (
    apply_environment,
    load_yaml_file,
    merge_documents,
    parse_config,
)
from approval_config.schema import (
    ApprovalEngineConfig,
    DatabaseSettings,
    LoggingSettings,
    WorkflowSettings,
)

_logger = logging.getLogger("approval_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "approval.yaml"


def get_active_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ApprovalEngineConfig:
    """The ONLY public configuration entrypoint.

    Loads ``defaults/approval.yaml``, merges ``config_path`` over it when
    given, then applies ``APPROVAL_DATABASE_URL`` from ``environ`` (the
    process environment by default).

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        ValueError: If the merged configuration is invalid.
    """
    data = load_yaml_file(DEFAULT_CONFIG_PATH)
    sources = [str(DEFAULT_CONFIG_PATH)]
    if config_path is not None:
        override = load_yaml_file(Path(config_path))
        data = merge_documents(data, override)
        sources.append(str(config_path))
    data = apply_environment(data, environ)

    config = parse_config(data, sources=tuple(sources))

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "checksum": config.checksum,
            "sources": list(config.sources),
            "privileged_roles": list(config.workflow.privileged_roles),
            "allow_self_decision": config.workflow.allow_self_decision,
        },
    )
    return config


__all__ = [
    "ApprovalEngineConfig",
    "DatabaseSettings",
    "LoggingSettings",
    "WorkflowSettings",
    "DEFAULT_CONFIG_PATH",
    "get_active_config",
]
