"""
approval_services.bootstrap -- process start-up wiring.

Responsibility:
    Turns an ApprovalEngineConfig into a running process: logging
    configured, engine initialised, ORM immutability listeners registered.
    Call once per process before building an ApprovalOrchestrator.
"""

from __future__ import annotations

from pathlib import Path

from approval_config import get_active_config
from approval_config.bridges import engine_kwargs
from approval_config.schema import ApprovalEngineConfig
from approval_kernel.db.engine import init_engine_from_url
from approval_kernel.db.immutability import register_immutability_listeners
from approval_kernel.logging_config import configure_logging, get_logger

logger = get_logger("services.bootstrap")


def bootstrap(
    config: ApprovalEngineConfig | None = None,
    config_path: Path | str | None = None,
) -> ApprovalEngineConfig:
    """Initialise logging, the engine and the immutability listeners.

    Returns the configuration in force so the caller can build
    orchestrators from it.
    """
    config = config or get_active_config(config_path)
    configure_logging(level=config.logging.level)
    init_engine_from_url(**engine_kwargs(config))
    register_immutability_listeners()
    logger.info(
        "approval_engine_bootstrapped",
        extra={"config_checksum": config.checksum},
    )
    return config
