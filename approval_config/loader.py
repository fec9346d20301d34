"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads the default YAML file, merges an optional override file on top of
it, applies environment overrides, and parses the result into the frozen
``approval_config.schema`` types.

Architecture position
---------------------
**Config layer**.  Consumed by ``approval_config.get_active_config()``.
No dependency on the kernel.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` with the offending key; no silent
  coercion of wrong types.
* ``compute_checksum`` is deterministic for the same merged document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong section type or value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    ApprovalEngineConfig,
    DatabaseSettings,
    LoggingSettings,
    WorkflowSettings,
)

DATABASE_URL_ENV = "APPROVAL_DATABASE_URL"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def merge_documents(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` onto ``base``; lists are replaced."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_documents(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_environment(data: dict[str, Any], environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    env = os.environ if environ is None else environ
    url = env.get(DATABASE_URL_ENV)
    if url:
        database = dict(data.get("database") or {})
        database["url"] = url
        data = {**data, "database": database}
    return data


def compute_checksum(data: Mapping[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _section(data: Mapping[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, Mapping):
        raise ValueError(f"'{name}' must be a mapping, got {type(value).__name__}")
    return dict(value)


def _require_type(section: str, key: str, value: Any, expected: type) -> Any:
    # bool is an int subclass; reject it where a count is expected
    if expected is int and isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be an integer")
    if not isinstance(value, expected):
        raise ValueError(f"{section}.{key} must be {expected.__name__}")
    return value


def parse_database(data: Mapping[str, Any]) -> DatabaseSettings:
    section = _section(data, "database")
    url = section.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ValueError("database.url is required")
    kwargs: dict[str, Any] = {"url": url}
    if "echo" in section:
        kwargs["echo"] = _require_type("database", "echo", section["echo"], bool)
    for key in ("pool_size", "max_overflow", "pool_timeout", "pool_recycle"):
        if key in section:
            kwargs[key] = _require_type("database", key, section[key], int)
    return DatabaseSettings(**kwargs)


def parse_workflow(data: Mapping[str, Any]) -> WorkflowSettings:
    section = _section(data, "workflow")
    kwargs: dict[str, Any] = {}
    if "privileged_roles" in section:
        roles = section["privileged_roles"]
        if not isinstance(roles, list) or not all(
            isinstance(r, str) and r.strip() for r in roles
        ):
            raise ValueError("workflow.privileged_roles must be a list of role names")
        if not roles:
            raise ValueError("workflow.privileged_roles must not be empty")
        kwargs["privileged_roles"] = tuple(r.strip().upper() for r in roles)
    if "allow_self_decision" in section:
        kwargs["allow_self_decision"] = _require_type(
            "workflow", "allow_self_decision", section["allow_self_decision"], bool,
        )
    if "pending_batch_size" in section:
        size = _require_type(
            "workflow", "pending_batch_size", section["pending_batch_size"], int,
        )
        if size < 1:
            raise ValueError("workflow.pending_batch_size must be positive")
        kwargs["pending_batch_size"] = size
    return WorkflowSettings(**kwargs)


def parse_logging(data: Mapping[str, Any]) -> LoggingSettings:
    section = _section(data, "logging")
    level = str(section.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {', '.join(_LOG_LEVELS)}")
    return LoggingSettings(level=level)


def parse_config(data: Mapping[str, Any], sources: tuple[str, ...] = ()) -> ApprovalEngineConfig:
    """Parse a merged document into an ApprovalEngineConfig."""
    unknown = set(data) - {"database", "workflow", "logging"}
    if unknown:
        raise ValueError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")
    return ApprovalEngineConfig(
        database=parse_database(data),
        workflow=parse_workflow(data),
        logging=parse_logging(data),
        sources=sources,
        checksum=compute_checksum(data),
    )
