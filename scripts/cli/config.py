"""CLI configuration: project root and configuration file lookup."""

import os
from pathlib import Path

# Project root (parent of scripts/)
ROOT = Path(__file__).resolve().parent.parent.parent

# Optional YAML override merged over approval_config/defaults/approval.yaml.
CONFIG_ENV = "APPROVAL_CONFIG"


def default_config_path() -> Path | None:
    value = os.environ.get(CONFIG_ENV)
    return Path(value) if value else None
