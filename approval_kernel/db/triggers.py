"""
Module: approval_kernel.db.triggers
Responsibility: Loading, installing, and verifying the database-level
    append-only triggers (Layer 2 of 2).  This is the complement to the ORM
    listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only.  MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced (6 triggers per dialect, 3 SQL files):
    - approval_actions: no UPDATE; DELETE only once the request is purged.
    - approval_requests: identity fields fixed; APPROVED rows final;
      DELETE only once a purge record exists.
    - approval_purge_log: no UPDATE, no DELETE.

Failure modes:
    - PostgreSQL raises restrict_violation, SQLite RAISE(ABORT); both surface
      through SQLAlchemy as IntegrityError.
    - FileNotFoundError if SQL files are missing from sql/<dialect>/.
    - ValueError for a dialect without trigger SQL.
"""

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

from approval_kernel.logging_config import get_logger

logger = get_logger("db.triggers")

# =============================================================================
# SQL File Loading
# =============================================================================

SQL_DIR = Path(__file__).parent / "sql"

SUPPORTED_DIALECTS = ("postgresql", "sqlite")

# Ordered list of trigger files to install (numbered for predictable order)
TRIGGER_FILES = [
    "01_approval_actions.sql",
    "02_approval_requests.sql",
    "03_approval_purge_log.sql",
]

DROP_FILE = "99_drop_all.sql"

ALL_TRIGGER_NAMES = [
    # Approval actions (01)
    "trg_approval_action_immutability_update",
    "trg_approval_action_immutability_delete",
    # Approval requests (02)
    "trg_approval_request_immutability_update",
    "trg_approval_request_purge_only_delete",
    # Purge log (03)
    "trg_approval_purge_log_immutability_update",
    "trg_approval_purge_log_immutability_delete",
]


def _dialect_dir(dialect: str) -> Path:
    if dialect not in SUPPORTED_DIALECTS:
        raise ValueError(f"No trigger SQL for dialect '{dialect}'")
    return SQL_DIR / dialect


def _load_sql_file(dialect: str, filename: str) -> str:
    """
    Load SQL content from sql/<dialect>/<filename>.

    Raises:
        FileNotFoundError: If the file doesn't exist.
    """
    return (_dialect_dir(dialect) / filename).read_text(encoding="utf-8")


def _load_all_trigger_sql(dialect: str) -> str:
    """Load and concatenate all trigger SQL files in numbered order."""
    sql_parts = []
    for filename in TRIGGER_FILES:
        sql_parts.append(f"-- Loading: {filename}")
        sql_parts.append(_load_sql_file(dialect, filename))
        sql_parts.append("")
    return "\n".join(sql_parts)


def _load_drop_sql(dialect: str) -> str:
    return _load_sql_file(dialect, DROP_FILE)


def _run_script(engine: Engine, sql_content: str) -> None:
    """Execute a multi-statement script on the engine's dialect.

    pysqlite executes one statement per call, and trigger bodies contain
    semicolons, so SQLite scripts go through the driver's executescript().
    """
    if engine.dialect.name == "sqlite":
        raw = engine.raw_connection()
        try:
            raw.driver_connection.executescript(sql_content)
        finally:
            raw.close()
        return

    with engine.connect() as conn:
        conn.execute(text(sql_content))
        conn.commit()


# =============================================================================
# Public API
# =============================================================================


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install database-level append-only triggers for the engine's dialect.

    Preconditions: Tables must exist (call after create_all()).
    Postconditions: All triggers in ALL_TRIGGER_NAMES are installed.
        Installation is idempotent.
    """
    dialect = engine.dialect.name
    _run_script(engine, _load_all_trigger_sql(dialect))
    logger.info(
        "immutability_triggers_installed",
        extra={"dialect": dialect, "trigger_count": len(ALL_TRIGGER_NAMES)},
    )


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove database-level append-only triggers.

    WARNING: Only for tests and schema migrations.  Re-install immediately
    afterwards.
    """
    dialect = engine.dialect.name
    _run_script(engine, _load_drop_sql(dialect))
    logger.warning("immutability_triggers_uninstalled", extra={"dialect": dialect})


def get_installed_triggers(engine: Engine) -> list[str]:
    """
    Get list of installed append-only triggers.

    Useful for debugging and verification.
    """
    trigger_list = ", ".join(f"'{name}'" for name in ALL_TRIGGER_NAMES)
    if engine.dialect.name == "sqlite":
        check_sql = (
            "SELECT name FROM sqlite_master "
            f"WHERE type = 'trigger' AND name IN ({trigger_list}) ORDER BY name"
        )
    else:
        check_sql = (
            "SELECT tgname FROM pg_trigger "
            f"WHERE tgname IN ({trigger_list}) ORDER BY tgname"
        )

    with engine.connect() as conn:
        result = conn.execute(text(check_sql))
        return [row[0] for row in result]


def triggers_installed(engine: Engine) -> bool:
    """True iff every trigger in ALL_TRIGGER_NAMES is installed."""
    return len(get_installed_triggers(engine)) == len(ALL_TRIGGER_NAMES)


def get_missing_triggers(engine: Engine) -> list[str]:
    """Trigger names that should be installed but aren't."""
    installed = set(get_installed_triggers(engine))
    return sorted(set(ALL_TRIGGER_NAMES) - installed)


def list_trigger_files() -> list[str]:
    """Trigger SQL filenames in installation order."""
    return TRIGGER_FILES.copy()
