"""Ad-hoc schema migrations for the offline queue database."""

from __future__ import annotations

from sqlalchemy import text


def _column_exists(conn, table: str, column: str) -> bool:
    result = conn.execute(text(f"PRAGMA table_info('{table}')"))
    return any(row[1] == column for row in result)


def ensure_pending_action_columns(conn) -> None:
    """Queue files written before terminal failures were tracked lack these columns."""

    columns = {
        "terminal": "BOOLEAN NOT NULL DEFAULT 0",
        "last_error": "TEXT",
        "last_status_code": "INTEGER",
        "updated_at": "DATETIME",
    }
    for name, ddl_type in columns.items():
        if not _column_exists(conn, "pendingaction", name):
            conn.execute(text(f"ALTER TABLE pendingaction ADD COLUMN {name} {ddl_type}"))

    conn.execute(
        text(
            """
            UPDATE pendingaction
            SET updated_at = created_at
            WHERE updated_at IS NULL
            """
        )
    )


def ensure_pending_action_indexes(conn) -> None:
    conn.execute(
        text(
            """
            CREATE INDEX IF NOT EXISTS ix_pendingaction_order
            ON pendingaction (created_at, seq)
            """
        )
    )


def run_all(engine) -> None:
    with engine.begin() as conn:
        ensure_pending_action_columns(conn)
        ensure_pending_action_indexes(conn)


__all__ = ["run_all"]
