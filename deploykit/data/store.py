"""Local data store — SQLite at ~/.deploykit/data.db."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from deploykit.core.models import (
    DependencyItem,
    InstalledApplication,
    InstallOutcome,
    MatchMode,
    OperationKind,
)
from deploykit.core.report import Report

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = os.path.join(
    str(Path.home()), ".deploykit", "data.db"
)

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    updated_at TEXT,
    operation TEXT NOT NULL,
    app_vendor TEXT,
    app_name TEXT NOT NULL,
    app_version TEXT,
    deploy_mode TEXT,
    outcome TEXT,
    exit_code INTEGER,
    duration_seconds REAL
);

CREATE TABLE IF NOT EXISTS reports (
    session_id TEXT PRIMARY KEY REFERENCES sessions(id),
    created_at TEXT NOT NULL,
    payload TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS receipts (
    name TEXT PRIMARY KEY,
    version TEXT,
    installed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

INSERT OR IGNORE INTO config (key, value) VALUES ('deploy_mode', 'interactive');
INSERT OR IGNORE INTO config (key, value) VALUES ('timeout', '3600');
"""


def default_db_path() -> str:
    return os.environ.get("DEPLOYKIT_DB") or _DEFAULT_DB_PATH


class DataStore:
    """Local SQLite data store."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or default_db_path()
        os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_db(self) -> None:
        conn = self._get_conn()
        conn.executescript(_SCHEMA)
        conn.commit()

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    # ── Config ───────────────────────────────────────────────────────

    def get_config(self, key: str) -> Optional[str]:
        conn = self._get_conn()
        row = conn.execute(
            "SELECT value FROM config WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set_config(self, key: str, value: str) -> None:
        conn = self._get_conn()
        conn.execute(
            "INSERT OR REPLACE INTO config (key, value) VALUES (?, ?)",
            (key, value),
        )
        conn.commit()

    # ── Sessions ─────────────────────────────────────────────────────

    def create_session(
        self,
        session_id: str,
        operation: str,
        app_vendor: str,
        app_name: str,
        app_version: str,
        deploy_mode: str,
    ) -> None:
        conn = self._get_conn()
        conn.execute(
            """INSERT INTO sessions
               (id, created_at, operation, app_vendor, app_name, app_version,
                deploy_mode)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                session_id,
                datetime.now().isoformat(),
                operation,
                app_vendor,
                app_name,
                app_version,
                deploy_mode,
            ),
        )
        conn.commit()

    def complete_session(
        self,
        session_id: str,
        outcome: str,
        exit_code: int,
        duration_seconds: float,
    ) -> None:
        conn = self._get_conn()
        conn.execute(
            """UPDATE sessions SET
               updated_at = ?,
               outcome = ?,
               exit_code = ?,
               duration_seconds = ?
               WHERE id = ?""",
            (
                datetime.now().isoformat(),
                outcome,
                exit_code,
                duration_seconds,
                session_id,
            ),
        )
        conn.commit()

    def list_sessions(self, limit: int = 20) -> list[dict[str, Any]]:
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT * FROM sessions ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [dict(row) for row in rows]

    # ── Reports ──────────────────────────────────────────────────────

    def save_report(self, session_id: str, report: Report) -> None:
        conn = self._get_conn()
        conn.execute(
            """INSERT OR REPLACE INTO reports (session_id, created_at, payload)
               VALUES (?, ?, ?)""",
            (session_id, datetime.now().isoformat(), report.to_json(indent=None)),
        )
        conn.commit()

    def get_report(self, session_id: Optional[str] = None) -> Optional[Report]:
        """Return the report for ``session_id``, or the latest one."""
        conn = self._get_conn()
        if session_id:
            row = conn.execute(
                "SELECT payload FROM reports WHERE session_id = ?", (session_id,)
            ).fetchone()
        else:
            row = conn.execute(
                "SELECT payload FROM reports ORDER BY created_at DESC, rowid DESC LIMIT 1"
            ).fetchone()
        if row is None:
            return None
        return Report.from_dict(json.loads(row["payload"]))

    # ── Receipts ─────────────────────────────────────────────────────

    def record_receipt(self, name: str, version: Optional[str]) -> None:
        conn = self._get_conn()
        conn.execute(
            """INSERT OR REPLACE INTO receipts (name, version, installed_at)
               VALUES (?, ?, ?)""",
            (name, version, datetime.now().isoformat()),
        )
        conn.commit()

    def remove_receipt(self, name: str) -> None:
        conn = self._get_conn()
        conn.execute("DELETE FROM receipts WHERE name = ?", (name,))
        conn.commit()

    def list_receipts(self) -> list[dict[str, Any]]:
        conn = self._get_conn()
        rows = conn.execute(
            "SELECT * FROM receipts ORDER BY name"
        ).fetchall()
        return [dict(row) for row in rows]


class ReceiptInventory:
    """Application inventory backed by the receipts table."""

    def __init__(self, store: DataStore):
        self.store = store

    def query_installed_applications(
        self, name_pattern: str, match_mode: MatchMode
    ) -> list[InstalledApplication]:
        apps = []
        for row in self.store.list_receipts():
            name = row["name"]
            if match_mode == MatchMode.EXACT and name != name_pattern:
                continue
            if match_mode == MatchMode.CONTAINS and name_pattern not in name:
                continue
            apps.append(InstalledApplication(display_name=name, display_version=row["version"]))
        return apps


class RecordingInstaller:
    """Wraps an installer and keeps the receipts table in step with it."""

    def __init__(self, inner: Any, store: DataStore):
        self.inner = inner
        self.store = store

    def run_installer(
        self,
        item: DependencyItem,
        action: OperationKind,
        timeout: Optional[float] = None,
    ) -> InstallOutcome:
        outcome = self.inner.run_installer(item, action, timeout=timeout)
        if not outcome.success:
            return outcome
        try:
            if action == OperationKind.UNINSTALL:
                self.store.remove_receipt(item.name)
            else:
                version = str(item.required_version) if item.required_version else None
                self.store.record_receipt(item.name, version)
        except sqlite3.Error:
            logger.warning("Could not update receipt for %s", item.name, exc_info=True)
        return outcome
