"""
SQLite persistence for the pipeline.

Holds the supplier category memory, correction history, the per-run
processing log, the processed-invoice idempotency table and the record of
replacement invoices created when the platform refused an in-place update.
"""

import json
import os
import sqlite3
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from moneybird_agent.config.exception import AppException
from moneybird_agent.config.logger import setup_logger

logger = setup_logger("StateStore", "state_store.log")

PROCESSED_STATUSES = ("completed", "failed", "review")

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS supplier_category_mappings (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      supplier_name TEXT NOT NULL,
      supplier_iban TEXT,
      supplier_vat TEXT,
      category_id TEXT NOT NULL,
      category_name TEXT,
      confidence REAL NOT NULL,
      usage_count INTEGER NOT NULL DEFAULT 1,
      created_at TEXT NOT NULL,
      updated_at TEXT NOT NULL,
      UNIQUE(supplier_name, category_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS corrections (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      invoice_id TEXT NOT NULL,
      field TEXT NOT NULL,
      original_value TEXT,
      corrected_value TEXT,
      corrected_by TEXT,
      created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS processing_log (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      invoice_id TEXT,
      state TEXT NOT NULL,
      action_taken TEXT,
      confidence REAL,
      error TEXT,
      processed_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS processed_invoices (
      invoice_id TEXT PRIMARY KEY,
      status TEXT NOT NULL CHECK(status IN ('completed', 'failed', 'review')),
      processed_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS invoice_replacements (
      original_invoice_id TEXT PRIMARY KEY,
      replacement_invoice_id TEXT NOT NULL,
      original_deleted INTEGER NOT NULL DEFAULT 0,
      created_at TEXT NOT NULL
    );
    """,
]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def snapshot_state(state: Dict[str, Any]) -> str:
    """Serialize a workflow state (pydantic values included) to JSON."""
    return json.dumps(_jsonable(dict(state)), ensure_ascii=False, default=str)


class StateStore:
    """Single-writer SQLite store. Each operation commits on its own."""

    def __init__(self, db_path: str):
        try:
            self.db_path = db_path
            directory = os.path.dirname(os.path.abspath(db_path))
            os.makedirs(directory, exist_ok=True)
            self.init_db()
            logger.info(f"State store ready at {db_path}")
        except Exception as e:
            logger.error(f"Failed to initialise state store at {db_path}: {e}")
            raise AppException(e, sys)

    @contextmanager
    def _conn(self):
        con = sqlite3.connect(self.db_path)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA journal_mode=WAL;")
        try:
            yield con
            con.commit()
        finally:
            con.close()

    def init_db(self):
        with self._conn() as con:
            for statement in SCHEMA:
                con.execute(statement)

    # Processed invoices

    def is_processed(self, invoice_id: str) -> bool:
        with self._conn() as con:
            cur = con.execute("SELECT 1 FROM processed_invoices WHERE invoice_id=?", (invoice_id,))
            return cur.fetchone() is not None

    def processed_ids(self) -> set:
        with self._conn() as con:
            return {row["invoice_id"] for row in con.execute("SELECT invoice_id FROM processed_invoices")}

    def mark_processed(self, invoice_id: str, status: str):
        if status not in PROCESSED_STATUSES:
            raise ValueError(f"Unknown processed status: {status}")
        with self._conn() as con:
            con.execute(
                "INSERT OR REPLACE INTO processed_invoices(invoice_id, status, processed_at) VALUES (?,?,?)",
                (invoice_id, status, _utc_now()),
            )
        logger.debug(f"Invoice {invoice_id} marked {status}")

    def get_processed_status(self, invoice_id: str) -> Optional[str]:
        with self._conn() as con:
            row = con.execute(
                "SELECT status FROM processed_invoices WHERE invoice_id=?", (invoice_id,)
            ).fetchone()
            return row["status"] if row else None

    def clear_processed(self, invoice_id: Optional[str] = None) -> int:
        with self._conn() as con:
            if invoice_id:
                cur = con.execute("DELETE FROM processed_invoices WHERE invoice_id=?", (invoice_id,))
            else:
                cur = con.execute("DELETE FROM processed_invoices")
            return cur.rowcount

    # Processing log

    def log_processing(
        self,
        invoice_id: Optional[str],
        state: Dict[str, Any],
        action_taken: Optional[str] = None,
        confidence: Optional[float] = None,
        error: Optional[str] = None,
    ):
        with self._conn() as con:
            con.execute(
                "INSERT INTO processing_log(invoice_id, state, action_taken, confidence, error, processed_at) "
                "VALUES (?,?,?,?,?,?)",
                (invoice_id, snapshot_state(state), action_taken, confidence, error, _utc_now()),
            )

    def get_processing_logs(self, date: Optional[str] = None, limit: int = 500) -> List[Dict[str, Any]]:
        """Log rows, newest first. ``date`` (YYYY-MM-DD) restricts to one day."""
        query = "SELECT * FROM processing_log"
        params: tuple = ()
        if date:
            query += " WHERE date(processed_at) = date(?)"
            params = (date,)
        query += " ORDER BY id DESC LIMIT ?"
        params = params + (limit,)
        with self._conn() as con:
            rows = con.execute(query, params).fetchall()
        logs = []
        for row in rows:
            entry = dict(row)
            entry["state"] = json.loads(entry["state"] or "{}")
            logs.append(entry)
        return logs

    # Corrections

    def record_correction(
        self,
        invoice_id: str,
        field: str,
        original_value: Any,
        corrected_value: Any,
        corrected_by: Optional[str] = None,
    ) -> int:
        with self._conn() as con:
            cur = con.execute(
                "INSERT INTO corrections(invoice_id, field, original_value, corrected_value, corrected_by, created_at) "
                "VALUES (?,?,?,?,?,?)",
                (
                    invoice_id,
                    field,
                    None if original_value is None else str(original_value),
                    None if corrected_value is None else str(corrected_value),
                    corrected_by,
                    _utc_now(),
                ),
            )
            return cur.lastrowid

    def list_corrections(self, invoice_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._conn() as con:
            if invoice_id:
                rows = con.execute(
                    "SELECT * FROM corrections WHERE invoice_id=? ORDER BY id", (invoice_id,)
                ).fetchall()
            else:
                rows = con.execute("SELECT * FROM corrections ORDER BY id").fetchall()
            return [dict(row) for row in rows]

    # Replacement invoices

    def get_replacement(self, original_invoice_id: str) -> Optional[Dict[str, Any]]:
        with self._conn() as con:
            row = con.execute(
                "SELECT * FROM invoice_replacements WHERE original_invoice_id=?", (original_invoice_id,)
            ).fetchone()
            return dict(row) if row else None

    def record_replacement(self, original_invoice_id: str, replacement_invoice_id: str, original_deleted: bool = False):
        with self._conn() as con:
            con.execute(
                "INSERT OR REPLACE INTO invoice_replacements"
                "(original_invoice_id, replacement_invoice_id, original_deleted, created_at) VALUES (?,?,?,?)",
                (original_invoice_id, replacement_invoice_id, int(original_deleted), _utc_now()),
            )
