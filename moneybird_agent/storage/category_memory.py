from datetime import datetime, timezone
from typing import Dict, Optional

from moneybird_agent.config.logger import setup_logger
from moneybird_agent.storage.state_store import StateStore

logger = setup_logger("CategoryMemory", "category_memory.log")


def _normalize(name: str) -> str:
    return " ".join((name or "").lower().split())


class CategoryMemory:
    """Learned supplier -> kostenpost mappings, backed by the state store."""

    def __init__(self, store: StateStore):
        self.store = store

    def find(self, supplier_name: str) -> Optional[Dict]:
        """
        Look up the preferred category for a supplier.

        Returns the mapping with the highest usage count (ties broken by
        confidence), or None when the supplier is unknown.
        """
        if not supplier_name:
            return None
        with self.store._conn() as con:
            row = con.execute(
                "SELECT * FROM supplier_category_mappings WHERE supplier_name=? "
                "ORDER BY usage_count DESC, confidence DESC LIMIT 1",
                (_normalize(supplier_name),),
            ).fetchone()
        return dict(row) if row else None

    def remember(
        self,
        supplier_name: str,
        category_id: str,
        category_name: Optional[str],
        confidence: float,
        supplier_iban: Optional[str] = None,
        supplier_vat: Optional[str] = None,
    ):
        """Upsert a mapping: overwrite confidence, bump usage count."""
        now = datetime.now(timezone.utc).isoformat()
        with self.store._conn() as con:
            con.execute(
                """
                INSERT INTO supplier_category_mappings
                  (supplier_name, supplier_iban, supplier_vat, category_id, category_name,
                   confidence, usage_count, created_at, updated_at)
                VALUES (?,?,?,?,?,?,1,?,?)
                ON CONFLICT(supplier_name, category_id) DO UPDATE SET
                  confidence=excluded.confidence,
                  category_name=COALESCE(excluded.category_name, category_name),
                  supplier_iban=COALESCE(excluded.supplier_iban, supplier_iban),
                  supplier_vat=COALESCE(excluded.supplier_vat, supplier_vat),
                  usage_count=usage_count + 1,
                  updated_at=excluded.updated_at
                """,
                (
                    _normalize(supplier_name),
                    supplier_iban,
                    supplier_vat,
                    str(category_id),
                    category_name,
                    confidence,
                    now,
                    now,
                ),
            )
        logger.info(f"Remembered category {category_id} for supplier '{supplier_name}' ({confidence:.2f})")
