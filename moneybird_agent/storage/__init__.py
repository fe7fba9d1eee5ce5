"""
Storage Package

- state_store: SQLite tables for processing log, idempotency and corrections
- category_memory: Supplier -> kostenpost memory
"""

from moneybird_agent.storage.state_store import StateStore, snapshot_state
from moneybird_agent.storage.category_memory import CategoryMemory

__all__ = [
    "StateStore",
    "CategoryMemory",
    "snapshot_state",
]
