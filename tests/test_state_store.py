from datetime import datetime, timezone

import pytest

from moneybird_agent.graph.state import create_initial_state, merge_state
from moneybird_agent.models.platform import Invoice
from moneybird_agent.storage.category_memory import CategoryMemory
from moneybird_agent.storage.state_store import StateStore


def today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def test_processed_invoices(store):
    assert not store.is_processed("INV1")

    store.mark_processed("INV1", "review")
    store.mark_processed("INV1", "completed")
    store.mark_processed("INV2", "failed")

    assert store.is_processed("INV1")
    assert store.get_processed_status("INV1") == "completed"
    assert store.processed_ids() == {"INV1", "INV2"}

    assert store.clear_processed("INV1") == 1
    assert store.processed_ids() == {"INV2"}
    assert store.clear_processed() == 1


def test_unknown_status_is_rejected(store):
    with pytest.raises(ValueError):
        store.mark_processed("INV1", "booked")


def test_processing_log_keeps_state_snapshot(store):
    state = merge_state(create_initial_state(), {"invoice": Invoice(id="INV1", amount_incl_tax=726)})

    store.log_processing("INV1", state, action_taken="flag_review", confidence=88.5)
    store.log_processing(None, create_initial_state(), error="Invoice detection failed")

    logs = store.get_processing_logs(date=today())
    assert len(logs) == 2
    assert logs[0]["invoice_id"] is None
    assert logs[1]["state"]["invoice"]["amount_incl_tax"] == 726
    assert logs[1]["confidence"] == 88.5
    assert store.get_processing_logs(date="1999-01-01") == []


def test_corrections(store):
    first = store.record_correction("INV1", "kostenpost", "L1", "L2", "anna")
    store.record_correction("INV2", "amount_incl_tax", 726, 762)

    assert first == 1
    assert [c["field"] for c in store.list_corrections()] == ["kostenpost", "amount_incl_tax"]
    only = store.list_corrections("INV2")
    assert only[0]["original_value"] == "726"
    assert only[0]["corrected_by"] is None


def test_replacements(store):
    assert store.get_replacement("INV1") is None
    store.record_replacement("INV1", "INV2")
    store.record_replacement("INV1", "INV2", original_deleted=True)
    assert store.get_replacement("INV1")["original_deleted"] == 1


def test_store_survives_reopen(tmp_path):
    path = str(tmp_path / "nested" / "agent.db")
    StateStore(path).mark_processed("INV1", "completed")
    assert StateStore(path).is_processed("INV1")


def test_category_memory_prefers_most_used(store):
    memory = CategoryMemory(store)
    memory.remember("Acme", "L1", "Software", 0.95)
    memory.remember("Acme", "L2", "Hosting", 0.85)
    memory.remember("acme", "L2", "Hosting", 0.82)

    mapping = memory.find("ACME")
    assert mapping["category_id"] == "L2"
    assert mapping["usage_count"] == 2
    assert mapping["confidence"] == pytest.approx(0.82)
    assert memory.find("Unknown supplier") is None
