import json
from unittest.mock import MagicMock

from conftest import CONTACT, INVOICE, FakeInvoker, fake_llm, platform_handlers
from moneybird_agent.agents.contact_resolution_agent import (
    ContactResolutionAgent,
    clean_supplier_hint,
    match_by_name,
)
from moneybird_agent.graph.state import create_initial_state, merge_state
from moneybird_agent.models.platform import Contact, Extraction, Invoice
from moneybird_agent.tools.moneybird_client import MoneybirdClient

EXTRACTION = Extraction(
    supplier_name="Acme B.V.",
    amount_excl_tax=100.0,
    amount_incl_tax=121.0,
    tax_amount=21.0,
    invoice_date="2026-03-01",
    invoice_number="F-2026-001",
    confidence=92,
)


def state_with(invoice=None, extraction=None, contact=None):
    return merge_state(create_initial_state(), {"invoice": invoice, "extraction": extraction, "contact": contact})


def test_clean_supplier_hint():
    assert clean_supplier_hint("20260301_Acme Hosting invoice.pdf") == "Acme Hosting"
    assert clean_supplier_hint("Factuur voor je.pdf") is None
    assert clean_supplier_hint("abc") is None
    assert clean_supplier_hint(None) is None


def test_match_by_name_exact_then_containment():
    contacts = [Contact(id="1", company_name="Acme Hosting"), Contact(id="2", company_name="Globex")]

    assert match_by_name("acme hosting", contacts) == (contacts[0], 95)
    assert match_by_name("Globex Corporation", contacts) == (contacts[1], 75)
    assert match_by_name("Initech", contacts) == (None, 0.0)


def test_exact_match_skips_model(store):
    """A case-insensitive name match is reused without asking the model"""
    llm = MagicMock()
    agent = ContactResolutionAgent(store, llm=llm)
    client = MoneybirdClient(FakeInvoker(platform_handlers()))

    update = agent.run(state_with(extraction=Extraction(supplier_name="ACME B.V.", confidence=50)), client)

    assert update["contact"].id == "C1"
    assert update["contact_decision"].confidence == 95
    assert update["contact_decision"].requires_review is False
    assert update["is_new_contact"] is False
    llm.invoke.assert_not_called()


def test_model_failure_creates_contact_for_review(store):
    """Unparsable model output falls back to a low-confidence decision"""
    invoker = FakeInvoker(platform_handlers(list_contacts=[{"id": "C5", "company_name": "Initech"}]))
    agent = ContactResolutionAgent(store, llm=fake_llm("I am not sure"))

    update = agent.run(
        state_with(extraction=Extraction(supplier_name="Globex", confidence=50)),
        MoneybirdClient(invoker),
    )

    assert update["is_new_contact"] is True
    assert update["contact"].id == "C9"
    assert update["contact_decision"].confidence == 50
    assert update["contact_decision"].requires_review is True
    assert invoker.calls_to("create_contact")[0]["contact"] == {"company_name": "Globex"}


def test_model_match_below_threshold_is_not_reused(store):
    reply = json.dumps({"matched_contact_id": "C5", "confidence": 70, "reasoning": "Similar name"})
    invoker = FakeInvoker(platform_handlers(list_contacts=[{"id": "C5", "company_name": "Initech Holding"}]))
    agent = ContactResolutionAgent(store, llm=fake_llm(reply))

    update = agent.run(
        state_with(extraction=Extraction(supplier_name="Inytech Group", confidence=50)),
        MoneybirdClient(invoker),
    )

    assert update["is_new_contact"] is True
    assert update["contact"].id == "C9"


def test_no_hint_and_no_match_leaves_contact_unresolved(store):
    reply = json.dumps({"matched_contact_id": None, "confidence": 10, "reasoning": "Nothing to go on"})
    invoker = FakeInvoker(platform_handlers())
    agent = ContactResolutionAgent(store, llm=fake_llm(reply))
    invoice = Invoice(id="INV3", state="draft")

    update = agent.run(state_with(invoice=invoice), MoneybirdClient(invoker))

    assert update["contact"] is None
    assert update["contact_decision"].requires_review is True
    assert invoker.calls_to("create_contact") == []


def test_write_back_updates_new_invoice_in_two_steps(store):
    invoker = FakeInvoker(platform_handlers())
    agent = ContactResolutionAgent(store, llm=MagicMock())
    invoice = Invoice.from_api(dict(INVOICE, contact_id=None))

    update = agent.run(state_with(invoice=invoice, extraction=EXTRACTION), MoneybirdClient(invoker))

    updates = invoker.calls_to("update_purchase_invoice")
    assert updates[0]["purchase_invoice"] == {"contact_id": "C1"}
    assert updates[1]["purchase_invoice"]["total_price_incl_tax"] == 12100
    assert updates[1]["purchase_invoice"]["reference"] == "F-2026-001"
    assert "contact_id" not in updates[1]["purchase_invoice"]
    assert update["invoice"].contact_id == "C1"


def test_rejected_new_invoice_is_replaced(store):
    """A lifecycle rejection replaces the invoice with a draft and deletes the original"""
    invoker = FakeInvoker(platform_handlers(
        update_purchase_invoice=RuntimeError("422 Unprocessable Entity"),
    ))
    agent = ContactResolutionAgent(store, llm=MagicMock())
    invoice = Invoice.from_api(dict(INVOICE, contact_id=None))

    update = agent.run(state_with(invoice=invoice, extraction=EXTRACTION), MoneybirdClient(invoker))

    assert update["invoice"].id == "INV2"
    created = invoker.calls_to("create_purchase_invoice")[0]["purchase_invoice"]
    assert created["state"] == "draft"
    assert created["contact_id"] == "C1"
    assert invoker.calls_to("delete_purchase_invoice") == [{"id": "INV1"}]
    assert store.get_replacement("INV1")["original_deleted"] == 1


def test_replacement_is_not_created_twice(store):
    store.record_replacement("INV1", "INV2", original_deleted=True)
    invoker = FakeInvoker(platform_handlers(
        update_purchase_invoice=RuntimeError("422 Unprocessable Entity"),
    ))
    agent = ContactResolutionAgent(store, llm=MagicMock())
    invoice = Invoice.from_api(dict(INVOICE, contact_id=None))

    update = agent.run(state_with(invoice=invoice, extraction=EXTRACTION), MoneybirdClient(invoker))

    assert update["invoice"].id == "INV2"
    assert invoker.calls_to("create_purchase_invoice") == []
    assert invoker.calls_to("delete_purchase_invoice") == []


def test_failed_delete_marks_original_processed(store):
    invoker = FakeInvoker(platform_handlers(
        update_purchase_invoice=RuntimeError("422 Unprocessable Entity"),
        delete_purchase_invoice=RuntimeError("403 Forbidden"),
    ))
    agent = ContactResolutionAgent(store, llm=MagicMock())
    invoice = Invoice.from_api(dict(INVOICE, contact_id=None))

    agent.run(state_with(invoice=invoice, extraction=EXTRACTION), MoneybirdClient(invoker))

    assert store.get_processed_status("INV1") == "completed"
    assert store.get_replacement("INV1")["original_deleted"] == 0


def test_rejected_draft_requires_manual_conversion(store):
    invoker = FakeInvoker(platform_handlers(
        update_purchase_invoice=RuntimeError("422 Unprocessable Entity"),
    ))
    agent = ContactResolutionAgent(store, llm=MagicMock())
    invoice = Invoice.from_api(dict(INVOICE, contact_id=None, state="open"))

    update = agent.run(state_with(invoice=invoice, extraction=EXTRACTION), MoneybirdClient(invoker))

    assert update["manual_conversion_required"] is True
    assert invoker.calls_to("create_purchase_invoice") == []


def test_low_extraction_confidence_skips_write_back(store):
    invoker = FakeInvoker(platform_handlers())
    agent = ContactResolutionAgent(store, llm=MagicMock())
    invoice = Invoice.from_api(dict(INVOICE, contact_id=None))
    weak = EXTRACTION.model_copy(update={"confidence": 40})

    agent.run(state_with(invoice=invoice, extraction=weak), MoneybirdClient(invoker))

    assert invoker.calls_to("update_purchase_invoice") == []
