import json
from unittest.mock import MagicMock

from conftest import FakeInvoker, fake_llm, platform_handlers
from moneybird_agent.agents.extraction_agent import ExtractionAgent, fallback_text, project_onto_invoice
from moneybird_agent.graph.state import create_initial_state, merge_state
from moneybird_agent.models.platform import Extraction, Invoice
from moneybird_agent.tools.moneybird_client import MoneybirdClient

REPLY = json.dumps({
    "supplier_name": "Acme Hosting",
    "amount_excl_tax": "-6.00",
    "amount_incl_tax": -7.26,
    "tax_amount": -1.26,
    "tax_rate": "21%",
    "invoice_date": "2026-02-14",
    "invoice_number": "AH-77",
    "currency": "EUR",
    "confidence": 88,
})


class StaticFetcher:
    def __init__(self, document=None):
        self.document = document

    def fetch(self, invoice, local_path=None):
        return self.document, "test" if self.document else "unavailable"


def build_agent(llm, vision_llm=None, document=None, reader=None):
    return ExtractionAgent(
        llm=llm,
        vision_llm=vision_llm or fake_llm("{}"),
        reader=reader or MagicMock(),
        fetcher_factory=lambda client: StaticFetcher(document),
    )


def client():
    return MoneybirdClient(FakeInvoker(platform_handlers()))


def test_fallback_text_uses_reference_and_notes():
    invoice = Invoice(id="1", reference="AH-77", notes="Hosting februari")
    assert fallback_text(invoice) == "Reference: AH-77\nNotes: Hosting februari"
    assert fallback_text(Invoice(id="2")) == ""


def test_credit_note_amounts_become_positive_minor_units():
    invoice = Invoice(id="1", tax=None)
    extraction = Extraction.model_validate(json.loads(REPLY))

    projected = project_onto_invoice(invoice, extraction)

    assert projected.amount_excl_tax == 600
    assert projected.amount_incl_tax == 726
    assert projected.tax == 126
    assert projected.invoice_date == "2026-02-14"
    assert projected.reference == "AH-77"


def test_projection_keeps_recorded_fields():
    invoice = Invoice(id="1", amount_incl_tax=9999, invoice_date="2026-01-01", tax=0)
    projected = project_onto_invoice(invoice, Extraction.model_validate(json.loads(REPLY)))
    assert projected.amount_incl_tax == 9999
    assert projected.invoice_date == "2026-01-01"
    assert projected.tax == 0


def test_document_goes_to_vision_model():
    """With document bytes the rendered first page is sent to the vision model"""
    reader = MagicMock()
    reader.render_first_page.return_value = b"\x89PNG fake"
    text_llm = MagicMock()
    agent = build_agent(text_llm, vision_llm=fake_llm(REPLY), document=b"%PDF-1.7 ...", reader=reader)
    state = merge_state(create_initial_state(), {"invoice": Invoice(id="1", currency="EUR")})

    update = agent.run(state, client())

    assert update["extraction"].supplier_name == "Acme Hosting"
    assert update["invoice"].amount_incl_tax == 726
    assert "currency_mismatch" not in update
    text_llm.invoke.assert_not_called()


def test_unrenderable_document_falls_back_to_text():
    reader = MagicMock()
    reader.render_first_page.side_effect = ValueError("not an image")
    reader.extract_text.return_value = ("Acme Hosting AH-77 total 7.26", 0.95, "excellent")
    agent = build_agent(fake_llm(REPLY), document=b"%PDF-1.7 ...", reader=reader)
    state = merge_state(create_initial_state(), {"invoice": Invoice(id="1")})

    update = agent.run(state, client())

    assert update["extraction"].confidence == 88
    reader.extract_text.assert_called_once()


def test_missing_document_uses_invoice_text():
    agent = build_agent(fake_llm(REPLY))
    state = merge_state(create_initial_state(), {"invoice": Invoice(id="1", reference="AH-77")})

    update = agent.run(state, client())

    assert update["extraction"].invoice_number == "AH-77"


def test_nothing_to_read_gives_empty_extraction():
    llm = MagicMock()
    agent = build_agent(llm)
    state = merge_state(create_initial_state(), {"invoice": Invoice(id="1")})

    update = agent.run(state, client())

    assert update["extraction"].confidence == 0
    assert "error" not in update
    llm.invoke.assert_not_called()


def test_unparsable_reply_degrades_to_zero_confidence():
    """Model trouble never aborts the run"""
    agent = build_agent(fake_llm("Sorry, I cannot read this invoice."))
    state = merge_state(create_initial_state(), {"invoice": Invoice(id="1", notes="Hosting")})

    update = agent.run(state, client())

    assert update["extraction"].confidence == 0
    assert "error" not in update


def test_currency_mismatch_is_recorded_not_corrected():
    reply = json.dumps({"supplier_name": "Acme Inc", "amount_incl_tax": 10, "currency": "usd", "confidence": 80})
    agent = build_agent(fake_llm(reply))
    state = merge_state(create_initial_state(), {"invoice": Invoice(id="1", reference="Acme US", currency="EUR")})

    update = agent.run(state, client())

    assert "USD" in update["currency_mismatch"]
    assert update["invoice"].currency == "EUR"
