import json

import pytest

from conftest import FakeInvoker, fake_llm, platform_handlers
from moneybird_agent.agents.classification_agent import ClassificationAgent
from moneybird_agent.graph.state import create_initial_state, merge_state
from moneybird_agent.models.platform import Contact, Extraction, Invoice
from moneybird_agent.storage.category_memory import CategoryMemory
from moneybird_agent.tools.moneybird_client import MoneybirdClient


def classify(store, reply, supplier="Acme Hosting"):
    memory = CategoryMemory(store)
    agent = ClassificationAgent(memory, llm=fake_llm(reply))
    state = merge_state(create_initial_state(), {
        "invoice": Invoice(id="1", amount_incl_tax=12100),
        "extraction": Extraction(supplier_name=supplier, description="Hosting februari", confidence=90),
    })
    return agent.run(state, MoneybirdClient(FakeInvoker(platform_handlers()))), memory


def test_confident_classification_is_remembered(store):
    reply = json.dumps({"kostenpost_id": "L1", "confidence": 85, "reasoning": "Software"})

    update, memory = classify(store, reply)

    assert update["kostenpost"].name == "Software"
    assert update["classification_decision"].confidence == 85
    mapping = memory.find("acme  HOSTING")
    assert mapping["category_id"] == "L1"
    assert mapping["usage_count"] == 1
    assert mapping["confidence"] == pytest.approx(0.85)


def test_memory_agreement_boosts_confidence(store):
    CategoryMemory(store).remember("Acme Hosting", "L1", "Software", 0.9)
    reply = json.dumps({"kostenpost_id": "L1", "confidence": 93, "reasoning": "Matches history"})

    update, memory = classify(store, reply)

    assert update["classification_decision"].confidence == 100
    assert memory.find("Acme Hosting")["usage_count"] == 2
    assert memory.find("Acme Hosting")["confidence"] == pytest.approx(1.0)


def test_low_confidence_is_not_remembered(store):
    reply = json.dumps({"kostenpost_id": "L2", "confidence": 60, "reasoning": "Unsure"})

    update, memory = classify(store, reply)

    assert update["classification_decision"].confidence == 60
    assert memory.find("Acme Hosting") is None


def test_unknown_account_requires_review(store):
    reply = json.dumps({"kostenpost_id": "L404", "confidence": 95, "reasoning": "Made up"})

    update, memory = classify(store, reply)

    assert update["kostenpost"] is None
    assert update["classification_decision"].requires_review is True
    assert memory.find("Acme Hosting") is None


def test_supplier_falls_back_to_contact(store):
    memory = CategoryMemory(store)
    reply = json.dumps({"kostenpost_id": "L2", "confidence": 90, "reasoning": "Office"})
    agent = ClassificationAgent(memory, llm=fake_llm(reply))
    state = merge_state(create_initial_state(), {
        "invoice": Invoice(id="1", amount_incl_tax=5000),
        "contact": Contact(id="C1", company_name="Staples"),
    })

    agent.run(state, MoneybirdClient(FakeInvoker(platform_handlers())))

    assert memory.find("staples")["category_id"] == "L2"
