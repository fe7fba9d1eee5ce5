import json

from conftest import fake_llm
from moneybird_agent.agents.validation_agent import (
    ValidationAgent,
    apply_discrepancy_policy,
    check_tax_arithmetic,
    invoice_amounts,
)
from moneybird_agent.graph.state import create_initial_state, merge_state
from moneybird_agent.models.platform import Decision, Extraction, Invoice

PLAUSIBLE = json.dumps({"confidence": 90, "reasoning": "21% BTW", "requiresReview": False})


def test_tax_arithmetic_within_tolerance():
    check = check_tax_arithmetic(10000, 12100, 2101)
    assert check["expected_tax"] == 2100
    assert check["discrepancy"] == 1
    assert check["is_valid"] is True
    assert round(check["calculated_rate"]) == 21


def test_zero_excl_amount_has_no_rate():
    assert check_tax_arithmetic(0, 0, 0)["calculated_rate"] == 0.0


def test_small_discrepancy_penalises_without_forcing_review():
    decision = apply_discrepancy_policy(Decision(confidence=90, reasoning="ok"), 50)
    assert decision.confidence == 70
    assert decision.requires_review is False


def test_large_discrepancy_forces_review():
    decision = apply_discrepancy_policy(Decision(confidence=10, reasoning="ok"), 200)
    assert decision.confidence == 0
    assert decision.requires_review is True


def test_amounts_prefer_invoice_over_extraction():
    state = merge_state(create_initial_state(), {
        "invoice": Invoice(id="1", amount_excl_tax=1000, amount_incl_tax=None, tax=None),
        "extraction": Extraction(amount_excl_tax=5.0, amount_incl_tax=12.1, tax_amount=2.1),
    })
    assert invoice_amounts(state) == (1000, 1210, 210)


def test_agent_reports_discrepancy():
    agent = ValidationAgent(llm=fake_llm(PLAUSIBLE))
    state = merge_state(create_initial_state(), {
        "invoice": Invoice(id="1", amount_excl_tax=10000, amount_incl_tax=12100, tax=1900),
    })

    update = agent.run(state)

    assert update["amount_validation"] == {"is_valid": False, "expected_tax": 2100, "discrepancy": 200}
    assert update["validation_decision"].confidence == 70
    assert update["validation_decision"].requires_review is True


def test_model_failure_sets_error():
    agent = ValidationAgent(llm=fake_llm("no json here"))
    state = merge_state(create_initial_state(), {"invoice": Invoice(id="1", amount_excl_tax=100, amount_incl_tax=121, tax=21)})

    update = agent.run(state)

    assert "Validation failed" in update["error"]


def validate(tax, reply=PLAUSIBLE):
    agent = ValidationAgent(llm=fake_llm(reply))
    state = merge_state(create_initial_state(), {
        "invoice": Invoice(id="1", amount_excl_tax=100, amount_incl_tax=121, tax=tax),
    })
    return agent.run(state)


def test_correct_btw_keeps_model_confidence():
    update = validate(21)

    assert update["amount_validation"]["is_valid"] is True
    assert update["validation_decision"].confidence == 90
    assert update["validation_decision"].requires_review is False


def test_missing_btw_is_penalised_and_review_left_to_the_model():
    update = validate(0)

    assert update["amount_validation"] == {"is_valid": False, "expected_tax": 21, "discrepancy": 21}
    assert update["validation_decision"].confidence == 70
    assert update["validation_decision"].requires_review is False

    flagged = json.dumps({"confidence": 90, "reasoning": "BTW missing", "requiresReview": True})
    assert validate(0, flagged)["validation_decision"].requires_review is True


def test_review_is_forced_only_above_one_euro():
    at_limit = apply_discrepancy_policy(Decision(confidence=90), 100)
    above_limit = apply_discrepancy_policy(Decision(confidence=90), 101)

    assert at_limit.confidence == 70
    assert at_limit.requires_review is False
    assert above_limit.confidence == 70
    assert above_limit.requires_review is True
