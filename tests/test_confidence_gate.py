import pytest

from moneybird_agent.agents.confidence_gate import (
    ALERT_USER,
    AUTO_BOOK,
    FLAG_REVIEW,
    ConfidenceGateAgent,
    aggregate_confidence,
    evaluate_confidence,
)
from moneybird_agent.graph.state import create_initial_state, merge_state
from moneybird_agent.models.platform import Decision, Invoice


def decisions(*confidences, review=False):
    return [Decision(confidence=c, requires_review=review) for c in confidences]


def test_aggregate_ignores_absent_decisions():
    assert aggregate_confidence([]) == 0
    assert aggregate_confidence(decisions(90, 100)) == 95


@pytest.mark.parametrize(
    "confidences, expected",
    [
        ((96, 98, 95, 100), AUTO_BOOK),
        ((95, 95), AUTO_BOOK),
        ((90, 85), FLAG_REVIEW),
        ((80,), FLAG_REVIEW),
        ((79, 60), ALERT_USER),
    ],
)
def test_thresholds(confidences, expected):
    _, action = evaluate_confidence(decisions(*confidences), is_new_contact=False, invoice_amount=5000)
    assert action == expected


def test_new_contact_overrides_confidence():
    aggregate, action = evaluate_confidence(decisions(100, 100), is_new_contact=True, invoice_amount=100)
    assert aggregate == 100
    assert action == ALERT_USER


def test_large_amount_overrides_confidence():
    _, action = evaluate_confidence(decisions(100), is_new_contact=False, invoice_amount=100001)
    assert action == ALERT_USER


def test_review_flag_overrides_confidence():
    _, action = evaluate_confidence(
        decisions(100) + decisions(99, review=True), is_new_contact=False, invoice_amount=100
    )
    assert action == ALERT_USER


def test_gate_agent_uses_state(settings):
    agent = ConfidenceGateAgent.from_settings(settings)
    state = merge_state(create_initial_state(), {
        "invoice": Invoice(id="1", amount_incl_tax=5000),
        "contact_decision": Decision(confidence=95),
        "validation_decision": Decision(confidence=99),
    })

    update = agent.run(state)

    assert update["aggregate_confidence"] == 97
    assert update["action"] == AUTO_BOOK


def test_manual_conversion_overrides_confidence():
    _, action = evaluate_confidence(
        decisions(100, 100), is_new_contact=False, invoice_amount=100, manual_conversion_required=True
    )
    assert action == ALERT_USER


def test_gate_agent_alerts_when_write_back_failed(settings):
    agent = ConfidenceGateAgent.from_settings(settings)
    state = merge_state(create_initial_state(), {
        "invoice": Invoice(id="1", amount_incl_tax=5000),
        "contact_decision": Decision(confidence=99),
        "validation_decision": Decision(confidence=99),
        "manual_conversion_required": True,
    })

    update = agent.run(state)

    assert update["aggregate_confidence"] == 99
    assert update["action"] == ALERT_USER
