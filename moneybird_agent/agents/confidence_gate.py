from typing import Dict, Iterable, Optional, Tuple

from moneybird_agent.config.logger import setup_logger
from moneybird_agent.config.settings import Settings
from moneybird_agent.graph.state import AgentState, present_decisions
from moneybird_agent.models.platform import Decision

logger = setup_logger("ConfidenceGate", "confidence_gate.log")

AUTO_BOOK = "auto_book"
FLAG_REVIEW = "flag_review"
ALERT_USER = "alert_user"


def aggregate_confidence(decisions: Iterable[Decision]) -> float:
    """Mean confidence of the decisions present; 0 when there are none."""
    values = [decision.confidence for decision in decisions if decision is not None]
    if not values:
        return 0.0
    return sum(values) / len(values)


def evaluate_confidence(
    decisions: Iterable[Optional[Decision]],
    is_new_contact: bool,
    invoice_amount: int,
    auto_threshold: float = 95,
    review_threshold: float = 80,
    amount_threshold: int = 100000,
    manual_conversion_required: bool = False,
) -> Tuple[float, str]:
    """
    Turn decision records into one booking action.

    Overrides come first. A new contact, an amount above the review
    threshold, an invoice that could not be written back or any decision
    asking for review always yields alert_user.
    Otherwise the aggregate is compared to the auto and review thresholds.

    Returns:
        Tuple of (aggregate confidence, action)
    """
    present = [decision for decision in decisions if decision is not None]
    aggregate = aggregate_confidence(present)

    if is_new_contact or manual_conversion_required:
        return aggregate, ALERT_USER
    if invoice_amount > amount_threshold or any(d.requires_review for d in present):
        return aggregate, ALERT_USER
    if aggregate >= auto_threshold:
        return aggregate, AUTO_BOOK
    if aggregate >= review_threshold:
        return aggregate, FLAG_REVIEW
    return aggregate, ALERT_USER


class ConfidenceGateAgent:
    """Applies the confidence policy to the accumulated decisions"""

    def __init__(
        self,
        auto_threshold: float = 95,
        review_threshold: float = 80,
        amount_threshold: int = 100000,
    ):
        self.auto_threshold = auto_threshold
        self.review_threshold = review_threshold
        self.amount_threshold = amount_threshold

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConfidenceGateAgent":
        return cls(
            auto_threshold=settings.confidence_auto_threshold,
            review_threshold=settings.confidence_review_threshold,
            amount_threshold=settings.amount_review_threshold,
        )

    def run(self, state: AgentState) -> Dict:
        invoice = state.get("invoice")
        aggregate, action = evaluate_confidence(
            present_decisions(state),
            is_new_contact=bool(state.get("is_new_contact")),
            invoice_amount=(invoice.amount_incl_tax or 0) if invoice else 0,
            auto_threshold=self.auto_threshold,
            review_threshold=self.review_threshold,
            amount_threshold=self.amount_threshold,
            manual_conversion_required=bool(state.get("manual_conversion_required")),
        )
        logger.info(f"Confidence gate: aggregate {aggregate:.2f} -> {action}")
        return {"aggregate_confidence": aggregate, "action": action, "current_stage": "gate"}
