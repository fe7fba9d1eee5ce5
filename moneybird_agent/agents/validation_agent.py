import sys
from typing import Dict, Optional, Tuple

from langchain_core.prompts import ChatPromptTemplate

from moneybird_agent.config.exception import AppException
from moneybird_agent.config.logger import setup_logger
from moneybird_agent.config.settings import Settings
from moneybird_agent.graph.state import AgentState
from moneybird_agent.models.platform import Decision, decimal_to_minor_units
from moneybird_agent.utils.llm import create_llm, invoke_for_json
from moneybird_agent.utils.prompt_loader import PromptManager

logger = setup_logger("ValidationAgent", "validation_agent.log")

TAX_TOLERANCE = 1  # minor units
FORCE_REVIEW_DISCREPANCY = 100  # minor units
DISCREPANCY_PENALTY = 20


def _euros(cents: int) -> str:
    return f"€{cents / 100:.2f}"


def invoice_amounts(state: AgentState) -> Tuple[int, int, int]:
    """(excl, incl, tax) in minor units, invoice first, extraction second, else 0."""
    invoice = state.get("invoice")
    extraction = state.get("extraction")

    def pick(invoice_value: Optional[int], extracted: Optional[float]) -> int:
        if invoice_value is not None:
            return invoice_value
        return decimal_to_minor_units(extracted) or 0

    return (
        pick(invoice.amount_excl_tax if invoice else None, extraction.amount_excl_tax if extraction else None),
        pick(invoice.amount_incl_tax if invoice else None, extraction.amount_incl_tax if extraction else None),
        pick(invoice.tax if invoice else None, extraction.tax_amount if extraction else None),
    )


def check_tax_arithmetic(amount_excl: int, amount_incl: int, tax: int) -> Dict:
    """Compare the recorded tax with incl - excl."""
    expected_tax = amount_incl - amount_excl
    discrepancy = abs(tax - expected_tax)
    return {
        "expected_tax": expected_tax,
        "discrepancy": discrepancy,
        "is_valid": discrepancy <= TAX_TOLERANCE,
        "calculated_rate": (expected_tax / amount_excl * 100) if amount_excl > 0 else 0.0,
    }


def apply_discrepancy_policy(decision: Decision, discrepancy: int) -> Decision:
    """Penalise confidence outside tolerance; force review above the review limit."""
    is_valid = discrepancy <= TAX_TOLERANCE
    confidence = decision.confidence if is_valid else max(0.0, decision.confidence - DISCREPANCY_PENALTY)
    note = "Amounts match." if is_valid else f"Discrepancy: {discrepancy} cents ({_euros(discrepancy)})"
    reasoning = f"{decision.reasoning}. {note}" if decision.reasoning else note
    return Decision(
        confidence=confidence,
        reasoning=reasoning,
        requires_review=decision.requires_review or discrepancy > FORCE_REVIEW_DISCREPANCY,
    )


class ValidationAgent:
    """Checks amount and BTW arithmetic"""

    def __init__(self, llm=None, settings: Optional[Settings] = None):
        try:
            logger.info("Initializing ValidationAgent")
            self.llm = llm or create_llm(settings, temperature=0)
            self.prompt_manager = PromptManager()
            self.prompt = ChatPromptTemplate.from_messages([
                ("system", self.prompt_manager.load_prompt("validation_prompt.txt")),
                ("human", """Validate this invoice's financial data:

Amounts (in cents):
- Excl. Tax: {amount_excl} cents ({amount_excl_eur})
- Incl. Tax: {amount_incl} cents ({amount_incl_eur})
- Tax Amount: {tax} cents ({tax_eur})
- Tax Rate: {tax_rate}

Calculations:
- Expected Tax: {expected_tax} cents ({expected_tax_eur})
- Discrepancy: {discrepancy} cents ({discrepancy_eur})
- Calculated Tax Rate: {calculated_rate}%"""),
            ])
            logger.info("ValidationAgent initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize ValidationAgent: {e}")
            raise AppException(e, sys)

    def run(self, state: AgentState) -> Dict:
        """Execute validation"""
        if state.get("invoice") is None and state.get("extraction") is None:
            return {"error": "No invoice or extraction data available", "current_stage": "validate"}

        logger.info("Validation Agent: Checking amounts and BTW...")

        try:
            amount_excl, amount_incl, tax = invoice_amounts(state)
            check = check_tax_arithmetic(amount_excl, amount_incl, tax)
            extraction = state.get("extraction")
            tax_rate = extraction.tax_rate if extraction and extraction.tax_rate is not None else None

            data = invoke_for_json(self.llm, self.prompt.format_messages(
                amount_excl=amount_excl,
                amount_excl_eur=_euros(amount_excl),
                amount_incl=amount_incl,
                amount_incl_eur=_euros(amount_incl),
                tax=tax,
                tax_eur=_euros(tax),
                tax_rate=f"{tax_rate}%" if tax_rate is not None else "unknown",
                expected_tax=check["expected_tax"],
                expected_tax_eur=_euros(check["expected_tax"]),
                discrepancy=check["discrepancy"],
                discrepancy_eur=_euros(check["discrepancy"]),
                calculated_rate=f"{check['calculated_rate']:.2f}",
            ))

            decision = apply_discrepancy_policy(Decision.from_model(data), check["discrepancy"])
            logger.info(
                f"Validation: discrepancy {check['discrepancy']} cents, "
                f"confidence {decision.confidence:.0f}, review={decision.requires_review}"
            )

            return {
                "validation_decision": decision,
                "amount_validation": {
                    "is_valid": check["is_valid"],
                    "expected_tax": check["expected_tax"],
                    "discrepancy": check["discrepancy"] if check["discrepancy"] > TAX_TOLERANCE else None,
                },
                "current_stage": "validate",
            }

        except Exception as e:
            logger.error(f"Validation failed: {e}")
            return {"error": f"Validation failed: {e}", "current_stage": "validate"}
