from typing import Dict, List, Optional

from moneybird_agent.config.logger import setup_logger
from moneybird_agent.graph.state import AgentState
from moneybird_agent.models.platform import Invoice

logger = setup_logger("CompletenessAgent", "completeness_agent.log")

REQUIRED_FIELDS = ("contact", "amount_excl_tax", "amount_incl_tax", "tax", "invoice_date")


def find_missing_fields(invoice: Optional[Invoice]) -> List[str]:
    """Required invoice fields that are absent. Zero totals count as missing, a zero tax does not."""
    if invoice is None:
        return list(REQUIRED_FIELDS)

    missing = []
    if not invoice.contact_id and invoice.contact is None:
        missing.append("contact")
    if not invoice.amount_excl_tax:
        missing.append("amount_excl_tax")
    if not invoice.amount_incl_tax:
        missing.append("amount_incl_tax")
    if invoice.tax is None:
        missing.append("tax")
    if not invoice.invoice_date:
        missing.append("invoice_date")
    return missing


class CompletenessAgent:
    """Decides whether the invoice needs its document read"""

    def run(self, state: AgentState) -> Dict:
        invoice = state.get("invoice")
        if invoice is None:
            return {"current_stage": "check_completeness"}

        missing = find_missing_fields(invoice)
        if missing:
            logger.info(f"Invoice {invoice.id} is missing: {', '.join(missing)}")
        else:
            logger.info(f"Invoice {invoice.id} is complete")
        return {"missing_fields": missing, "current_stage": "check_completeness"}
