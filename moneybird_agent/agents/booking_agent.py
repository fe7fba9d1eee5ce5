from typing import Dict

from moneybird_agent.config.logger import setup_logger
from moneybird_agent.graph.state import AgentState, utc_now
from moneybird_agent.models.platform import decimal_to_minor_units
from moneybird_agent.storage.state_store import StateStore
from moneybird_agent.tools.moneybird_client import MoneybirdClient

logger = setup_logger("BookingAgent", "booking_agent.log")


def booking_fields(state: AgentState) -> Dict:
    """
    Final invoice fields: invoice amounts when known, else the extraction's.

    Only draft-safe fields are written. Lifecycle state and currency are
    never sent.
    """
    invoice = state["invoice"]
    extraction = state.get("extraction")
    contact = state.get("contact")

    def amount(invoice_value, extracted):
        if invoice_value is not None:
            return abs(invoice_value)
        return decimal_to_minor_units(extracted)

    fields = {
        "contact_id": contact.id if contact else invoice.contact_id,
        "invoice_date": (extraction.invoice_date if extraction else None) or invoice.invoice_date,
        "total_price_excl_tax": amount(invoice.amount_excl_tax, extraction.amount_excl_tax if extraction else None),
        "total_price_incl_tax": amount(invoice.amount_incl_tax, extraction.amount_incl_tax if extraction else None),
        "tax": amount(invoice.tax, extraction.tax_amount if extraction else None),
        "reference": (extraction.invoice_number if extraction else None) or invoice.reference,
    }
    if extraction and extraction.description:
        fields["notes"] = extraction.description
    return {key: value for key, value in fields.items() if value is not None}


class BookingAgent:
    """Writes the resolved invoice back as a draft and records the run"""

    def __init__(self, store: StateStore):
        self.store = store

    def run(self, state: AgentState, client: MoneybirdClient) -> Dict:
        invoice = state.get("invoice")
        if invoice is None:
            return {"error": "No invoice available", "current_stage": "auto_book"}
        if state.get("action") != "auto_book":
            return {"error": "Action is not auto_book", "current_stage": "auto_book"}

        logger.info(f"Booking Agent: Auto-booking invoice {invoice.id}...")

        try:
            fields = booking_fields(state)
            client.update_purchase_invoice(invoice.id, fields)

            finished_at = utc_now()
            booking_result = {"invoice_id": invoice.id, "fields": sorted(fields), "booked_at": finished_at}
            logged_state = {**state, "booking_result": booking_result}
            self.store.log_processing(
                invoice.id,
                logged_state,
                action_taken="auto_book",
                confidence=state.get("aggregate_confidence"),
            )
            self.store.mark_processed(invoice.id, "completed")

            logger.info(f"Invoice {invoice.id} auto-booked")
            return {"booking_result": booking_result, "finished_at": finished_at, "current_stage": "auto_book"}

        except Exception as e:
            logger.error(f"Auto-booking failed for invoice {invoice.id}: {e}")
            return {"error": f"Auto-booking failed: {e}", "current_stage": "auto_book"}
