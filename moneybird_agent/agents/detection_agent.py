from typing import Dict, List

from moneybird_agent.config.exception import PlatformToolError
from moneybird_agent.config.logger import setup_logger
from moneybird_agent.graph.state import AgentState
from moneybird_agent.models.platform import Invoice
from moneybird_agent.storage.state_store import StateStore
from moneybird_agent.tools.moneybird_client import MoneybirdClient

logger = setup_logger("DetectionAgent", "detection_agent.log")

UNPROCESSED_STATES = ("new", "draft")


class DetectionAgent:
    """Finds the next purchase invoice that still needs processing"""

    def __init__(self, store: StateStore, page_size: str = "50"):
        self.store = store
        self.page_size = page_size

    def run(self, state: AgentState, client: MoneybirdClient) -> Dict:
        logger.info("Detection Agent: Looking for unprocessed invoices...")

        try:
            invoices = client.list_purchase_invoices(per_page=self.page_size)
            pending = self._pending(invoices)

            if not pending:
                logger.info("No unprocessed invoices found")
                return {"invoice": None, "current_stage": "detect"}

            summary = pending[0]
            logger.info(f"Found {len(pending)} unprocessed invoice(s), picking {summary.id}")

            try:
                invoice = client.get_purchase_invoice(summary.id)
            except PlatformToolError as e:
                logger.warning(f"Could not load full invoice {summary.id}, using list data: {e}")
                invoice = summary

            contact = invoice.contact
            if invoice.contact_id:
                try:
                    contact = client.get_contact(invoice.contact_id)
                except PlatformToolError as e:
                    logger.warning(f"Could not load contact {invoice.contact_id}: {e}")

            return {"invoice": invoice, "contact": contact, "current_stage": "detect"}

        except Exception as e:
            logger.error(f"Invoice detection failed: {e}")
            return {"error": f"Invoice detection failed: {e}", "current_stage": "detect"}

    def _pending(self, invoices: List[Invoice]) -> List[Invoice]:
        processed = self.store.processed_ids()
        return [
            invoice for invoice in invoices
            if invoice.state in UNPROCESSED_STATES and invoice.id not in processed
        ]
