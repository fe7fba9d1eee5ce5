import sys
from typing import Dict, List, Optional

from langchain_core.prompts import ChatPromptTemplate

from moneybird_agent.config.exception import AppException
from moneybird_agent.config.logger import setup_logger
from moneybird_agent.config.settings import Settings
from moneybird_agent.graph.state import AgentState
from moneybird_agent.models.platform import Decision, LedgerAccount
from moneybird_agent.storage.category_memory import CategoryMemory
from moneybird_agent.tools.moneybird_client import MoneybirdClient
from moneybird_agent.utils.llm import create_llm, invoke_for_json
from moneybird_agent.utils.prompt_loader import PromptManager

logger = setup_logger("ClassificationAgent", "classification_agent.log")

MEMORY_BOOST = 10
REMEMBER_THRESHOLD = 80


def classification_supplier(state: AgentState) -> Optional[str]:
    extraction = state.get("extraction")
    if extraction and extraction.supplier_name:
        return extraction.supplier_name
    contact = state.get("contact")
    if contact and contact.display_name:
        return contact.display_name
    invoice = state.get("invoice")
    if invoice and invoice.contact and invoice.contact.display_name:
        return invoice.contact.display_name
    return None


class ClassificationAgent:
    """Assigns the invoice to a kostenpost, learning supplier mappings as it goes"""

    def __init__(self, memory: CategoryMemory, llm=None, settings: Optional[Settings] = None):
        try:
            logger.info("Initializing ClassificationAgent")
            self.memory = memory
            self.llm = llm or create_llm(settings, temperature=0)
            self.prompt_manager = PromptManager()
            self.prompt = ChatPromptTemplate.from_messages([
                ("system", self.prompt_manager.load_prompt("kostenpost_prompt.txt")),
                ("human", """Classify this invoice to the correct kostenpost (ledger account).

Invoice Details:
- Supplier: {supplier}
- Description: {description}
- Amount: {amount}
- VAT Rate: {tax_rate}

Available Kostenposten:
{ledger_accounts}
{memory_hint}"""),
            ])
            logger.info("ClassificationAgent initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize ClassificationAgent: {e}")
            raise AppException(e, sys)

    def run(self, state: AgentState, client: MoneybirdClient) -> Dict:
        """Execute kostenpost classification"""
        invoice = state.get("invoice")
        extraction = state.get("extraction")
        if invoice is None and extraction is None:
            return {"error": "No invoice or extraction data available", "current_stage": "classify"}

        logger.info("Classification Agent: Selecting kostenpost...")

        try:
            accounts = client.list_ledger_accounts()
            supplier = classification_supplier(state)
            mapping = self.memory.find(supplier) if supplier else None
            if mapping:
                logger.info(f"Memory hint for '{supplier}': {mapping['category_name']} ({mapping['category_id']})")

            data = invoke_for_json(self.llm, self.prompt.format_messages(
                supplier=supplier or "unknown",
                description=self._invoice_text(state)[:500],
                amount=self._amount(state),
                tax_rate=f"{extraction.tax_rate}%" if extraction and extraction.tax_rate is not None else "unknown",
                ledger_accounts=self._format_accounts(accounts),
                memory_hint=self._format_memory(mapping),
            ))

            decision = Decision.from_model(data)
            kostenpost_id = str(data.get("kostenpost_id")) if data.get("kostenpost_id") is not None else None
            account = next((acc for acc in accounts if acc.id == kostenpost_id), None)

            confidence = decision.confidence
            if mapping and kostenpost_id == mapping["category_id"]:
                confidence = min(100.0, confidence + MEMORY_BOOST)
                logger.debug("Classification agrees with memory, confidence boosted")

            requires_review = decision.requires_review
            if account is None:
                logger.warning(f"Model chose unknown kostenpost {kostenpost_id}")
                requires_review = True

            if account is not None and supplier and confidence >= REMEMBER_THRESHOLD:
                self.memory.remember(
                    supplier_name=supplier,
                    category_id=account.id,
                    category_name=account.name,
                    confidence=confidence / 100,
                    supplier_iban=extraction.supplier_iban if extraction else None,
                    supplier_vat=extraction.supplier_vat if extraction else None,
                )

            logger.info(f"Classified as {account.name if account else kostenpost_id} ({confidence:.0f})")
            return {
                "kostenpost": account,
                "classification_decision": Decision(
                    confidence=confidence,
                    reasoning=decision.reasoning,
                    requires_review=requires_review,
                ),
                "current_stage": "classify",
            }

        except Exception as e:
            logger.error(f"Classification failed: {e}")
            return {"error": f"Classification failed: {e}", "current_stage": "classify"}

    def _invoice_text(self, state: AgentState) -> str:
        extraction = state.get("extraction")
        invoice = state.get("invoice")
        if extraction and extraction.description:
            return extraction.description
        if invoice and invoice.notes:
            return invoice.notes
        return ""

    def _amount(self, state: AgentState) -> str:
        invoice = state.get("invoice")
        extraction = state.get("extraction")
        if invoice and invoice.amount_incl_tax:
            return f"€{invoice.amount_incl_tax / 100:.2f}"
        if extraction and extraction.amount_incl_tax:
            return f"€{extraction.amount_incl_tax:.2f}"
        return "€0.00"

    def _format_accounts(self, accounts: List[LedgerAccount]) -> str:
        if not accounts:
            return "None"
        return "\n".join(
            f"{i}. {acc.name} (ID: {acc.id}, Type: {acc.account_type or 'unknown'})"
            for i, acc in enumerate(accounts, start=1)
        )

    def _format_memory(self, mapping: Optional[Dict]) -> str:
        if not mapping:
            return ""
        return (
            "\nPrevious Mapping:\n"
            f"- This supplier was previously mapped to: {mapping['category_name']} ({mapping['category_id']})\n"
            f"- Confidence: {mapping['confidence'] * 100:.0f}%\n"
            f"- Usage count: {mapping['usage_count']}"
        )
