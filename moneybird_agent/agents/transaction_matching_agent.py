import sys
from datetime import date, timedelta
from typing import Dict, List, Optional

from langchain_core.prompts import ChatPromptTemplate

from moneybird_agent.config.exception import AppException
from moneybird_agent.config.logger import setup_logger
from moneybird_agent.config.settings import Settings
from moneybird_agent.graph.state import AgentState
from moneybird_agent.models.platform import Decision, Transaction
from moneybird_agent.tools.moneybird_client import MoneybirdClient
from moneybird_agent.utils.llm import create_llm, invoke_for_json
from moneybird_agent.utils.prompt_loader import PromptManager

logger = setup_logger("TransactionMatchingAgent", "transaction_matching_agent.log")

DATE_WINDOW_DAYS = 30
AMOUNT_TOLERANCE = 0.01


def date_window(invoice_date: str, days: int = DATE_WINDOW_DAYS):
    day = date.fromisoformat(invoice_date[:10])
    return (day - timedelta(days=days)).isoformat(), (day + timedelta(days=days)).isoformat()


def amount_candidates(transactions: List[Transaction], invoice_amount: int) -> List[Transaction]:
    """Transactions whose magnitude is within 1% of the invoice amount."""
    tolerance = abs(invoice_amount) * AMOUNT_TOLERANCE
    return [t for t in transactions if abs(abs(t.amount) - abs(invoice_amount)) <= tolerance]


class TransactionMatchingAgent:
    """Links the invoice to a bank transaction"""

    def __init__(self, llm=None, settings: Optional[Settings] = None):
        try:
            logger.info("Initializing TransactionMatchingAgent")
            self.llm = llm or create_llm(settings, temperature=0)
            self.prompt_manager = PromptManager()
            self.prompt = ChatPromptTemplate.from_messages([
                ("system", self.prompt_manager.load_prompt("transaction_match_prompt.txt")),
                ("human", """Match this invoice to a bank transaction.

Invoice:
- Amount: {amount} cents ({amount_eur})
- Date: {invoice_date}
- Reference: {reference}
- Description: {description}

Candidate Transactions:
{candidates}"""),
            ])
            logger.info("TransactionMatchingAgent initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize TransactionMatchingAgent: {e}")
            raise AppException(e, sys)

    def run(self, state: AgentState, client: MoneybirdClient) -> Dict:
        """Execute transaction matching"""
        invoice = state.get("invoice")
        if invoice is None:
            return {"error": "No invoice available", "current_stage": "match_transaction"}
        if not invoice.invoice_date:
            return {"error": "Invoice date missing", "current_stage": "match_transaction"}

        logger.info("Transaction Matching Agent: Searching bank transactions...")

        try:
            amount = invoice.amount_incl_tax or 0
            from_date, to_date = date_window(invoice.invoice_date)
            transactions = client.list_financial_mutations(from_date=from_date, to_date=to_date)
            candidates = amount_candidates(transactions, amount)
            logger.debug(f"{len(transactions)} transactions in window, {len(candidates)} within amount tolerance")

            if not candidates:
                logger.info("No transactions match the invoice amount")
                return {
                    "match_decision": Decision(
                        confidence=0,
                        reasoning="No transactions found matching invoice amount",
                        requires_review=True,
                    ),
                    "current_stage": "match_transaction",
                }

            data = invoke_for_json(self.llm, self.prompt.format_messages(
                amount=amount,
                amount_eur=f"€{amount / 100:.2f}",
                invoice_date=invoice.invoice_date,
                reference=invoice.reference or "none",
                description=invoice.notes or "none",
                candidates=self._format_candidates(candidates),
            ))

            decision = Decision.from_model(data)
            matched_id = data.get("matched_transaction_id")
            matched = next((t for t in candidates if matched_id and t.id == str(matched_id)), None)

            logger.info(f"Transaction match: {matched.id if matched else 'none'} ({decision.confidence:.0f})")
            return {
                "matched_transaction": matched,
                "match_decision": Decision(
                    confidence=decision.confidence,
                    reasoning=decision.reasoning,
                    requires_review=decision.requires_review or matched is None,
                ),
                "current_stage": "match_transaction",
            }

        except Exception as e:
            logger.error(f"Transaction matching failed: {e}")
            return {"error": f"Transaction matching failed: {e}", "current_stage": "match_transaction"}

    def _format_candidates(self, candidates: List[Transaction]) -> str:
        return "\n".join(
            f"{i}. Date: {t.date}, Amount: {t.amount} cents (€{t.amount / 100:.2f})\n"
            f"   Description: {t.description or 'none'}\n"
            f"   ID: {t.id}"
            for i, t in enumerate(candidates, start=1)
        )
