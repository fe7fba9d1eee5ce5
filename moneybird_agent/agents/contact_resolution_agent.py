import re
import sys
from typing import Dict, List, Optional, Tuple

from langchain_core.prompts import ChatPromptTemplate

from moneybird_agent.config.exception import AppException, PlatformToolError, StateConflictError
from moneybird_agent.config.logger import setup_logger
from moneybird_agent.config.settings import Settings
from moneybird_agent.graph.state import AgentState
from moneybird_agent.models.platform import Contact, Decision, Extraction, Invoice, decimal_to_minor_units
from moneybird_agent.storage.state_store import StateStore
from moneybird_agent.tools.fuzzy_matcher import FuzzyMatcher
from moneybird_agent.tools.moneybird_client import MoneybirdClient
from moneybird_agent.utils.llm import create_llm, invoke_for_json
from moneybird_agent.utils.prompt_loader import PromptManager

logger = setup_logger("ContactResolutionAgent", "contact_resolution_agent.log")

REUSE_THRESHOLD = 80
EXACT_MATCH_CONFIDENCE = 95
CONTAINMENT_MATCH_CONFIDENCE = 75
WRITE_BACK_MIN_EXTRACTION_CONFIDENCE = 70

BOILERPLATE_PATTERNS = [
    re.compile(r"\.pdf$", re.IGNORECASE),
    re.compile(r"factuur.*voor.*je", re.IGNORECASE),
    re.compile(r"invoice", re.IGNORECASE),
    re.compile(r"^\d+_"),
]


def clean_supplier_hint(raw: Optional[str]) -> Optional[str]:
    """Strip invoice boilerplate from a filename or reference; None unless 4-99 chars remain."""
    if not raw:
        return None
    cleaned = raw
    for pattern in BOILERPLATE_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    cleaned = cleaned.strip(" -_.")
    if 3 < len(cleaned) < 100:
        return cleaned
    return None


def supplier_hint(state: AgentState) -> Optional[str]:
    """Supplier name from the extraction, the known contact, the attachment filename or the reference."""
    extraction = state.get("extraction")
    if extraction and extraction.supplier_name:
        return extraction.supplier_name

    contact = state.get("contact")
    if contact and contact.display_name:
        return contact.display_name

    invoice = state.get("invoice")
    if invoice is None:
        return None
    attachment = invoice.first_attachment
    hint = clean_supplier_hint(attachment.filename if attachment else None)
    if hint:
        logger.info(f"Supplier name taken from filename: {hint}")
        return hint
    hint = clean_supplier_hint(invoice.reference)
    if hint:
        logger.info(f"Supplier name taken from reference: {hint}")
    return hint


def match_by_name(supplier_name: str, contacts: List[Contact]) -> Tuple[Optional[Contact], float]:
    """Exact (95) then bidirectional containment (75) name match, case-insensitive."""
    if not supplier_name:
        return None, 0.0
    needle = supplier_name.lower().strip()

    for contact in contacts:
        if contact.display_name.lower().strip() == needle:
            return contact, EXACT_MATCH_CONFIDENCE

    for contact in contacts:
        name = contact.display_name.lower().strip()
        if name and (needle in name or name in needle):
            return contact, CONTAINMENT_MATCH_CONFIDENCE

    return None, 0.0


def invoice_write_fields(contact: Contact, extraction: Extraction) -> Dict:
    """Platform update body: contact plus extracted fields, amounts in positive minor units."""
    return {
        "contact_id": contact.id,
        "invoice_date": extraction.invoice_date,
        "total_price_excl_tax": decimal_to_minor_units(extraction.amount_excl_tax),
        "total_price_incl_tax": decimal_to_minor_units(extraction.amount_incl_tax),
        "tax": decimal_to_minor_units(extraction.tax_amount),
        "reference": extraction.invoice_number,
        "notes": extraction.description,
    }


class ContactResolutionAgent:
    """Matches the invoice supplier to a platform contact, creating one when needed"""

    def __init__(
        self,
        store: StateStore,
        llm=None,
        settings: Optional[Settings] = None,
        candidate_limit: int = 25,
    ):
        try:
            logger.info("Initializing ContactResolutionAgent")
            self.store = store
            self.llm = llm or create_llm(settings, temperature=0)
            self.fuzzy_matcher = FuzzyMatcher(threshold=70.0)
            self.candidate_limit = candidate_limit
            self.prompt_manager = PromptManager()
            self.prompt = ChatPromptTemplate.from_messages([
                ("system", self.prompt_manager.load_prompt("contact_match_prompt.txt")),
                ("human", """Invoice supplier:
- Name: {supplier_name}
- IBAN: {supplier_iban}
- VAT: {supplier_vat}

Candidate contacts:
{contacts}

Return the JSON object."""),
            ])
            logger.info("ContactResolutionAgent initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize ContactResolutionAgent: {e}")
            raise AppException(e, sys)

    def run(self, state: AgentState, client: MoneybirdClient) -> Dict:
        """Execute contact resolution"""
        invoice = state.get("invoice")
        extraction = state.get("extraction")
        if invoice is None and extraction is None:
            return {"error": "No invoice or extraction data available", "current_stage": "resolve_contact"}

        logger.info("Contact Resolution Agent: Resolving supplier...")

        try:
            name = supplier_hint(state)
            iban = extraction.supplier_iban if extraction else None
            vat = extraction.supplier_vat if extraction else None

            contacts = client.list_contacts(query=name) if name else client.list_contacts()
            matched, decision = self._decide(name, iban, vat, contacts)

            contact = None
            is_new_contact = False
            if matched is not None and decision.confidence >= REUSE_THRESHOLD:
                contact = matched
                logger.info(f"Reusing contact {contact.id} ({decision.confidence:.0f})")
            elif name:
                try:
                    contact = client.create_contact(company_name=name, bank_account=iban, tax_number=vat)
                    is_new_contact = True
                    logger.info(f"Created new contact {contact.id} for '{name}'")
                except PlatformToolError as e:
                    logger.error(f"Contact creation failed for '{name}': {e}")
            else:
                logger.warning("No supplier name and no confident match, contact left unresolved")

            requires_review = decision.requires_review or is_new_contact or contact is None
            decision = Decision(
                confidence=decision.confidence,
                reasoning=decision.reasoning,
                requires_review=requires_review,
            )

            update = {
                "contact": contact,
                "contact_decision": decision,
                "is_new_contact": is_new_contact,
                "current_stage": "resolve_contact",
            }

            if (
                contact is not None
                and invoice is not None
                and extraction is not None
                and extraction.confidence >= WRITE_BACK_MIN_EXTRACTION_CONFIDENCE
            ):
                update.update(self._write_back(invoice, contact, extraction, client))

            return update

        except Exception as e:
            logger.error(f"Contact resolution failed: {e}")
            return {"error": f"Contact resolution failed: {e}", "current_stage": "resolve_contact"}

    def _decide(
        self,
        name: Optional[str],
        iban: Optional[str],
        vat: Optional[str],
        contacts: List[Contact],
    ) -> Tuple[Optional[Contact], Decision]:
        matched, confidence = match_by_name(name, contacts)
        if matched is not None:
            reasoning = "Exact name match" if confidence >= EXACT_MATCH_CONFIDENCE else "Fuzzy name match"
            logger.info(f"{reasoning}: '{name}' -> {matched.id}")
            return matched, Decision(
                confidence=confidence,
                reasoning=reasoning,
                requires_review=confidence < REUSE_THRESHOLD,
            )

        ranked = self.fuzzy_matcher.rank_contacts(name, contacts, limit=self.candidate_limit)
        candidates = [contact for contact, _ in ranked]

        try:
            data = invoke_for_json(self.llm, self.prompt.format_messages(
                supplier_name=name or "unknown",
                supplier_iban=iban or "unknown",
                supplier_vat=vat or "unknown",
                contacts=self._format_contacts(candidates),
            ))
        except Exception as e:
            logger.warning(f"Model contact matching failed: {e}")
            if not contacts:
                return None, Decision(
                    confidence=30,
                    reasoning="No existing contacts found, will create new contact",
                    requires_review=True,
                )
            return None, Decision(
                confidence=50,
                reasoning="Model matching failed, no clear match found",
                requires_review=True,
            )

        decision = Decision.from_model(data)
        matched_id = data.get("matched_contact_id")
        matched = next((c for c in candidates if matched_id and c.id == str(matched_id)), None)
        if matched_id and matched is None:
            logger.warning(f"Model returned unknown contact id {matched_id}")
        return matched, decision

    def _format_contacts(self, contacts: List[Contact]) -> str:
        if not contacts:
            return "None"
        lines = []
        for i, contact in enumerate(contacts, start=1):
            lines.append(
                f"{i}. {contact.display_name or 'unnamed'}\n"
                f"   - IBAN: {contact.bank_account or 'unknown'}\n"
                f"   - VAT: {contact.tax_number or 'unknown'}\n"
                f"   - ID: {contact.id}"
            )
        return "\n".join(lines)

    def _write_back(self, invoice: Invoice, contact: Contact, extraction: Extraction, client: MoneybirdClient) -> Dict:
        """
        Save contact and extracted fields on the invoice.

        Invoices in state "new" are updated in two steps (contact first).
        A lifecycle rejection of a "new" invoice falls back to a draft
        replacement invoice; when nothing works the original is left
        untouched and flagged for manual conversion.
        """
        fields = invoice_write_fields(contact, extraction)

        try:
            if invoice.state == "new":
                updated = self._two_step_update(invoice, contact, fields, client)
            else:
                updated = client.update_purchase_invoice(invoice.id, fields)
            logger.info(f"Invoice {invoice.id} updated with contact {contact.id}")
            return {"invoice": updated or self._apply_locally(invoice, contact, fields)}

        except StateConflictError as e:
            logger.warning(f"Invoice {invoice.id} refused update ({invoice.state}): {e}")
            if invoice.state == "new":
                replacement = self._replace_invoice(invoice, contact, extraction, client)
                if replacement is not None:
                    return {"invoice": replacement}
            return {"manual_conversion_required": True}

        except PlatformToolError as e:
            logger.warning(f"Invoice {invoice.id} update failed: {e}")
            return {}

    def _two_step_update(self, invoice: Invoice, contact: Contact, fields: Dict, client: MoneybirdClient) -> Optional[Invoice]:
        try:
            updated = client.update_purchase_invoice(invoice.id, {"contact_id": contact.id})
        except PlatformToolError as e:
            logger.info(f"Contact-only update failed for {invoice.id}, trying full update: {e}")
            return client.update_purchase_invoice(invoice.id, fields)

        remaining = {key: value for key, value in fields.items() if key != "contact_id"}
        if updated is not None and updated.state not in ("new", "draft"):
            return updated
        return client.update_purchase_invoice(invoice.id, remaining) or updated

    def _apply_locally(self, invoice: Invoice, contact: Contact, fields: Dict) -> Invoice:
        return invoice.model_copy(update={
            "contact_id": contact.id,
            "contact": contact,
            "invoice_date": fields.get("invoice_date") or invoice.invoice_date,
            "amount_excl_tax": fields.get("total_price_excl_tax") or invoice.amount_excl_tax,
            "amount_incl_tax": fields.get("total_price_incl_tax") or invoice.amount_incl_tax,
            "tax": fields.get("tax") if fields.get("tax") is not None else invoice.tax,
            "reference": fields.get("reference") or invoice.reference,
        })

    def _replace_invoice(
        self,
        invoice: Invoice,
        contact: Contact,
        extraction: Extraction,
        client: MoneybirdClient,
    ) -> Optional[Invoice]:
        existing = self.store.get_replacement(invoice.id)
        try:
            if existing:
                logger.info(f"Invoice {invoice.id} already replaced by {existing['replacement_invoice_id']}")
                replacement = client.get_purchase_invoice(existing["replacement_invoice_id"])
                deleted = bool(existing["original_deleted"])
            else:
                body = invoice_write_fields(contact, extraction)
                body["currency"] = extraction.currency
                body["state"] = "draft"
                replacement = client.create_purchase_invoice(body)
                self.store.record_replacement(invoice.id, replacement.id)
                deleted = False
                logger.info(f"Created draft replacement {replacement.id} for invoice {invoice.id}")
        except PlatformToolError as e:
            logger.error(f"Could not create replacement for invoice {invoice.id}: {e}")
            return None

        if not deleted:
            try:
                client.delete_purchase_invoice(invoice.id)
                self.store.record_replacement(invoice.id, replacement.id, original_deleted=True)
                logger.info(f"Deleted original invoice {invoice.id}")
            except PlatformToolError as e:
                logger.warning(f"Could not delete original invoice {invoice.id}, marking it processed: {e}")
                self.store.mark_processed(invoice.id, "completed")

        return replacement
