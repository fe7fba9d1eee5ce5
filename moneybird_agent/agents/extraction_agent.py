import base64
import sys
from typing import Callable, Dict, Optional

from langchain_core.messages import HumanMessage
from langchain_core.prompts import ChatPromptTemplate
from pydantic import ValidationError

from moneybird_agent.config.exception import AppException
from moneybird_agent.config.logger import setup_logger
from moneybird_agent.config.settings import Settings
from moneybird_agent.graph.state import AgentState
from moneybird_agent.models.platform import Extraction, Invoice, decimal_to_minor_units
from moneybird_agent.tools.document_fetcher import DocumentFetcher
from moneybird_agent.tools.document_reader import DocumentReader
from moneybird_agent.tools.moneybird_client import MoneybirdClient
from moneybird_agent.utils.llm import create_llm, create_vision_llm, invoke_for_json
from moneybird_agent.utils.prompt_loader import PromptManager

logger = setup_logger("ExtractionAgent", "extraction_agent.log")


def fallback_text(invoice: Invoice) -> str:
    """Text assembled from the invoice record itself when no document is available."""
    parts = []
    if invoice.reference:
        parts.append(f"Reference: {invoice.reference}")
    if invoice.notes:
        parts.append(f"Notes: {invoice.notes}")
    return "\n".join(parts)


def project_onto_invoice(invoice: Invoice, extraction: Extraction) -> Invoice:
    """Fill the invoice's missing fields from the extraction (minor units, positive)."""
    updates = {}
    if not invoice.amount_excl_tax and extraction.amount_excl_tax is not None:
        updates["amount_excl_tax"] = decimal_to_minor_units(extraction.amount_excl_tax)
    if not invoice.amount_incl_tax and extraction.amount_incl_tax is not None:
        updates["amount_incl_tax"] = decimal_to_minor_units(extraction.amount_incl_tax)
    if invoice.tax is None and extraction.tax_amount is not None:
        updates["tax"] = decimal_to_minor_units(extraction.tax_amount)
    if not invoice.invoice_date and extraction.invoice_date:
        updates["invoice_date"] = extraction.invoice_date
    if not invoice.reference and extraction.invoice_number:
        updates["reference"] = extraction.invoice_number
    return invoice.model_copy(update=updates) if updates else invoice


class ExtractionAgent:
    """Reads the invoice document (image first, text second) into an Extraction"""

    def __init__(
        self,
        llm=None,
        vision_llm=None,
        settings: Optional[Settings] = None,
        reader: Optional[DocumentReader] = None,
        fetcher_factory: Optional[Callable[[MoneybirdClient], DocumentFetcher]] = None,
    ):
        try:
            logger.info("Initializing ExtractionAgent")
            self.settings = settings
            self.llm = llm or create_llm(settings, temperature=0.1)
            self.vision_llm = vision_llm or create_vision_llm(settings)
            self.reader = reader or DocumentReader()
            self.fetcher_factory = fetcher_factory or self._default_fetcher
            self.prompt_manager = PromptManager()
            system_prompt = self.prompt_manager.load_prompt("extraction_prompt.txt")
            self.text_prompt = ChatPromptTemplate.from_messages([
                ("system", system_prompt),
                ("human", "Extract data from this invoice:\n\n{invoice_text}"),
            ])
            self.vision_prompt = ChatPromptTemplate.from_messages([("system", system_prompt)])
            logger.info("ExtractionAgent initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize ExtractionAgent: {e}")
            raise AppException(e, sys)

    def _default_fetcher(self, client: MoneybirdClient) -> DocumentFetcher:
        if self.settings is None:
            return DocumentFetcher(client)
        return DocumentFetcher(
            client,
            administration_id=self.settings.administration_id,
            access_token=self.settings.rest_token,
            api_base=self.settings.moneybird_api_base,
        )

    def run(self, state: AgentState, client: MoneybirdClient) -> Dict:
        """Execute extraction for the current invoice"""
        invoice = state.get("invoice")
        if invoice is None:
            return {"current_stage": "extract"}

        logger.info(f"Extraction Agent: Reading document for invoice {invoice.id}...")

        try:
            fetcher = self.fetcher_factory(client)
            document, source = fetcher.fetch(invoice, state.get("document_path"))

            if document:
                extraction = self._extract_from_document(document)
            else:
                text = fallback_text(invoice)
                if text:
                    logger.info("No document available, extracting from invoice reference/notes")
                    extraction = self._extract_from_text(text)
                else:
                    logger.warning("No document and no fallback text, extraction skipped")
                    extraction = Extraction(confidence=0)

            update = {
                "extraction": extraction,
                "invoice": project_onto_invoice(invoice, extraction),
                "current_stage": "extract",
            }

            if extraction.currency and invoice.currency and extraction.currency.upper() != invoice.currency.upper():
                mismatch = f"document currency {extraction.currency.upper()} differs from invoice currency {invoice.currency.upper()}"
                logger.warning(f"Invoice {invoice.id}: {mismatch}")
                update["currency_mismatch"] = mismatch

            logger.info(f"Extraction complete from {source} (confidence: {extraction.confidence:.0f})")
            return update

        except Exception as e:
            logger.error(f"Extraction failed for invoice {invoice.id}: {e}")
            return {
                "extraction": Extraction(confidence=0),
                "error": f"Extraction failed: {e}",
                "current_stage": "extract",
            }

    def _extract_from_document(self, document: bytes) -> Extraction:
        try:
            image = self.reader.render_first_page(document)
        except Exception as e:
            logger.warning(f"Could not render document, falling back to text extraction: {e}")
            image = None

        if image:
            return self._extract_from_image(image)

        text, ocr_conf, quality = self.reader.extract_text(document)
        logger.debug(f"Text extraction quality: {quality} ({ocr_conf:.2f})")
        if not text:
            return Extraction(confidence=0)
        return self._extract_from_text(text)

    def _extract_from_image(self, image: bytes) -> Extraction:
        encoded = base64.b64encode(image).decode("ascii")
        messages = self.vision_prompt.format_messages()
        messages.append(HumanMessage(content=[
            {"type": "text", "text": "Extract the invoice data from this image."},
            {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{encoded}"}},
        ]))
        return self._invoke(self.vision_llm, messages)

    def _extract_from_text(self, text: str) -> Extraction:
        messages = self.text_prompt.format_messages(invoice_text=text[:8000])
        return self._invoke(self.llm, messages)

    def _invoke(self, llm, messages) -> Extraction:
        # Model trouble degrades to an empty extraction; the run continues.
        try:
            data = invoke_for_json(llm, messages)
            return Extraction.model_validate(data)
        except ValidationError as e:
            logger.error(f"Extraction JSON did not fit the expected shape: {e}")
        except Exception as e:
            logger.error(f"Extraction model call failed: {e}")
        return Extraction(confidence=0)
