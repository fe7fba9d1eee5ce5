import os
import tempfile
from pathlib import Path
from typing import Optional, Tuple

import requests

from moneybird_agent.config.exception import PlatformToolError
from moneybird_agent.config.logger import setup_logger
from moneybird_agent.models.platform import Invoice
from moneybird_agent.tools.document_reader import is_pdf
from moneybird_agent.tools.moneybird_client import MoneybirdClient, decode_binary

logger = setup_logger("DocumentFetcher", "document_fetcher.log")

DEFAULT_CACHE_DIR = Path(tempfile.gettempdir()) / "moneybird-agent"

# Failures of any single source just move on to the next one.
FETCH_ERRORS = (requests.RequestException, PlatformToolError, OSError, ValueError)


class DocumentFetcher:
    """
    Acquire an invoice document, trying each source in turn:

    1. a local path supplied for the run
    2. the attachment's own URL
    3. the receipt linked to the attachment id
    4. every receipt of the invoice (URL, then binary download)
    5. the attachment download URL built from known ids
    6. a cached copy written earlier in the run
    """

    def __init__(
        self,
        client: MoneybirdClient,
        administration_id: Optional[str] = None,
        access_token: Optional[str] = None,
        api_base: str = "https://moneybird.com/api/v2",
        cache_dir: Optional[Path] = None,
        http: Optional[requests.Session] = None,
        timeout: int = 30,
    ):
        self.client = client
        self.administration_id = administration_id
        self.access_token = access_token
        self.api_base = api_base.rstrip("/")
        self.cache_dir = Path(cache_dir or DEFAULT_CACHE_DIR)
        self.http = http or requests.Session()
        self.timeout = timeout

    def cache_path(self, invoice_id: str) -> Path:
        return self.cache_dir / f"invoice_{invoice_id}.pdf"

    def fetch(self, invoice: Invoice, local_path: Optional[str] = None) -> Tuple[Optional[bytes], str]:
        """
        Returns:
            Tuple of (document bytes or None, name of the source that worked)
        """
        strategies = [
            ("local_path", lambda: self._from_local_path(local_path)),
            ("attachment_url", lambda: self._from_attachment_url(invoice)),
            ("receipt", lambda: self._from_linked_receipt(invoice)),
            ("invoice_receipts", lambda: self._from_invoice_receipts(invoice)),
            ("constructed_url", lambda: self._from_constructed_url(invoice)),
            ("cache", lambda: self._from_cache(invoice)),
        ]

        for source, strategy in strategies:
            try:
                data = strategy()
            except FETCH_ERRORS as e:
                logger.warning(f"Document source {source} failed for invoice {invoice.id}: {e}")
                continue
            if data:
                logger.info(f"Document for invoice {invoice.id} obtained from {source} ({len(data)} bytes)")
                if source != "cache":
                    self._write_cache(invoice.id, data)
                return data, source

        logger.warning(f"No document available for invoice {invoice.id}")
        return None, "unavailable"

    def _download(self, url: str) -> bytes:
        headers = {}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        response = self.http.get(url, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        return response.content

    def _from_local_path(self, local_path: Optional[str]) -> Optional[bytes]:
        if not local_path:
            return None
        path = Path(local_path)
        if not path.is_file():
            logger.debug(f"Local document {local_path} does not exist")
            return None
        return path.read_bytes()

    def _from_attachment_url(self, invoice: Invoice) -> Optional[bytes]:
        attachment = invoice.first_attachment
        if not attachment or not attachment.url:
            return None
        return self._download(attachment.url)

    def _from_linked_receipt(self, invoice: Invoice) -> Optional[bytes]:
        attachment = invoice.first_attachment
        if not attachment or not attachment.id or not self.client.supports("get_receipt"):
            return None
        receipt = self.client.get_receipt(attachment.id)
        if receipt.url:
            return self._download(receipt.url)
        if receipt.data:
            return decode_binary(receipt.data)
        return None

    def _from_invoice_receipts(self, invoice: Invoice) -> Optional[bytes]:
        if not self.client.supports("list_receipts"):
            return None
        for receipt in self.client.list_receipts(invoice.id):
            if receipt.url:
                try:
                    data = self._download(receipt.url)
                    if is_pdf(data):
                        return data
                    logger.debug(f"Receipt {receipt.id} URL did not return a PDF")
                except FETCH_ERRORS as e:
                    logger.debug(f"Receipt {receipt.id} URL download failed: {e}")
            if self.client.supports("download_receipt_pdf"):
                try:
                    data = self.client.download_receipt_pdf(receipt.id)
                    if data and is_pdf(data):
                        return data
                    logger.debug(f"Receipt {receipt.id} download did not return a PDF")
                except FETCH_ERRORS as e:
                    logger.debug(f"Receipt {receipt.id} binary download failed: {e}")
        return None

    def _from_constructed_url(self, invoice: Invoice) -> Optional[bytes]:
        attachment = invoice.first_attachment
        if not attachment or not attachment.id or not self.administration_id or not self.access_token:
            return None
        url = (
            f"{self.api_base}/{self.administration_id}/documents/purchase_invoices/"
            f"{invoice.id}/attachments/{attachment.id}/download"
        )
        return self._download(url)

    def _from_cache(self, invoice: Invoice) -> Optional[bytes]:
        path = self.cache_path(invoice.id)
        return path.read_bytes() if path.is_file() else None

    def _write_cache(self, invoice_id: str, data: bytes):
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            self.cache_path(invoice_id).write_bytes(data)
        except OSError as e:
            logger.warning(f"Could not cache document for invoice {invoice_id}: {e}")
