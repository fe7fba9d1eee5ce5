"""
Capability-negotiated Moneybird client.

Tool names are resolved once, when the client is built, against the tools
the server advertises. Each logical operation maps to the first offered
name among ``mcp_Moneybird_<alias>`` and ``<alias>``.
"""

import base64
from typing import Any, Dict, Iterable, List, Optional

import requests

from moneybird_agent.config.exception import PlatformToolError, StateConflictError, is_state_conflict
from moneybird_agent.config.logger import setup_logger
from moneybird_agent.models.platform import Contact, Invoice, LedgerAccount, Receipt, Transaction

logger = setup_logger("MoneybirdClient", "moneybird_client.log")

TOOL_PREFIX = "mcp_Moneybird_"

OPERATIONS: Dict[str, List[str]] = {
    "list_purchase_invoices": ["list_purchase_invoices"],
    "get_purchase_invoice": ["get_purchase_invoice"],
    "update_purchase_invoice": ["update_purchase_invoice"],
    "create_purchase_invoice": ["create_purchase_invoice"],
    "delete_purchase_invoice": ["delete_purchase_invoice"],
    "list_contacts": ["list_contacts"],
    "get_contact": ["get_contact"],
    "create_contact": ["create_contact"],
    "list_ledger_accounts": ["list_ledger_accounts"],
    "list_financial_mutations": ["list_financial_mutations"],
    "get_receipt": ["get_receipt"],
    "list_receipts": ["list_receipts"],
    "download_receipt_pdf": ["download_receipt_pdf", "get_receipt_pdf"],
}


def candidate_names(aliases: Iterable[str]) -> List[str]:
    names = []
    for alias in aliases:
        names.extend([f"{TOOL_PREFIX}{alias}", alias])
    return names


def as_list(result: Any, key: str) -> List[Dict[str, Any]]:
    """Unwrap list results that may arrive bare, wrapped in ``{key: [...]}`` or as one object."""
    if result is None:
        return []
    if isinstance(result, list):
        return [item for item in result if isinstance(item, dict)]
    if isinstance(result, dict):
        if isinstance(result.get(key), list):
            return [item for item in result[key] if isinstance(item, dict)]
        return [result] if result.get("id") is not None else []
    return []


def decode_binary(payload: Any) -> Optional[bytes]:
    """Best-effort conversion of a tool's binary payload to bytes."""
    if payload is None:
        return None
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    if isinstance(payload, str):
        try:
            return base64.b64decode(payload, validate=False)
        except (ValueError, TypeError):
            return None
    if isinstance(payload, list) and all(isinstance(b, int) for b in payload):
        return bytes(payload)
    if isinstance(payload, dict):
        if payload and all(str(k).isdigit() for k in payload):
            return bytes(payload[k] for k in sorted(payload, key=int))
        for key in ("data", "content", "base64"):
            if payload.get(key):
                return decode_binary(payload[key])
    return None


class MoneybirdClient:
    """
    Bookkeeping platform operations over a tool invoker.

    Args:
        invoker: Object exposing ``list_tools() -> List[str]`` and
            ``call_tool(name, arguments)`` (an open ``MCPConnection``).
        administration_id: Administration used for REST fallbacks.
        access_token: Bearer token for REST fallbacks.
        api_base: REST API base URL.
    """

    def __init__(
        self,
        invoker,
        administration_id: Optional[str] = None,
        access_token: Optional[str] = None,
        api_base: str = "https://moneybird.com/api/v2",
        http: Optional[requests.Session] = None,
    ):
        self.invoker = invoker
        self.administration_id = administration_id
        self.access_token = access_token
        self.api_base = api_base.rstrip("/")
        self.http = http or requests.Session()

        offered = set(invoker.list_tools())
        self._resolved: Dict[str, Optional[str]] = {}
        for operation, aliases in OPERATIONS.items():
            self._resolved[operation] = next(
                (name for name in candidate_names(aliases) if name in offered), None
            )

        missing = [op for op, name in self._resolved.items() if name is None]
        logger.info(f"Platform capabilities negotiated ({len(offered)} tools offered)")
        if missing:
            logger.debug(f"Operations not offered by the platform: {', '.join(missing)}")

    def supports(self, operation: str) -> bool:
        return self._resolved.get(operation) is not None

    def tool_name(self, operation: str) -> Optional[str]:
        return self._resolved.get(operation)

    def _call(self, operation: str, **arguments) -> Any:
        name = self._resolved.get(operation)
        if name is None:
            raise PlatformToolError(f"Operation {operation} is not offered by the platform", operation)

        payload = {key: value for key, value in arguments.items() if value is not None}
        logger.debug(f"Calling {name} with keys {sorted(payload)}")
        try:
            result = self.invoker.call_tool(name, payload)
        except PlatformToolError:
            raise
        except Exception as e:
            message = str(e)
            if is_state_conflict(message):
                raise StateConflictError(message, operation) from e
            raise PlatformToolError(f"{operation} failed: {message}", operation) from e

        # Some servers report failures as plain text instead of an error result.
        if isinstance(result, str) and (is_state_conflict(result) or result.lower().startswith("error")):
            if is_state_conflict(result):
                raise StateConflictError(result, operation)
            raise PlatformToolError(result, operation)
        return result

    # Purchase invoices

    def list_purchase_invoices(self, state: Optional[str] = None, page: Optional[str] = None, per_page: str = "50") -> List[Invoice]:
        result = self._call("list_purchase_invoices", state=state, page=page, per_page=per_page)
        return [Invoice.from_api(item) for item in as_list(result, "invoices")]

    def get_purchase_invoice(self, invoice_id: str) -> Invoice:
        result = self._call("get_purchase_invoice", id=invoice_id)
        if not isinstance(result, dict):
            raise PlatformToolError(f"Unexpected invoice payload for {invoice_id}", "get_purchase_invoice")
        return Invoice.from_api(result)

    def update_purchase_invoice(self, invoice_id: str, fields: Dict[str, Any]) -> Optional[Invoice]:
        body = {key: value for key, value in fields.items() if value is not None}
        result = self._call("update_purchase_invoice", id=invoice_id, purchase_invoice=body)
        return Invoice.from_api(result) if isinstance(result, dict) and result.get("id") else None

    def create_purchase_invoice(self, fields: Dict[str, Any]) -> Invoice:
        body = {key: value for key, value in fields.items() if value is not None}
        if not body.get("contact_id"):
            raise PlatformToolError("A purchase invoice needs a contact_id", "create_purchase_invoice")
        body.setdefault("state", "draft")
        result = self._call("create_purchase_invoice", purchase_invoice=body)
        if not isinstance(result, dict) or not result.get("id"):
            raise PlatformToolError("Platform did not return the created invoice", "create_purchase_invoice")
        return Invoice.from_api(result)

    def delete_purchase_invoice(self, invoice_id: str):
        if self.supports("delete_purchase_invoice"):
            self._call("delete_purchase_invoice", id=invoice_id)
            return

        if not self.administration_id or not self.access_token:
            raise PlatformToolError(
                "Administration id and access token are required to delete over REST",
                "delete_purchase_invoice",
            )

        url = f"{self.api_base}/{self.administration_id}/documents/purchase_invoices/{invoice_id}.json"
        logger.info(f"Deleting purchase invoice {invoice_id} over REST")
        try:
            response = self.http.delete(
                url,
                headers={"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"},
                timeout=30,
            )
        except requests.RequestException as e:
            raise PlatformToolError(f"Delete of {invoice_id} failed: {e}", "delete_purchase_invoice") from e

        if not response.ok:
            message = f"Delete of {invoice_id} failed: {response.status_code} {response.text[:200]}"
            if response.status_code == 422:
                raise StateConflictError(message, "delete_purchase_invoice")
            raise PlatformToolError(message, "delete_purchase_invoice")

    # Contacts

    def list_contacts(self, query: Optional[str] = None, per_page: Optional[str] = None) -> List[Contact]:
        result = self._call("list_contacts", query=query, per_page=per_page)
        return [Contact.from_api(item) for item in as_list(result, "contacts")]

    def get_contact(self, contact_id: str) -> Contact:
        result = self._call("get_contact", id=contact_id)
        if not isinstance(result, dict):
            raise PlatformToolError(f"Unexpected contact payload for {contact_id}", "get_contact")
        return Contact.from_api(result)

    def create_contact(
        self,
        company_name: str,
        bank_account: Optional[str] = None,
        tax_number: Optional[str] = None,
    ) -> Contact:
        if not company_name:
            raise PlatformToolError("A contact needs a company name", "create_contact")
        body = {"company_name": company_name, "bank_account": bank_account, "tax_number": tax_number}
        result = self._call("create_contact", contact={k: v for k, v in body.items() if v})
        if not isinstance(result, dict) or not result.get("id"):
            raise PlatformToolError("Platform did not return the created contact", "create_contact")
        return Contact.from_api(result)

    # Reference data

    def list_ledger_accounts(self) -> List[LedgerAccount]:
        result = self._call("list_ledger_accounts")
        return [LedgerAccount.from_api(item) for item in as_list(result, "ledger_accounts")]

    def list_financial_mutations(self, from_date: str, to_date: str, per_page: str = "100") -> List[Transaction]:
        result = self._call("list_financial_mutations", from_date=from_date, to_date=to_date, per_page=per_page)
        return [Transaction.from_api(item) for item in as_list(result, "financial_mutations")]

    # Receipts

    def get_receipt(self, receipt_id: str) -> Receipt:
        result = self._call("get_receipt", id=receipt_id)
        if isinstance(result, dict) and not all(str(k).isdigit() for k in result):
            receipt = Receipt.from_api({"id": receipt_id, **result})
            return receipt
        data = decode_binary(result)
        return Receipt(id=str(receipt_id), data=base64.b64encode(data).decode("ascii") if data else None)

    def list_receipts(self, purchase_invoice_id: str) -> List[Receipt]:
        result = self._call("list_receipts", purchase_invoice_id=purchase_invoice_id)
        return [Receipt.from_api(item) for item in as_list(result, "receipts")]

    def download_receipt_pdf(self, receipt_id: str) -> Optional[bytes]:
        result = self._call("download_receipt_pdf", id=receipt_id)
        return decode_binary(result)
