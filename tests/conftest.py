from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from moneybird_agent.config.settings import Settings
from moneybird_agent.storage.state_store import StateStore


class FakeInvoker:
    """
    In-memory stand-in for an open MCP connection.

    ``handlers`` maps tool names to a constant result, an exception to
    raise, or a callable receiving the call arguments.
    """

    def __init__(self, handlers: Dict[str, Any], prefix: str = ""):
        self.handlers = {f"{prefix}{name}": handler for name, handler in handlers.items()}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.closed = False

    def list_tools(self) -> List[str]:
        return list(self.handlers)

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        arguments = arguments or {}
        self.calls.append((name, arguments))
        handler = self.handlers[name]
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(arguments)
        return handler

    def calls_to(self, name: str) -> List[Dict[str, Any]]:
        return [arguments for called, arguments in self.calls if called.endswith(name)]

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def fake_llm(*responses: str) -> FakeListChatModel:
    return FakeListChatModel(responses=list(responses))


INVOICE = {
    "id": "INV1",
    "contact_id": "C1",
    "state": "new",
    "invoice_date": "2026-03-01",
    "total_price_excl_tax": 10000,
    "total_price_incl_tax": 12100,
    "tax": 2100,
    "currency": "EUR",
}

CONTACT = {"id": "C1", "company_name": "Acme B.V.", "sepa_iban": "NL91ABNA0417164300"}

LEDGER_ACCOUNTS = [
    {"id": "L1", "name": "Software", "account_type": "expenses"},
    {"id": "L2", "name": "Kantoorkosten", "account_type": "expenses"},
]

TRANSACTIONS = [
    {"id": "T1", "date": "2026-03-03", "amount": -12100, "message": "Acme B.V. factuur"},
    {"id": "T2", "date": "2026-03-05", "amount": -5000, "message": "Other"},
]


def platform_handlers(**overrides) -> Dict[str, Any]:
    handlers: Dict[str, Any] = {
        "list_purchase_invoices": [INVOICE],
        "get_purchase_invoice": lambda args: dict(INVOICE, id=args["id"]),
        "update_purchase_invoice": lambda args: dict(INVOICE, id=args["id"], **args.get("purchase_invoice", {})),
        "create_purchase_invoice": lambda args: dict(args["purchase_invoice"], id="INV2"),
        "delete_purchase_invoice": "deleted",
        "list_contacts": [CONTACT],
        "get_contact": CONTACT,
        "create_contact": lambda args: dict(args["contact"], id="C9"),
        "list_ledger_accounts": LEDGER_ACCOUNTS,
        "list_financial_mutations": TRANSACTIONS,
        "get_receipt": {"id": "R1"},
        "list_receipts": [],
        "download_receipt_pdf": None,
    }
    handlers.update(overrides)
    return handlers


@pytest.fixture
def settings() -> Settings:
    return Settings(
        groq_api_key="test-key",
        mcp_auth_token="test-token",
        administration_id="123456",
    )


@pytest.fixture
def store(tmp_path) -> StateStore:
    return StateStore(str(tmp_path / "agent.db"))


@pytest.fixture
def invoker_factory() -> Callable[..., FakeInvoker]:
    def build(prefix: str = "", **overrides) -> FakeInvoker:
        return FakeInvoker(platform_handlers(**overrides), prefix=prefix)
    return build
