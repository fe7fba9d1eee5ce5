"""
Typed views of bookkeeping platform records and of the judgments the
pipeline produces about them.

Platform results arrive as loosely shaped JSON. The ``from_api``
constructors normalise them so the stages never touch raw dicts.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional

INVOICE_STATES = ("new", "draft", "open", "paid", "late", "reminded")


def to_minor_units(value: Any) -> Optional[int]:
    """Coerce a platform amount (already in minor units) to int, keeping None."""
    if value is None or value == "":
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None


def decimal_to_minor_units(value: Any) -> Optional[int]:
    """Convert a decimal major-unit amount to positive minor units (-7.26 -> 726)."""
    if value is None or value == "":
        return None
    try:
        return int(round(abs(float(value)) * 100))
    except (TypeError, ValueError):
        return None


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


class Attachment(BaseModel):
    id: Optional[str] = None
    filename: Optional[str] = None
    content_type: Optional[str] = None
    size: Optional[int] = None
    url: Optional[str] = None

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "Attachment":
        return cls(
            id=str(raw["id"]) if raw.get("id") is not None else None,
            filename=raw.get("filename"),
            content_type=raw.get("content_type"),
            size=raw.get("file_size") or raw.get("size"),
            url=raw.get("url") or raw.get("download_url"),
        )


class Contact(BaseModel):
    id: str
    company_name: Optional[str] = None
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    tax_number: Optional[str] = None
    bank_account: Optional[str] = None
    email: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.company_name:
            return self.company_name
        return " ".join(part for part in (self.firstname, self.lastname) if part).strip()

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "Contact":
        return cls(
            id=str(raw.get("id")),
            company_name=raw.get("company_name"),
            firstname=raw.get("firstname"),
            lastname=raw.get("lastname"),
            tax_number=raw.get("tax_number"),
            bank_account=raw.get("bank_account") or raw.get("sepa_iban"),
            email=raw.get("email"),
            city=raw.get("city"),
            country=raw.get("country"),
        )


class Invoice(BaseModel):
    id: str
    contact_id: Optional[str] = None
    contact: Optional[Contact] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    amount_excl_tax: Optional[int] = None
    amount_incl_tax: Optional[int] = None
    tax: Optional[int] = None
    currency: str = "EUR"
    state: str = "new"
    reference: Optional[str] = None
    notes: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "Invoice":
        contact = raw.get("contact")
        contact_id = raw.get("contact_id")
        return cls(
            id=str(raw.get("id")),
            contact_id=str(contact_id) if contact_id else None,
            contact=Contact.from_api(contact) if isinstance(contact, dict) and contact.get("id") else None,
            invoice_number=raw.get("invoice_id"),
            invoice_date=raw.get("invoice_date") or raw.get("date"),
            due_date=raw.get("due_date"),
            amount_excl_tax=to_minor_units(raw.get("total_price_excl_tax")),
            amount_incl_tax=to_minor_units(raw.get("total_price_incl_tax")),
            tax=to_minor_units(raw.get("tax")),
            currency=raw.get("currency") or "EUR",
            state=str(raw.get("state") or "new").lower(),
            reference=raw.get("reference"),
            notes=raw.get("notes"),
            attachments=[Attachment.from_api(a) for a in raw.get("attachments") or [] if isinstance(a, dict)],
        )

    @property
    def first_attachment(self) -> Optional[Attachment]:
        return self.attachments[0] if self.attachments else None


class LedgerAccount(BaseModel):
    id: str
    name: str
    account_type: Optional[str] = None

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "LedgerAccount":
        return cls(
            id=str(raw.get("id")),
            name=raw.get("name") or "",
            account_type=raw.get("account_type"),
        )


class Transaction(BaseModel):
    id: str
    date: Optional[str] = None
    amount: int = 0  # signed, minor units
    description: Optional[str] = None
    account_id: Optional[str] = None
    contact_id: Optional[str] = None
    invoice_id: Optional[str] = None

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "Transaction":
        return cls(
            id=str(raw.get("id")),
            date=_first(raw, "date", "transaction_date", "value_date"),
            amount=to_minor_units(raw.get("amount")) or 0,
            description=_first(raw, "message", "description", "note"),
            account_id=raw.get("financial_account_id") or raw.get("account_id"),
            contact_id=raw.get("contact_id"),
            invoice_id=raw.get("invoice_id"),
        )


class Receipt(BaseModel):
    id: str
    url: Optional[str] = None
    data: Optional[str] = None  # base64 content when the platform inlines it
    attachments: List[Attachment] = Field(default_factory=list)

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "Receipt":
        return cls(
            id=str(raw.get("id")),
            url=_first(raw, "url", "download_url", "pdf_url"),
            data=raw.get("data") or raw.get("content"),
            attachments=[Attachment.from_api(a) for a in raw.get("attachments") or [] if isinstance(a, dict)],
        )


class Extraction(BaseModel):
    """Fields read from an invoice document. Amounts are decimal major units."""

    supplier_name: Optional[str] = None
    supplier_iban: Optional[str] = None
    supplier_vat: Optional[str] = None
    amount_excl_tax: Optional[float] = None
    amount_incl_tax: Optional[float] = None
    tax_amount: Optional[float] = None
    tax_rate: Optional[float] = None
    invoice_date: Optional[str] = None
    invoice_number: Optional[str] = None
    description: Optional[str] = None
    currency: Optional[str] = None
    confidence: float = 0.0

    @field_validator(
        "supplier_name", "supplier_iban", "supplier_vat", "invoice_date",
        "invoice_number", "description", "currency", mode="before",
    )
    @classmethod
    def _as_text(cls, value):
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("tax_rate", mode="before")
    @classmethod
    def _rate(cls, value):
        if value is None or value == "":
            return None
        try:
            return float(str(value).replace("%", "").replace(",", ".").strip())
        except ValueError:
            return None

    @field_validator("amount_excl_tax", "amount_incl_tax", "tax_amount", mode="before")
    @classmethod
    def _positive_amount(cls, value):
        # Credit notes come back negative.
        if value is None or value == "":
            return None
        try:
            return abs(float(value))
        except (TypeError, ValueError):
            return None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        try:
            return max(0.0, min(100.0, float(value)))
        except (TypeError, ValueError):
            return 0.0


class Decision(BaseModel):
    """A confidence judgment produced by one stage."""

    confidence: float = 0.0
    reasoning: str = ""
    requires_review: bool = False

    model_config = {"frozen": True}

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        try:
            return max(0.0, min(100.0, float(value)))
        except (TypeError, ValueError):
            return 0.0

    @classmethod
    def from_model(cls, data: Dict[str, Any]) -> "Decision":
        """Build a decision from a model JSON reply (camelCase or snake_case flag)."""
        requires_review = data.get("requiresReview", data.get("requires_review", False))
        return cls(
            confidence=data.get("confidence", 0),
            reasoning=str(data.get("reasoning") or ""),
            requires_review=bool(requires_review),
        )
