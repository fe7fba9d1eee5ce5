"""
Models Package

Platform records (Invoice, Contact, LedgerAccount, Transaction, Receipt),
stage outputs (Extraction, Decision) and the run summary schema.
"""

from moneybird_agent.models.platform import (
    Attachment,
    Contact,
    Decision,
    Extraction,
    Invoice,
    LedgerAccount,
    Receipt,
    Transaction,
    decimal_to_minor_units,
)
from moneybird_agent.models.output_schema import WorkflowSummary

__all__ = [
    "Attachment",
    "Contact",
    "Decision",
    "Extraction",
    "Invoice",
    "LedgerAccount",
    "Receipt",
    "Transaction",
    "WorkflowSummary",
    "decimal_to_minor_units",
]
