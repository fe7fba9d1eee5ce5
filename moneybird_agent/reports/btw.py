"""
Quarterly BTW (Dutch VAT) report over purchase invoices.

Amounts are integer minor units. The rate of an invoice is derived from
its tax and excl-tax amounts and bucketed into the Dutch rates 0, 9 and
21 percent; anything else lands in "other". An invoice with zero tax but
a non-zero excl-tax amount counts as reverse charge.
"""

import calendar
from typing import Dict, List, Tuple

from pydantic import BaseModel, Field

from moneybird_agent.config.logger import setup_logger
from moneybird_agent.models.platform import Invoice
from moneybird_agent.tools.moneybird_client import MoneybirdClient

logger = setup_logger("BTWReport", "btw_report.log")

RATE_BUCKETS = ("0", "9", "21")
PAGE_SIZE = 100
MAX_PAGES = 50


class BTWQuarterlyReport(BaseModel):
    quarter: str
    date_from: str
    date_to: str
    total_excl_tax: int = 0
    total_incl_tax: int = 0
    total_vat: int = 0
    vat_by_rate: Dict[str, int] = Field(default_factory=lambda: {"0": 0, "9": 0, "21": 0, "other": 0})
    reverse_charge_count: int = 0
    reverse_charge_amount: int = 0
    invoices: List[str] = Field(default_factory=list)


def quarter_range(year: int, quarter: int) -> Tuple[str, str]:
    if quarter not in (1, 2, 3, 4):
        raise ValueError(f"Quarter must be 1-4, got {quarter}")
    first_month = (quarter - 1) * 3 + 1
    last_month = first_month + 2
    last_day = calendar.monthrange(year, last_month)[1]
    return f"{year}-{first_month:02d}-01", f"{year}-{last_month:02d}-{last_day:02d}"


def rate_bucket(amount_excl: int, tax: int) -> str:
    if not amount_excl:
        return "0"
    rate = str(round(abs(tax) / abs(amount_excl) * 100))
    return rate if rate in RATE_BUCKETS else "other"


def _all_purchase_invoices(client: MoneybirdClient) -> List[Invoice]:
    invoices: Dict[str, Invoice] = {}
    for page in range(1, MAX_PAGES + 1):
        batch = client.list_purchase_invoices(page=str(page), per_page=str(PAGE_SIZE))
        new = [invoice for invoice in batch if invoice.id not in invoices]
        for invoice in new:
            invoices[invoice.id] = invoice
        if len(batch) < PAGE_SIZE or not new:
            break
    return list(invoices.values())


def build_quarterly_report(client: MoneybirdClient, year: int, quarter: int) -> BTWQuarterlyReport:
    """Aggregate purchase invoices dated within the quarter."""
    date_from, date_to = quarter_range(year, quarter)
    report = BTWQuarterlyReport(quarter=f"{year}-Q{quarter}", date_from=date_from, date_to=date_to)

    for invoice in _all_purchase_invoices(client):
        # ISO dates compare correctly as strings
        if not invoice.invoice_date or not (date_from <= invoice.invoice_date[:10] <= date_to):
            continue

        excl = invoice.amount_excl_tax or 0
        incl = invoice.amount_incl_tax or 0
        vat = invoice.tax or 0

        report.invoices.append(invoice.id)
        report.total_excl_tax += excl
        report.total_incl_tax += incl
        report.total_vat += vat
        report.vat_by_rate[rate_bucket(excl, vat)] += vat

        if vat == 0 and excl != 0:
            report.reverse_charge_count += 1
            report.reverse_charge_amount += excl

    logger.info(f"BTW report {report.quarter}: {len(report.invoices)} invoices, VAT {report.total_vat}")
    return report


def validate_report(report: BTWQuarterlyReport) -> Dict[str, List[str]]:
    """Sanity checks before the figures are used for a declaration."""
    errors = []
    warnings = []

    expected_vat = report.total_incl_tax - report.total_excl_tax
    if abs(expected_vat - report.total_vat) > 1:
        errors.append(
            f"VAT calculation mismatch: expected {expected_vat / 100:.2f}, got {report.total_vat / 100:.2f}"
        )
    if report.vat_by_rate.get("other"):
        warnings.append(f"VAT at unusual rates: {report.vat_by_rate['other'] / 100:.2f}")
    if report.reverse_charge_count:
        warnings.append(f"{report.reverse_charge_count} reverse charge invoices found")

    return {"errors": errors, "warnings": warnings}


def format_report_csv(report: BTWQuarterlyReport) -> str:
    lines = [
        f"Quarter,{report.quarter}",
        f"Total Excl. Tax,{report.total_excl_tax / 100:.2f}",
        f"Total Incl. Tax,{report.total_incl_tax / 100:.2f}",
        f"Total VAT,{report.total_vat / 100:.2f}",
        "",
        "Rate,VAT Amount",
    ]
    for rate, amount in report.vat_by_rate.items():
        label = f"{rate}%" if rate != "other" else rate
        lines.append(f"{label},{amount / 100:.2f}")
    lines.extend([
        "",
        f"Reverse Charge Count,{report.reverse_charge_count}",
        f"Reverse Charge Amount,{report.reverse_charge_amount / 100:.2f}",
        f"Invoice Count,{len(report.invoices)}",
    ])
    return "\n".join(lines)
