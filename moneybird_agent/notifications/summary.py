"""
Run and daily summaries for operators.

``review_reasons`` explains why a run needs a human; the daily summary
aggregates the processing log for one calendar day.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from moneybird_agent.graph.state import AgentState
from moneybird_agent.models.output_schema import WorkflowSummary
from moneybird_agent.storage.state_store import StateStore

REVIEW_ACTIONS = ("flag_review", "alert_user")


def review_reasons(state: AgentState, amount_threshold: Optional[int] = None) -> List[str]:
    reasons = []
    if state.get("error"):
        reasons.append("error")
    if state.get("is_new_contact"):
        reasons.append("new_supplier")
    decisions = {
        "contact_decision": "contact_match_low_confidence",
        "validation_decision": "validation_issue",
        "classification_decision": "kostenpost_classification_uncertain",
        "match_decision": "transaction_match_uncertain",
    }
    for field, reason in decisions.items():
        decision = state.get(field)
        if decision is not None and decision.requires_review:
            reasons.append(reason)
    invoice = state.get("invoice")
    if amount_threshold is not None and invoice and (invoice.amount_incl_tax or 0) > amount_threshold:
        reasons.append("amount_above_threshold")
    if state.get("manual_conversion_required"):
        reasons.append("manual_conversion_required")
    if state.get("currency_mismatch"):
        reasons.append("currency_mismatch")
    return reasons


def build_workflow_summary(
    state: AgentState,
    amount_threshold: Optional[int] = None,
    duration_seconds: float = 0.0,
) -> WorkflowSummary:
    invoice = state.get("invoice")
    error = state.get("error")
    action = state.get("action")
    reasons = review_reasons(state, amount_threshold)
    trace = state.get("agent_execution_trace") or {}

    if invoice is None and not error:
        status = "no_invoice"
    elif error:
        status = "error"
    elif action == "auto_book" and state.get("booking_result"):
        status = "completed"
    else:
        status = "review_required"

    errors = [entry["error"] for entry in trace.values() if isinstance(entry, dict) and entry.get("error")]
    if error and error not in errors:
        errors.append(error)

    return WorkflowSummary(
        invoice_id=invoice.id if invoice else None,
        status=status,
        action=action,
        confidence=round(state.get("aggregate_confidence") or 0.0, 2),
        reasons=reasons,
        errors=errors,
        requires_human_intervention=status in ("error", "review_required"),
        is_new_contact=bool(state.get("is_new_contact")),
        manual_conversion_required=bool(state.get("manual_conversion_required")),
        processing_timestamp=state.get("started_at"),
        processing_duration_seconds=duration_seconds,
        agent_execution_trace=trace,
    )


def format_review_message(summary: WorkflowSummary) -> str:
    lines = [
        f"Invoice: {summary.invoice_id or 'n/a'}",
        f"Status: {summary.status}",
        f"Action: {summary.action or 'alert_user'}",
        f"Confidence: {summary.confidence:.1f}%",
    ]
    if summary.reasons:
        lines.append("Reasons: " + ", ".join(summary.reasons))
    if summary.errors:
        lines.append("Errors:")
        lines.extend(f"- {error}" for error in summary.errors)
    return "\n".join(lines)


class ErrorSummary(BaseModel):
    message: str
    count: int = 0
    first_occurred: str
    last_occurred: str


class DailySummary(BaseModel):
    date: str
    invoices_processed: int = 0
    invoices_auto_booked: int = 0
    invoices_requiring_review: int = 0
    errors: List[ErrorSummary] = Field(default_factory=list)
    actions: Dict[str, int] = Field(default_factory=dict)


def generate_daily_summary(store: StateStore, day: Optional[str] = None) -> DailySummary:
    """Aggregate one day (YYYY-MM-DD, default today UTC) of processing log rows."""
    day = day or datetime.now(timezone.utc).date().isoformat()
    logs = store.get_processing_logs(date=day, limit=10000)

    summary = DailySummary(date=day)
    errors: Dict[str, ErrorSummary] = {}
    actions: Dict[str, int] = {}

    for log in logs:
        state: Dict[str, Any] = log.get("state") or {}
        if log.get("invoice_id"):
            summary.invoices_processed += 1

        if log.get("action_taken") == "auto_book":
            summary.invoices_auto_booked += 1
            actions["auto_booked"] = actions.get("auto_booked", 0) + 1
        elif log.get("action_taken") in REVIEW_ACTIONS:
            summary.invoices_requiring_review += 1

        if state.get("contact") and state.get("is_new_contact"):
            actions["contact_created"] = actions.get("contact_created", 0) + 1
        if state.get("booking_result"):
            actions["invoice_updated"] = actions.get("invoice_updated", 0) + 1

        if log.get("error"):
            key = log["error"][:100]
            processed_at = log["processed_at"]
            entry = errors.get(key)
            if entry is None:
                entry = errors[key] = ErrorSummary(
                    message=log["error"], first_occurred=processed_at, last_occurred=processed_at
                )
            entry.count += 1
            entry.first_occurred = min(entry.first_occurred, processed_at)
            entry.last_occurred = max(entry.last_occurred, processed_at)

    summary.errors = sorted(errors.values(), key=lambda e: e.count, reverse=True)
    summary.actions = actions
    return summary


def format_daily_summary(summary: DailySummary) -> str:
    lines = [
        f"Daily summary {summary.date}",
        f"Invoices processed: {summary.invoices_processed}",
        f"Auto-booked: {summary.invoices_auto_booked}",
        f"Requiring review: {summary.invoices_requiring_review}",
    ]
    if summary.actions:
        lines.append("Actions: " + ", ".join(f"{name}={count}" for name, count in sorted(summary.actions.items())))
    if summary.errors:
        lines.append("Errors:")
        lines.extend(f"- ({error.count}x) {error.message}" for error in summary.errors)
    return "\n".join(lines)
