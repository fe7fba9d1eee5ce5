from typing import Annotated, Any, Dict, List, Optional, TypedDict, get_args, get_type_hints
from datetime import datetime, timezone

from moneybird_agent.models.platform import (
    Contact,
    Decision,
    Extraction,
    Invoice,
    LedgerAccount,
    Transaction,
)


def keep_present(current: Any, update: Any) -> Any:
    """Field-wise overwrite: the last non-absent value wins."""
    return current if update is None else update


def sticky_true(current: bool, update: bool) -> bool:
    """Once set within a run a flag is never cleared."""
    return bool(current) or bool(update)


DECISION_FIELDS = (
    "contact_decision",
    "validation_decision",
    "classification_decision",
    "match_decision",
)


class AgentState(TypedDict):
    # Platform projection
    invoice: Annotated[Optional[Invoice], keep_present]
    contact: Annotated[Optional[Contact], keep_present]
    missing_fields: Annotated[Optional[List[str]], keep_present]
    document_path: Annotated[Optional[str], keep_present]

    # Extraction
    extraction: Annotated[Optional[Extraction], keep_present]
    currency_mismatch: Annotated[Optional[str], keep_present]

    # Contact resolution
    is_new_contact: Annotated[bool, sticky_true]
    manual_conversion_required: Annotated[bool, sticky_true]

    # Decision records
    contact_decision: Annotated[Optional[Decision], keep_present]
    validation_decision: Annotated[Optional[Decision], keep_present]
    classification_decision: Annotated[Optional[Decision], keep_present]
    match_decision: Annotated[Optional[Decision], keep_present]

    amount_validation: Annotated[Optional[Dict[str, Any]], keep_present]
    kostenpost: Annotated[Optional[LedgerAccount], keep_present]
    matched_transaction: Annotated[Optional[Transaction], keep_present]

    # Gate
    aggregate_confidence: Annotated[Optional[float], keep_present]
    action: Annotated[Optional[str], keep_present]

    # Terminal stages
    booking_result: Annotated[Optional[Dict[str, Any]], keep_present]
    notification_results: Annotated[Optional[Dict[str, str]], keep_present]

    # Control flow / metadata
    error: Annotated[Optional[str], keep_present]
    current_stage: Annotated[Optional[str], keep_present]
    started_at: Annotated[Optional[str], keep_present]
    finished_at: Annotated[Optional[str], keep_present]
    agent_execution_trace: Annotated[Optional[Dict[str, Any]], keep_present]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def create_initial_state(document_path: Optional[str] = None) -> AgentState:
    """Fresh accumulator for one run."""
    return AgentState(
        invoice=None,
        contact=None,
        missing_fields=None,
        document_path=document_path,
        extraction=None,
        currency_mismatch=None,
        is_new_contact=False,
        manual_conversion_required=False,
        contact_decision=None,
        validation_decision=None,
        classification_decision=None,
        match_decision=None,
        amount_validation=None,
        kostenpost=None,
        matched_transaction=None,
        aggregate_confidence=None,
        action=None,
        booking_result=None,
        notification_results=None,
        error=None,
        current_stage="start",
        started_at=utc_now(),
        finished_at=None,
        agent_execution_trace={},
    )


def _reducers() -> Dict[str, Any]:
    hints = get_type_hints(AgentState, include_extras=True)
    reducers = {}
    for name, hint in hints.items():
        args = get_args(hint)
        reducers[name] = args[1] if len(args) > 1 else keep_present
    return reducers


REDUCERS = _reducers()


def merge_state(state: Dict[str, Any], update: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Apply a stage's partial update with the same reducers the graph uses."""
    merged = dict(state)
    for key, value in (update or {}).items():
        reducer = REDUCERS.get(key, keep_present)
        merged[key] = reducer(merged.get(key), value)
    return merged


def present_decisions(state: Dict[str, Any]) -> List[Decision]:
    return [state[name] for name in DECISION_FIELDS if state.get(name) is not None]
