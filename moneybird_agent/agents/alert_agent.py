from typing import Dict, Optional

from moneybird_agent.config.logger import setup_logger
from moneybird_agent.graph.state import AgentState, utc_now
from moneybird_agent.notifications.dispatcher import NotificationDispatcher
from moneybird_agent.notifications.summary import build_workflow_summary
from moneybird_agent.storage.state_store import StateStore

logger = setup_logger("AlertAgent", "alert_agent.log")


class AlertAgent:
    """
    Terminal stage for everything that is not auto-booked.

    With no invoice and no error this is the normal "nothing to do" exit
    and returns quietly. Otherwise the run is logged, the invoice is marked
    processed ("failed" on error, "review" otherwise) and operators are
    notified. Notification is awaited before the stage returns.
    """

    def __init__(
        self,
        store: StateStore,
        notifier: Optional[NotificationDispatcher] = None,
        amount_threshold: Optional[int] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.amount_threshold = amount_threshold

    def run(self, state: AgentState) -> Dict:
        invoice = state.get("invoice")
        error = state.get("error")
        finished_at = utc_now()

        if invoice is None and not error:
            logger.info("Nothing to process")
            return {"current_stage": "alert", "finished_at": finished_at}

        try:
            action = state.get("action") or "alert_user"
            confidence = state.get("aggregate_confidence")
            summary = build_workflow_summary(state, self.amount_threshold)

            self.store.log_processing(
                invoice.id if invoice else None,
                state,
                action_taken=action,
                confidence=confidence,
                error=error,
            )
            if invoice is not None:
                self.store.mark_processed(invoice.id, "failed" if error else "review")

            logger.warning(
                f"Manual review required for invoice {summary.invoice_id}: "
                f"status={summary.status}, reasons={', '.join(summary.reasons) or 'none'}"
            )

            results = self.notifier.notify_review(summary) if self.notifier else {}
            return {"notification_results": results, "current_stage": "alert", "finished_at": finished_at}

        except Exception as e:
            logger.error(f"Alert stage failed: {e}")
            return {"error": f"Alert failed: {e}", "current_stage": "alert", "finished_at": finished_at}
