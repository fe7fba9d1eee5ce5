from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional

from moneybird_agent.config.logger import setup_logger
from moneybird_agent.config.settings import Settings
from moneybird_agent.models.output_schema import WorkflowSummary
from moneybird_agent.notifications.base import NotificationChannel
from moneybird_agent.notifications.email_notifier import EmailNotifier
from moneybird_agent.notifications.summary import DailySummary, format_daily_summary, format_review_message
from moneybird_agent.notifications.telegram_notifier import TelegramNotifier
from moneybird_agent.notifications.whatsapp_notifier import WhatsAppNotifier

logger = setup_logger("NotificationDispatcher", "notifications.log")

SENT = "sent"
SKIPPED = "skipped"


class NotificationDispatcher:
    """
    Fans one message out to every channel concurrently.

    An unconfigured channel is skipped. A failing channel is logged and
    reported in the result map; it never stops the others.
    """

    def __init__(self, channels: Optional[List[NotificationChannel]] = None):
        self.channels = channels or []

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationDispatcher":
        return cls([
            EmailNotifier(settings.email),
            TelegramNotifier(settings.telegram),
            WhatsAppNotifier(settings.whatsapp),
        ])

    def dispatch(self, subject: str, text: str, html: Optional[str] = None) -> Dict[str, str]:
        results = {channel.name: SKIPPED for channel in self.channels if not channel.configured}
        active = [channel for channel in self.channels if channel.configured]
        if not active:
            logger.debug("No notification channels configured")
            return results

        with ThreadPoolExecutor(max_workers=len(active)) as executor:
            futures = {executor.submit(channel.send, subject, text, html): channel for channel in active}
            for future in as_completed(futures):
                channel = futures[future]
                try:
                    future.result()
                    results[channel.name] = SENT
                    logger.info(f"Notification sent via {channel.name}")
                except Exception as e:
                    results[channel.name] = f"failed: {e}"
                    logger.error(f"Notification via {channel.name} failed: {e}")
        return results

    def notify_review(self, summary: WorkflowSummary) -> Dict[str, str]:
        if summary.status == "error":
            subject = f"Invoice processing error ({summary.invoice_id or 'no invoice'})"
        else:
            subject = f"Invoice {summary.invoice_id} needs review"
        return self.dispatch(subject, format_review_message(summary))

    def send_daily_summary(self, summary: DailySummary) -> Dict[str, str]:
        return self.dispatch(f"Moneybird agent daily summary {summary.date}", format_daily_summary(summary))
