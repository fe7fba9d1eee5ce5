"""
Notifications Package

- dispatcher: Concurrent fan-out to every configured channel
- email_notifier / telegram_notifier / whatsapp_notifier: Channel senders
- summary: Review reasons, run summaries and the daily summary
"""

from moneybird_agent.notifications.dispatcher import NotificationDispatcher
from moneybird_agent.notifications.summary import (
    DailySummary,
    build_workflow_summary,
    generate_daily_summary,
    review_reasons,
)

__all__ = [
    "NotificationDispatcher",
    "DailySummary",
    "build_workflow_summary",
    "generate_daily_summary",
    "review_reasons",
]
