import threading
from unittest.mock import MagicMock, patch

import pytest

from moneybird_agent.config.settings import EmailSettings, TelegramSettings, WhatsAppSettings
from moneybird_agent.graph.state import create_initial_state, merge_state
from moneybird_agent.models.platform import Contact, Decision, Invoice
from moneybird_agent.notifications.base import DeliveryError, NotificationChannel, fan_out
from moneybird_agent.notifications.dispatcher import NotificationDispatcher
from moneybird_agent.notifications.email_notifier import EmailNotifier
from moneybird_agent.notifications.summary import (
    build_workflow_summary,
    generate_daily_summary,
    review_reasons,
)
from moneybird_agent.notifications.telegram_notifier import TelegramNotifier
from moneybird_agent.notifications.whatsapp_notifier import WhatsAppNotifier


class StubChannel(NotificationChannel):
    def __init__(self, name, configured=True, error=None):
        self.name = name
        self._configured = configured
        self.error = error
        self.sent = []

    @property
    def configured(self):
        return self._configured

    def send(self, subject, text, html=None):
        if self.error:
            raise self.error
        self.sent.append(subject)


def test_failing_channel_does_not_block_others():
    ok = StubChannel("email")
    broken = StubChannel("telegram", error=RuntimeError("bot blocked"))
    idle = StubChannel("whatsapp", configured=False)

    results = NotificationDispatcher([ok, broken, idle]).dispatch("Subject", "Body")

    assert results == {"email": "sent", "telegram": "failed: bot blocked", "whatsapp": "skipped"}
    assert ok.sent == ["Subject"]


def test_fan_out_attempts_every_recipient():
    delivered = []
    lock = threading.Lock()

    def send_one(recipient):
        if recipient == "bad":
            raise ValueError("rejected")
        with lock:
            delivered.append(recipient)

    with pytest.raises(DeliveryError) as excinfo:
        fan_out("email", ["a", "bad", "b"], send_one)

    assert sorted(delivered) == ["a", "b"]
    assert excinfo.value.failures == {"bad": "rejected"}


def test_telegram_posts_to_each_chat():
    http = MagicMock()
    http.post.return_value.json.return_value = {"ok": True}
    notifier = TelegramNotifier(TelegramSettings(bot_token="T0K", chat_ids=["1", "2"]), http=http)

    notifier.send("Invoice <INV1>", "needs review")

    assert http.post.call_count == 2
    url = http.post.call_args.args[0]
    payload = http.post.call_args.kwargs["json"]
    assert url == "https://api.telegram.org/botT0K/sendMessage"
    assert payload["parse_mode"] == "HTML"
    assert "&lt;INV1&gt;" in payload["text"]


def test_telegram_rejection_is_a_failure():
    http = MagicMock()
    http.post.return_value.json.return_value = {"ok": False, "description": "chat not found"}
    notifier = TelegramNotifier(TelegramSettings(bot_token="T0K", chat_ids=["1"]), http=http)

    with pytest.raises(DeliveryError):
        notifier.send("s", "t")


def test_whatsapp_uses_twilio_messages_api():
    http = MagicMock()
    settings = WhatsAppSettings(account_sid="AC1", auth_token="secret", sender="+3110", recipients=["+3161"])

    WhatsAppNotifier(settings, http=http).send("Subject", "Body")

    url = http.post.call_args.args[0]
    kwargs = http.post.call_args.kwargs
    assert url == "https://api.twilio.com/2010-04-01/Accounts/AC1/Messages.json"
    assert kwargs["data"]["From"] == "whatsapp:+3110"
    assert kwargs["data"]["To"] == "whatsapp:+3161"
    assert kwargs["auth"] == ("AC1", "secret")


def test_email_sends_one_message_per_recipient():
    settings = EmailSettings(
        smtp_host="smtp.example.com",
        smtp_user="agent",
        smtp_password="pw",
        sender="agent@example.com",
        recipients=["a@example.com", "b@example.com"],
    )
    with patch("moneybird_agent.notifications.email_notifier.smtplib.SMTP") as smtp_cls:
        EmailNotifier(settings).send("Subject", "Body")

    smtp = smtp_cls.return_value.__enter__.return_value
    assert smtp.send_message.call_count == 2
    smtp.starttls.assert_called()
    smtp.login.assert_called_with("agent", "pw")


def test_email_on_port_465_uses_implicit_tls():
    settings = EmailSettings(
        smtp_host="smtp.example.com",
        smtp_port=465,
        sender="agent@example.com",
        recipients=["a@example.com"],
    )
    with patch("moneybird_agent.notifications.email_notifier.smtplib.SMTP_SSL") as ssl_cls, \
            patch("moneybird_agent.notifications.email_notifier.smtplib.SMTP") as plain_cls:
        EmailNotifier(settings).send("Subject", "Body")

    ssl_cls.assert_called_once_with("smtp.example.com", 465, timeout=30)
    plain_cls.assert_not_called()
    smtp = ssl_cls.return_value.__enter__.return_value
    smtp.starttls.assert_not_called()
    assert smtp.send_message.call_count == 1


def test_unconfigured_channels():
    assert not EmailSettings(smtp_host="smtp.example.com").configured
    assert not TelegramSettings(bot_token="x").configured
    assert WhatsAppSettings(account_sid="a", auth_token="b", sender="c", recipients=["d"]).configured


def test_review_reasons():
    state = merge_state(create_initial_state(), {
        "invoice": Invoice(id="INV1", amount_incl_tax=250000),
        "is_new_contact": True,
        "contact_decision": Decision(confidence=30, requires_review=True),
        "validation_decision": Decision(confidence=95),
        "match_decision": Decision(confidence=0, requires_review=True),
        "manual_conversion_required": True,
    })

    assert review_reasons(state, amount_threshold=100000) == [
        "new_supplier",
        "contact_match_low_confidence",
        "transaction_match_uncertain",
        "amount_above_threshold",
        "manual_conversion_required",
    ]


def test_workflow_summary_statuses():
    empty = create_initial_state()
    assert build_workflow_summary(empty).status == "no_invoice"

    failed = merge_state(empty, {"error": "Invoice detection failed: timeout"})
    summary = build_workflow_summary(failed)
    assert summary.status == "error"
    assert summary.errors == ["Invoice detection failed: timeout"]
    assert summary.requires_human_intervention is True

    booked = merge_state(empty, {
        "invoice": Invoice(id="INV1"),
        "action": "auto_book",
        "aggregate_confidence": 96.666,
        "booking_result": {"invoice_id": "INV1"},
    })
    summary = build_workflow_summary(booked)
    assert summary.status == "completed"
    assert summary.confidence == 96.67


def test_daily_summary(store):
    invoice = Invoice(id="INV1")
    booked = merge_state(create_initial_state(), {"invoice": invoice, "booking_result": {"invoice_id": "INV1"}})
    new_supplier = merge_state(create_initial_state(), {
        "invoice": Invoice(id="INV2"),
        "contact": Contact(id="C9", company_name="Globex"),
        "is_new_contact": True,
    })
    store.log_processing("INV1", booked, action_taken="auto_book", confidence=97)
    store.log_processing("INV2", new_supplier, action_taken="alert_user", confidence=70)
    store.log_processing("INV3", create_initial_state(), action_taken="alert_user", error="Extraction failed: x")
    store.log_processing(None, create_initial_state(), action_taken="alert_user", error="Extraction failed: x")

    summary = generate_daily_summary(store)

    assert summary.invoices_processed == 3
    assert summary.invoices_auto_booked == 1
    assert summary.invoices_requiring_review == 3
    assert summary.actions == {"auto_booked": 1, "invoice_updated": 1, "contact_created": 1}
    assert len(summary.errors) == 1
    assert summary.errors[0].count == 2
