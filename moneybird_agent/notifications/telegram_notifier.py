import html as html_lib
from typing import Optional

import requests

from moneybird_agent.config.settings import TelegramSettings
from moneybird_agent.notifications.base import NotificationChannel, fan_out

TELEGRAM_API = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4096


class TelegramNotifier(NotificationChannel):
    """Bot API sendMessage to each configured chat."""

    name = "telegram"

    def __init__(self, settings: TelegramSettings, http: Optional[requests.Session] = None, timeout: int = 15):
        self.settings = settings
        self.http = http or requests.Session()
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return self.settings.configured

    def send(self, subject: str, text: str, html: Optional[str] = None):
        body = f"<b>{html_lib.escape(subject)}</b>\n\n{html_lib.escape(text)}"[:MAX_MESSAGE_LENGTH]
        url = f"{TELEGRAM_API}/bot{self.settings.bot_token}/sendMessage"

        def send_one(chat_id: str):
            response = self.http.post(
                url,
                json={"chat_id": chat_id, "text": body, "parse_mode": "HTML", "disable_web_page_preview": True},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
            if not payload.get("ok", False):
                raise RuntimeError(payload.get("description", "Telegram rejected the message"))

        fan_out(self.name, self.settings.chat_ids, send_one)
