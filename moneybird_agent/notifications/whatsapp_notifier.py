from typing import Optional

import requests

from moneybird_agent.config.settings import WhatsAppSettings
from moneybird_agent.notifications.base import NotificationChannel, fan_out

TWILIO_API = "https://api.twilio.com/2010-04-01"
MAX_MESSAGE_LENGTH = 1600


def _whatsapp_address(number: str) -> str:
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


class WhatsAppNotifier(NotificationChannel):
    """WhatsApp messages through the Twilio Messages API."""

    name = "whatsapp"

    def __init__(self, settings: WhatsAppSettings, http: Optional[requests.Session] = None, timeout: int = 15):
        self.settings = settings
        self.http = http or requests.Session()
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return self.settings.configured

    def send(self, subject: str, text: str, html: Optional[str] = None):
        body = f"*{subject}*\n\n{text}"[:MAX_MESSAGE_LENGTH]
        url = f"{TWILIO_API}/Accounts/{self.settings.account_sid}/Messages.json"

        def send_one(recipient: str):
            response = self.http.post(
                url,
                data={
                    "From": _whatsapp_address(self.settings.sender),
                    "To": _whatsapp_address(recipient),
                    "Body": body,
                },
                auth=(self.settings.account_sid, self.settings.auth_token),
                timeout=self.timeout,
            )
            response.raise_for_status()

        fan_out(self.name, self.settings.recipients, send_one)
