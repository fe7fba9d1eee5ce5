import smtplib
from email.message import EmailMessage
from typing import Optional

from moneybird_agent.config.settings import EmailSettings
from moneybird_agent.notifications.base import NotificationChannel, fan_out

SMTPS_PORT = 465


class EmailNotifier(NotificationChannel):
    """SMTP delivery, one message per recipient."""

    name = "email"

    def __init__(self, settings: EmailSettings, timeout: int = 30):
        self.settings = settings
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return self.settings.configured

    def send(self, subject: str, text: str, html: Optional[str] = None):
        def send_one(recipient: str):
            message = EmailMessage()
            message["Subject"] = subject
            message["From"] = self.settings.sender
            message["To"] = recipient
            message.set_content(text)
            if html:
                message.add_alternative(html, subtype="html")

            implicit_tls = self.settings.smtp_port == SMTPS_PORT
            smtp_class = smtplib.SMTP_SSL if implicit_tls else smtplib.SMTP
            with smtp_class(self.settings.smtp_host, self.settings.smtp_port, timeout=self.timeout) as smtp:
                if not implicit_tls and self.settings.smtp_port != 25:
                    smtp.starttls()
                if self.settings.smtp_user:
                    smtp.login(self.settings.smtp_user, self.settings.smtp_password or "")
                smtp.send_message(message)

        fan_out(self.name, self.settings.recipients, send_one)
