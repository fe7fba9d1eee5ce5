from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional

from moneybird_agent.config.logger import setup_logger

logger = setup_logger("Notifications", "notifications.log")


class DeliveryError(Exception):
    """One or more recipients of a channel could not be reached."""

    def __init__(self, channel: str, failures: Dict[str, str]):
        self.channel = channel
        self.failures = failures
        details = "; ".join(f"{recipient}: {error}" for recipient, error in failures.items())
        super().__init__(f"{channel} delivery failed for {len(failures)} recipient(s): {details}")


def fan_out(channel: str, recipients: List[str], send_one: Callable[[str], None], max_workers: int = 4):
    """
    Send to every recipient concurrently.

    All recipients are attempted; failures are collected and raised
    together as a DeliveryError once every send has finished.
    """
    failures: Dict[str, str] = {}
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(recipients)))) as executor:
        futures = {executor.submit(send_one, recipient): recipient for recipient in recipients}
        for future in as_completed(futures):
            recipient = futures[future]
            try:
                future.result()
            except Exception as e:
                logger.warning(f"{channel}: delivery to {recipient} failed: {e}")
                failures[recipient] = str(e)
    if failures:
        raise DeliveryError(channel, failures)


class NotificationChannel:
    """A destination for operator messages."""

    name = "channel"

    @property
    def configured(self) -> bool:
        raise NotImplementedError

    def send(self, subject: str, text: str, html: Optional[str] = None):
        raise NotImplementedError
