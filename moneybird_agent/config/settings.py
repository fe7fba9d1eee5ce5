from typing import List, Optional
from dotenv import load_dotenv
from pydantic import BaseModel, Field
import os

from moneybird_agent.config.exception import ConfigurationError
from moneybird_agent.config.logger import setup_logger

logger = setup_logger("Settings", "settings.log")

DEFAULT_MCP_SERVER_URL = "https://moneybird.com/mcp/v1/read_write"
DEFAULT_API_BASE = "https://moneybird.com/api/v2"

REQUIRED_ENV = [
    "GROQ_API_KEY",
    "MCP_SERVER_AUTH_TOKEN",
    "MONEYBIRD_ADMINISTRATION_ID",
]


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class EmailSettings(BaseModel):
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    sender: Optional[str] = None
    recipients: List[str] = Field(default_factory=list)

    @property
    def configured(self) -> bool:
        return bool(self.smtp_host and self.sender and self.recipients)


class TelegramSettings(BaseModel):
    bot_token: Optional[str] = None
    chat_ids: List[str] = Field(default_factory=list)

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_ids)


class WhatsAppSettings(BaseModel):
    account_sid: Optional[str] = None
    auth_token: Optional[str] = None
    sender: Optional[str] = None
    recipients: List[str] = Field(default_factory=list)

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.sender and self.recipients)


class Settings(BaseModel):
    """Runtime configuration for the invoice pipeline."""

    groq_api_key: str
    mcp_server_url: str = DEFAULT_MCP_SERVER_URL
    mcp_auth_token: str
    administration_id: str
    moneybird_access_token: Optional[str] = None
    moneybird_api_base: str = DEFAULT_API_BASE

    llm_model: str = "openai/gpt-oss-120b"
    vision_model: str = "meta-llama/llama-4-scout-17b-16e-instruct"

    confidence_auto_threshold: float = 95
    confidence_review_threshold: float = 80
    amount_review_threshold: int = 100000  # minor units

    database_path: str = "./data/moneybird-agent.db"
    run_interval_minutes: int = 60
    daily_summary_time: str = "18:00"

    email: EmailSettings = Field(default_factory=EmailSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    whatsapp: WhatsAppSettings = Field(default_factory=WhatsAppSettings)

    @property
    def rest_token(self) -> str:
        """Bearer token used for direct REST calls to the platform."""
        return self.moneybird_access_token or self.mcp_auth_token


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Load settings from the environment (and a .env file if present).

    Raises:
        ConfigurationError: when a required variable is missing or the
            confidence thresholds are inconsistent.
    """
    load_dotenv(env_file)

    missing = [name for name in REQUIRED_ENV if not os.getenv(name)]
    if missing:
        logger.error(f"Missing required configuration: {', '.join(missing)}")
        raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

    try:
        settings = Settings(
            groq_api_key=os.getenv("GROQ_API_KEY"),
            mcp_server_url=os.getenv("MCP_SERVER_URL", DEFAULT_MCP_SERVER_URL),
            mcp_auth_token=os.getenv("MCP_SERVER_AUTH_TOKEN"),
            administration_id=os.getenv("MONEYBIRD_ADMINISTRATION_ID"),
            moneybird_access_token=os.getenv("MONEYBIRD_ACCESS_TOKEN") or None,
            moneybird_api_base=os.getenv("MONEYBIRD_API_BASE", DEFAULT_API_BASE),
            llm_model=os.getenv("LLM_MODEL", "openai/gpt-oss-120b"),
            vision_model=os.getenv("VISION_MODEL", "meta-llama/llama-4-scout-17b-16e-instruct"),
            confidence_auto_threshold=float(os.getenv("CONFIDENCE_AUTO_THRESHOLD", "95")),
            confidence_review_threshold=float(os.getenv("CONFIDENCE_REVIEW_THRESHOLD", "80")),
            amount_review_threshold=int(os.getenv("AMOUNT_REVIEW_THRESHOLD", "100000")),
            database_path=os.getenv("DATABASE_PATH", "./data/moneybird-agent.db"),
            run_interval_minutes=int(os.getenv("RUN_INTERVAL_MINUTES", "60")),
            daily_summary_time=os.getenv("DAILY_SUMMARY_TIME", "18:00"),
            email=EmailSettings(
                smtp_host=os.getenv("EMAIL_SMTP_HOST"),
                smtp_port=int(os.getenv("EMAIL_SMTP_PORT", "587")),
                smtp_user=os.getenv("EMAIL_SMTP_USER"),
                smtp_password=os.getenv("EMAIL_SMTP_PASSWORD"),
                sender=os.getenv("EMAIL_FROM"),
                recipients=_split_list(os.getenv("EMAIL_TO")),
            ),
            telegram=TelegramSettings(
                bot_token=os.getenv("TELEGRAM_BOT_TOKEN"),
                chat_ids=_split_list(os.getenv("TELEGRAM_CHAT_IDS")),
            ),
            whatsapp=WhatsAppSettings(
                account_sid=os.getenv("TWILIO_ACCOUNT_SID"),
                auth_token=os.getenv("TWILIO_AUTH_TOKEN"),
                sender=os.getenv("TWILIO_WHATSAPP_FROM"),
                recipients=_split_list(os.getenv("WHATSAPP_TO")),
            ),
        )
    except ValueError as e:
        logger.error(f"Invalid configuration value: {e}")
        raise ConfigurationError(f"Invalid configuration value: {e}") from e

    if settings.confidence_review_threshold > settings.confidence_auto_threshold:
        raise ConfigurationError(
            "CONFIDENCE_REVIEW_THRESHOLD must not exceed CONFIDENCE_AUTO_THRESHOLD"
        )

    logger.info("Configuration loaded")
    return settings
