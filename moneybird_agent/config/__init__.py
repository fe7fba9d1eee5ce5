"""
Configuration Package

Contains configuration utilities:
- settings: Environment-driven Settings model
- logger: Logging setup with file rotation
- exception: Application and pipeline exceptions
"""

from moneybird_agent.config.logger import setup_logger
from moneybird_agent.config.exception import (
    AppException,
    ConfigurationError,
    ModelOutputError,
    MoneybirdAgentError,
    PlatformToolError,
    StateConflictError,
    error_message_detail,
)
from moneybird_agent.config.settings import Settings, load_settings

__all__ = [
    "setup_logger",
    "AppException",
    "ConfigurationError",
    "ModelOutputError",
    "MoneybirdAgentError",
    "PlatformToolError",
    "StateConflictError",
    "error_message_detail",
    "Settings",
    "load_settings",
]
