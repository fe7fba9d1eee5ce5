import sys
import logging

def error_message_detail(error: Exception, error_detail: sys) -> str:
    """
    Build an error message carrying the file name and line number of the
    exception currently being handled.

    Args:
        error (Exception): The exception that occurred.
        error_detail (sys): The sys module to access traceback details.

    Returns:
        str: Formatted error message string.
    """
    _, _, exc_tb = error_detail.exc_info()

    if exc_tb is not None:
        file_name = exc_tb.tb_frame.f_code.co_filename
        line_number = exc_tb.tb_lineno
        error_message = (
            f"Error occurred in file: [{file_name}] "
            f"at line number [{line_number}] "
            f"with error: {str(error)}"
        )
    else:
        error_message = f"Error occurred: {str(error)} (no traceback available)"

    logging.error(error_message)
    return error_message


class AppException(Exception):
    """
    Application-level exception used when a component fails to start or an
    entry point cannot complete.
    """

    def __init__(self, error_message: str, error_detail: sys):
        super().__init__(error_message)
        self.error_message = error_message_detail(error_message, error_detail)

    def __str__(self) -> str:
        return self.error_message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.error_message})"


class MoneybirdAgentError(Exception):
    """Base class for errors raised while processing an invoice."""


class ConfigurationError(MoneybirdAgentError):
    """A required setting is missing or invalid. Fatal at startup."""


class PlatformToolError(MoneybirdAgentError):
    """A bookkeeping platform operation failed or is not offered."""

    def __init__(self, message: str, operation: str = None):
        super().__init__(message)
        self.operation = operation


class StateConflictError(PlatformToolError):
    """The platform refused a write because of the invoice lifecycle state."""


class ModelOutputError(MoneybirdAgentError):
    """A language model response did not contain a JSON object."""


def is_state_conflict(message: str) -> bool:
    """True when a platform error message signals a lifecycle-state rejection."""
    if not message:
        return False
    return "422" in message or "unprocessable" in message.lower()
