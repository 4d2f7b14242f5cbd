"""
Sender Exception Hierarchy
"""
from typing import Optional


class SenderError(Exception):
    """
    Base class for InfluxDB sender errors

    Attributes:
        message: Human-readable error message
        sender_name: Name of the sender that failed
        original_error: Original exception if wrapped
    """

    def __init__(
        self,
        message: str,
        sender_name: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.sender_name = sender_name
        self.original_error = original_error

    def __str__(self):
        if self.sender_name:
            return f"{self.message} (sender: {self.sender_name})"
        return self.message


class SenderConfigurationError(SenderError):
    """
    Sender cannot be built from the given configuration

    Examples: empty host, port out of range, unknown protocol
    """


class UnsupportedModeError(SenderConfigurationError):
    """Configured mode is not one of http, tcp or udp"""

    def __init__(self, mode: str):
        super().__init__(f"Unsupported InfluxDB sender mode '{mode}', expected http, tcp or udp")
        self.mode = mode
