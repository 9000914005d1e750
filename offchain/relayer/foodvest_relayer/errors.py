"""
Error taxonomy for the deposit relayer.
"""

from typing import Optional


class DepositError(Exception):
    """Base class for deposit pipeline errors."""


class ValidationError(DepositError):
    """Caller-supplied amount or network rejected at intent creation."""


class UpstreamError(DepositError):
    """A chain explorer call failed (transport, HTTP status, parsing, or error payload)."""

    def __init__(self, network: str, message: str, status_code: Optional[int] = None):
        self.network = network
        self.message = message
        self.status_code = status_code
        super().__init__(f"{network}: {message}")


class SettlementError(DepositError):
    """The settlement ledger rejected a balance credit."""

    def __init__(self, user_id: str, message: str):
        self.user_id = user_id
        self.message = message
        super().__init__(message)
