"""
backend/app/services/errors.py

Purpose:
    Domain exceptions raised by result declaration and settlement. Routers
    translate them into HTTP errors; workers log them.
"""


class SettlementError(Exception):
    """Base class for settlement-domain failures."""


class InvalidResultError(SettlementError, ValueError):
    """Raised when a winning number is not exactly two decimal digits."""


class MalformedSelectionError(SettlementError):
    """Raised when a stored bet cannot be normalized into a selection."""

    def __init__(self, bet_id: str, reason: str):
        super().__init__(f"Malformed bet {bet_id}: {reason}")
        self.bet_id = bet_id
        self.reason = reason


class DrawMismatchError(SettlementError):
    """Raised when a bet is evaluated against another draw's result."""


class ResultNotDeclaredError(SettlementError):
    """Raised when settlement is requested for a draw without a result."""


class ResultAlreadyDeclaredError(SettlementError):
    """Raised when a second result is declared for the same draw."""


class SettlementInProgressError(SettlementError, RuntimeError):
    """Raised when another settlement run holds the draw's lock."""
