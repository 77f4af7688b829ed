"""Domain errors raised by the services.

Every error carries a short machine-readable ``rule`` and a human message,
the same shape the booking violations have always used. The HTTP layer maps
each class to a status code in ``staybook.main``.
"""


class StayBookError(Exception):
    """Base class for all domain errors."""

    rule = "error"

    def __init__(self, message: str, rule: str | None = None):
        self.message = message
        if rule is not None:
            self.rule = rule
        super().__init__(message)


class ValidationError(StayBookError):
    """Malformed input, price mismatch, unsupported stay shape."""

    rule = "validation"


class NotFoundError(StayBookError):
    """Hotel, room, booking, payment or refund absent."""

    rule = "not_found"


class ConflictError(StayBookError):
    """Room double-booked, coupon over-used, payment already processed."""

    rule = "conflict"


class ForbiddenError(StayBookError):
    """Actor is not allowed to act on this booking or refund."""

    rule = "forbidden"


class GatewayError(StayBookError):
    """Bad signature, amount mismatch, capture not confirmed. No money is considered moved."""

    rule = "gateway"


class InsufficientBalanceError(StayBookError):
    """Wallet debit would take the balance below zero."""

    rule = "insufficient_balance"

    def __init__(self, balance_paise: int, requested_paise: int):
        self.balance_paise = balance_paise
        self.requested_paise = requested_paise
        super().__init__(
            f"Wallet balance {balance_paise} paise is less than the requested {requested_paise} paise."
        )


class SignatureError(ValidationError):
    """Webhook signature does not match the raw body."""

    rule = "webhook_signature"
