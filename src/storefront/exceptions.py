"""Domain errors raised by the pricing, reservation and lifecycle engine.

Recoverable errors extend protean's ``ValidationError`` so that the HTTP layer
and callers treat them like any other rejected request, while still carrying
the structured detail (offending product, conflicting statuses) a caller needs
to correct the request.
"""

from protean.exceptions import InvalidOperationError, ValidationError


class PromotionInvalid(ValidationError):
    """A promotion code is unknown or fails its validity predicate."""

    def __init__(self, code, reason):
        self.code = code
        self.reason = reason
        super().__init__({"promotion_code": [f"Promotion {code!r} is not applicable: {reason}"]})


class OutOfStock(ValidationError):
    """Not enough unreserved stock to satisfy a line; names the first failing product."""

    def __init__(self, product_ref, requested, available):
        self.product_ref = product_ref
        self.requested = requested
        self.available = available
        super().__init__(
            {"stock": [f"Insufficient stock for {product_ref}: {available} available, {requested} requested"]}
        )


class InvalidTransition(ValidationError):
    """An order status change that the lifecycle does not allow."""

    def __init__(self, from_status, to_status, reason=None):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot transition from {from_status} to {to_status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__({"status": [message]})


class CurrencyMismatch(InvalidOperationError):
    """Two amounts in different currencies were combined."""

    def __init__(self, left, right):
        self.left = left
        self.right = right
        super().__init__(f"Cannot combine amounts in {left} and {right}")
