"""
Error taxonomy for the marketplace.

Every failure that crosses a module boundary is one of these. The HTTP layer
maps them to JSON responses; the catalog controller and the client stores map
them to error states and notices.
"""
from typing import Any, Dict, Optional


class MarketError(Exception):
    kind = "error"
    status_code = 500
    message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"detail": self.message, "error": self.kind}
        body.update({k: v for k, v in self.context.items() if v is not None})
        return body


class DataUnavailable(MarketError):
    kind = "data_unavailable"
    status_code = 503
    message = "The store is unavailable right now, please retry"


class ValidationFailure(MarketError):
    kind = "validation_failure"
    status_code = 422
    message = "Invalid input"


class AuthRequired(MarketError):
    kind = "auth_required"
    status_code = 401
    message = "Please sign in to continue"

    def __init__(self, message: Optional[str] = None, redirect_to: Optional[str] = None):
        super().__init__(message, redirect_to=redirect_to)
        self.redirect_to = redirect_to


class Forbidden(MarketError):
    kind = "forbidden"
    status_code = 403
    message = "Not allowed"


class NotFound(MarketError):
    kind = "not_found"
    status_code = 404
    message = "Not found"


class CheckoutFailure(MarketError):
    kind = "checkout_failure"
    status_code = 502
    message = (
        "We could not complete your order. If you were charged, "
        "contact support with your payment reference."
    )

    def __init__(self, message: Optional[str] = None, payment_ref: Optional[str] = None,
                 order_id: Optional[str] = None):
        super().__init__(message, payment_ref=payment_ref, order_id=order_id)
        self.payment_ref = payment_ref
        self.order_id = order_id
