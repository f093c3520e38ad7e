"""Payment error taxonomy.

Every error carries the HTTP status it maps to. The app-level handler in
create_app() renders them as {"error": ...}. Errors flagged `public=False`
are rendered with a generic message; their detail only goes to the log.
"""


class PaymentError(Exception):
    status_code = 500
    public = True
    default_message = "Internal server error"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def public_message(self):
        return self.message if self.public else self.default_message


class ConfigurationError(PaymentError):
    """A secret or credential is missing. Always fail closed."""

    public = False
    default_message = "Payment service is not configured"


class ValidationError(PaymentError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(PaymentError):
    status_code = 404
    default_message = "Not found"


class PlanNotFound(NotFoundError):
    default_message = "Subscription plan not found"


class UserNotFound(NotFoundError):
    default_message = "User profile not found"


class OrderNotFound(NotFoundError):
    default_message = "Order not found"


class SignatureMismatchError(PaymentError):
    """Untrusted input failed HMAC verification.

    The message is fixed so callers never learn which part differed.
    """

    status_code = 401
    default_message = "Invalid signature"

    def __init__(self, message=None):
        super().__init__(self.default_message)


class GatewayError(PaymentError):
    """Razorpay call failed. `upstream_status` is the HTTP status Razorpay
    answered with, or None for transport failures."""

    status_code = 502
    public = False
    default_message = "Payment gateway error"

    def __init__(self, message=None, upstream_status=None):
        super().__init__(message)
        self.upstream_status = upstream_status


class GatewayTimeout(GatewayError):
    status_code = 504
    default_message = "Payment gateway timed out"


class WriteFailure(PaymentError):
    public = False
    default_message = "Failed to save payment records"

    def __init__(self, step, message=None):
        super().__init__(message or f"Write failed at step: {step}")
        self.step = step


class PartialWriteError(WriteFailure):
    """A multi-table finalize failed part way; everything was rolled back."""
