"""Payment pipeline error taxonomy.

Every error carries the HTTP status the API answers with; the app-level
handler in chatfood.main turns them into the standard JSON error body.
Reconciliation anomalies are not exceptions: see chatfood.services.reconcile.Outcome.
"""


class PaymentError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(PaymentError):
    """Bad request shape or values. Never retried."""

    status_code = 400


class InvalidLineItem(ValidationError):
    pass


class EmptyOrder(ValidationError):
    pass


class InvalidFeePercent(ValidationError):
    pass


class MerchantNotFound(PaymentError):
    status_code = 404


class PaymentsNotEnabled(PaymentError):
    """Merchant is not eligible for online payments."""

    status_code = 400


class ProcessorError(PaymentError):
    """Outbound call to the payment processor failed."""

    status_code = 502

    def __init__(self, message: str = "", declined: bool = False):
        super().__init__(message)
        self.declined = declined


class OrderCreationFailed(PaymentError):
    status_code = 500


class SignatureInvalid(PaymentError):
    status_code = 400


class OrderNotFound(PaymentError):
    status_code = 404


class OrderNotFulfillable(PaymentError):
    status_code = 409


class InvalidStatusTransition(PaymentError):
    status_code = 409


class StaleOrderState(PaymentError):
    """The order changed between read and conditional update."""

    status_code = 409
