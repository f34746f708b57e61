from .error_log import ErrorLog
from .merchant_account import MerchantAccount
from .order import Order
from .payment_event import PaymentEventLog
from .restaurant import Restaurant
from .security_log import SecurityLog

__all__ = [
    "ErrorLog",
    "MerchantAccount",
    "Order",
    "PaymentEventLog",
    "Restaurant",
    "SecurityLog",
]
