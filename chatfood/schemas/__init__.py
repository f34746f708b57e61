from .auth import MerchantCreate, MerchantLogin, MerchantResponse, Token
from .checkout import AddOn, CheckoutRequest, CheckoutResponse, LineItem, PaymentAvailability

__all__ = [
    "AddOn",
    "CheckoutRequest",
    "CheckoutResponse",
    "LineItem",
    "MerchantCreate",
    "MerchantLogin",
    "MerchantResponse",
    "PaymentAvailability",
    "Token",
]
