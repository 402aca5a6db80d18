from ticketing.payments.base import OrderRequest, OrderSession, PaymentAttempt, PaymentGateway
from ticketing.payments.cashfree import CashfreeGateway, GatewayConfig, get_payment_gateway

__all__ = [
    "PaymentGateway",
    "OrderRequest",
    "OrderSession",
    "PaymentAttempt",
    "CashfreeGateway",
    "GatewayConfig",
    "get_payment_gateway",
]
