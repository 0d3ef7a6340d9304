"""
Payment gateway abstraction layer.

Provides a unified interface for interacting with different payment providers.
"""

from .base import BasePaymentGateway, GatewayResponse, GatewayException
from .coinpayments import CoinpaymentsGateway
from .razorpay_gateway import RazorpayGateway
from .stripe_gateway import StripeGateway
from .factory import get_gateway, get_gateway_for, register_gateway, list_available_gateways

__all__ = [
    'BasePaymentGateway',
    'GatewayResponse',
    'GatewayException',
    'CoinpaymentsGateway',
    'RazorpayGateway',
    'StripeGateway',
    'get_gateway',
    'get_gateway_for',
    'register_gateway',
    'list_available_gateways',
]
