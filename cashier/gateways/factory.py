"""
Payment gateway factory.

Provides a centralized way to get payment gateway instances based on configuration.
Supports easy addition of new gateways without changing business logic.
"""

from typing import Optional
from django.conf import settings
from .base import BasePaymentGateway, GatewayConfigurationError, GatewayException
from .coinpayments import CoinpaymentsGateway
from .razorpay_gateway import RazorpayGateway
from .stripe_gateway import StripeGateway
from ..exceptions import ErrorCode


# Gateway registry - maps gateway names to their classes
GATEWAY_REGISTRY = {
    'coinpayments': CoinpaymentsGateway,
    'razorpay': RazorpayGateway,
    'stripe': StripeGateway,
}


def get_gateway(gateway_name: Optional[str] = None) -> BasePaymentGateway:
    """
    Get a payment gateway instance.

    Args:
        gateway_name: Name of the gateway ('coinpayments', 'razorpay', 'stripe')
                     If None, uses CASHIER_DEFAULT_GATEWAY from settings

    Returns:
        Payment gateway instance built from settings.CASHIER_GATEWAYS[gateway_name]

    Raises:
        GatewayException: If gateway is not supported
        GatewayConfigurationError: If its configuration is missing or incomplete

    Example:
        >>> gateway = get_gateway('coinpayments')
        >>> subscription = gateway.create(user, plan)
    """
    # Use default gateway if none specified
    if gateway_name is None:
        gateway_name = getattr(settings, 'CASHIER_DEFAULT_GATEWAY', 'coinpayments')

    # Normalize gateway name
    gateway_name = gateway_name.lower().strip()

    # Check if gateway is supported
    if gateway_name not in GATEWAY_REGISTRY:
        supported = ', '.join(GATEWAY_REGISTRY.keys())
        raise GatewayException(
            message=f"Unsupported payment gateway: {gateway_name}. Supported gateways: {supported}",
            error_code=ErrorCode.UNSUPPORTED_GATEWAY
        )

    gateway_class = GATEWAY_REGISTRY[gateway_name]

    try:
        config = getattr(settings, 'CASHIER_GATEWAYS', {})[gateway_name]
        return gateway_class(**config)
    except KeyError:
        raise GatewayConfigurationError(
            message=f"Configuration not found for gateway: {gateway_name}"
        )
    except TypeError as e:
        raise GatewayConfigurationError(
            message=f"Invalid configuration for {gateway_name}: {str(e)}"
        )


def get_gateway_for(subscription) -> BasePaymentGateway:
    """Gateway instance that handles an existing subscription."""
    return get_gateway(subscription.gateway)


def register_gateway(name: str, gateway_class: type):
    """
    Register a new payment gateway.

    Allows adding custom payment gateways at runtime.

    Args:
        name: Gateway identifier (e.g., 'custom_gateway')
        gateway_class: Gateway class that extends BasePaymentGateway

    Example:
        >>> from myapp.gateways import CustomGateway
        >>> register_gateway('custom', CustomGateway)
    """
    if not isinstance(gateway_class, type) or not issubclass(gateway_class, BasePaymentGateway):
        raise GatewayException(
            message="Gateway class must extend BasePaymentGateway",
            error_code=ErrorCode.VALIDATION_FAILED
        )

    GATEWAY_REGISTRY[name.lower()] = gateway_class


def list_available_gateways():
    """
    List all registered payment gateways.

    Returns:
        List of gateway names
    """
    return list(GATEWAY_REGISTRY.keys())
