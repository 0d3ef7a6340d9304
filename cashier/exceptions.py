"""
Error taxonomy shared by the gateways, the models and the reconciliation engine.

Expected remote outcomes travel back as failed ``GatewayResponse`` objects;
the exceptions below are raised inside a gateway and converted at the
``charge``/``sync`` boundary, except for ``UnmappedStatusError`` which must
reach an operator.
"""
from typing import Any, Dict, Optional


class ErrorCode:
    """Machine-readable error codes carried by exceptions and responses."""
    PROVIDER_UNAVAILABLE = 'provider_unavailable'
    REMOTE_REJECTED = 'remote_rejected'
    UNMAPPED_STATUS = 'unmapped_status'
    ALREADY_PENDING = 'already_pending'
    VALIDATION_FAILED = 'validation_failed'
    CONFIGURATION_ERROR = 'configuration_error'
    UNSUPPORTED_GATEWAY = 'unsupported_gateway'
    INVALID_TRANSITION = 'invalid_transition'
    WEBHOOK_INVALID = 'webhook_invalid'


class GatewayException(Exception):
    """
    Custom exception for payment gateway errors.

    Raised when gateway operations fail, containing details about the failure.
    """
    default_error_code: Optional[str] = None

    def __init__(self, message: str, error_code: Optional[str] = None, gateway_response: Optional[Dict] = None):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.gateway_response = gateway_response
        super().__init__(self.message)


class ProviderError(GatewayException):
    """A remote call failed or the provider rejected the request."""
    default_error_code = ErrorCode.PROVIDER_UNAVAILABLE


class GatewayConfigurationError(GatewayException):
    """Credentials are missing/invalid or the provider account is unreachable."""
    default_error_code = ErrorCode.CONFIGURATION_ERROR


class ChangePlanError(GatewayException):
    """A plan change cannot be priced for this subscription."""
    default_error_code = ErrorCode.VALIDATION_FAILED


class UnmappedStatusError(GatewayException, LookupError):
    """The provider reported a status code missing from the gateway's status table."""
    default_error_code = ErrorCode.UNMAPPED_STATUS

    def __init__(self, code: Any, gateway: str, gateway_response: Optional[Dict] = None):
        self.code = code
        self.gateway = gateway
        super().__init__(
            message=f"Unknown {gateway} transaction status: {code!r}",
            gateway_response=gateway_response,
        )


class InvalidTransition(GatewayException):
    """A subscription or transaction was asked to move to a state it cannot reach."""
    default_error_code = ErrorCode.INVALID_TRANSITION


class InvoiceLocked(GatewayException):
    """A fulfilled invoice was asked to change."""
    default_error_code = ErrorCode.VALIDATION_FAILED
