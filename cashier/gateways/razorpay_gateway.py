"""
Razorpay payment gateway implementation.

Each charge is a Razorpay Payment Link the customer pays on Razorpay's hosted
page; the link status is read back with `payment_link.fetch` or pushed
through `payment_link.*` webhooks.
"""

import razorpay
import hmac
import hashlib
import json
import logging
from typing import Optional, Dict, Any
from .base import BasePaymentGateway, GatewayConfigurationError, GatewayException, ProviderError
from ..exceptions import ErrorCode
from ..reconciliation import RemoteStatus, Settlement

logger = logging.getLogger(__name__)


class RazorpayGateway(BasePaymentGateway):
    """
    Razorpay gateway implementation.

    Wallet / redirect checkout: no card on file, every period is paid
    through a new payment link.
    """

    name = 'razorpay'
    display_name = 'Razorpay'

    STATUS_TABLE = {
        'paid': ('Paid', Settlement.COMPLETE),
        'created': ('Created', Settlement.WAITING),
        'partially_paid': ('Partially paid', Settlement.WAITING),
        'cancelled': ('Cancelled', Settlement.FAILED),
        'expired': ('Expired', Settlement.FAILED),
    }

    def __init__(self, key_id: str, key_secret: str, webhook_secret: Optional[str] = None, client=None):
        """
        Initialize Razorpay client.

        Args:
            key_id: Razorpay Key ID (starts with rzp_test_ or rzp_live_)
            key_secret: Razorpay Key Secret
            webhook_secret: Webhook secret for signature verification
        """
        super().__init__(key_id, key_secret, webhook_secret)
        self.client = client or razorpay.Client(auth=(key_id, key_secret))

    def normalize_status_code(self, code: Any) -> Any:
        return str(code).lower()

    def validate(self) -> None:
        try:
            self.client.payment_link.all({'count': 1})
        except Exception as e:
            raise GatewayConfigurationError(message=f"Can not connect to Razorpay: {str(e)}")

    # Payments

    def do_charge(self, customer, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a payment link in Razorpay.

        Amounts are sent in the smallest currency unit (paise for INR).
        """
        link_data = {
            'amount': data['amount_cents'],
            'currency': data['currency'].upper(),
            'description': data['description'],
            'reference_id': data['id'],
            'customer': {
                'email': customer.get_billable_email(),
            },
            'notify': {'email': False, 'sms': False},
            'notes': {'invoice_uid': data['id']},
        }

        try:
            link = self.client.payment_link.create(data=link_data)
        except razorpay.errors.BadRequestError as e:
            logger.warning(
                "Razorpay rejected payment link",
                extra={'invoice_id': data['id'], 'error': str(e)}
            )
            raise ProviderError(
                message=f"Failed to create payment link: {str(e)}",
                error_code=ErrorCode.REMOTE_REJECTED,
                gateway_response=e.args[0] if e.args else None
            )
        except Exception as e:
            logger.error(
                "Unexpected error creating Razorpay payment link",
                extra={'invoice_id': data['id'], 'error': str(e)},
                exc_info=True
            )
            raise ProviderError(message=f"Unexpected error creating payment link: {str(e)}")

        return {
            'txn_id': link['id'],
            'checkout_url': link.get('short_url'),
            'status_url': link.get('short_url'),
            'qrcode_url': None,
            'raw': link,
        }

    def fetch_remote_status(self, reference: str) -> RemoteStatus:
        try:
            link = self.client.payment_link.fetch(reference)
        except Exception as e:
            raise ProviderError(
                message=f"Can not fetch payment link {reference}: {str(e)}",
                gateway_response=e.args[0] if e.args and isinstance(e.args[0], dict) else None
            )

        status = link.get('status')
        return RemoteStatus(code=status, text=str(status), raw=link)

    # Card on file (not supported)

    def billable_user_has_card(self, customer) -> bool:
        return False

    def get_card_information(self, customer) -> Optional[Dict[str, Any]]:
        return None

    def update_card(self, customer, token: str) -> None:
        pass

    # Webhooks

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """
        Verify Razorpay webhook signature.

        Razorpay uses HMAC SHA256 for webhook signature verification.
        """
        if not self.webhook_secret:
            raise GatewayException(
                message="Webhook secret not configured",
                error_code=ErrorCode.CONFIGURATION_ERROR
            )

        expected_signature = hmac.new(
            key=self.webhook_secret.encode('utf-8'),
            msg=payload,
            digestmod=hashlib.sha256
        ).hexdigest()

        return hmac.compare_digest(expected_signature, signature or '')

    def parse_webhook_event(self, payload: bytes) -> Dict[str, Any]:
        """
        Parse Razorpay webhook event into standardized format.

        Razorpay webhooks have structure:
        {
            "event": "payment_link.paid",
            "payload": {"payment_link": {"entity": {...}}, "payment": {...}}
        }
        """
        try:
            body = json.loads(payload)
            event_payload = body.get('payload', {})
            link_entity = event_payload.get('payment_link', {}).get('entity', {})
            payment_entity = event_payload.get('payment', {}).get('entity', {})
        except (ValueError, AttributeError) as e:
            raise GatewayException(
                message=f"Failed to parse webhook event: {str(e)}",
                error_code=ErrorCode.WEBHOOK_INVALID
            )

        return {
            'event_type': body.get('event'),
            'event_id': payment_entity.get('id') or link_entity.get('id'),
            'reference': link_entity.get('id'),
            'data': {
                'payment_link': link_entity,
                'payment': payment_entity,
            }
        }
