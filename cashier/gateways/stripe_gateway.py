"""
Stripe payment gateway implementation.

Cards are tokenised client-side (Stripe.js) and attached to a Stripe customer
with `update_card`; charges confirm an off-session PaymentIntent against the
saved card and usually settle in the same request.
"""

import json
import logging
from typing import Any, Dict, Optional

import stripe

from ..exceptions import ErrorCode
from ..reconciliation import RemoteStatus, Settlement
from .base import BasePaymentGateway, GatewayConfigurationError, GatewayException, ProviderError

logger = logging.getLogger(__name__)


class StripeGateway(BasePaymentGateway):
    """
    Stripe gateway implementation.

    Card on file with auto-billing: renewals are charged without the
    customer being present.
    """

    name = 'stripe'
    display_name = 'Stripe'

    supports_auto_billing = True
    supports_card = True

    STATUS_TABLE = {
        'succeeded': ('Succeeded', Settlement.COMPLETE),
        'processing': ('Processing', Settlement.WAITING),
        'requires_action': ('Requires action', Settlement.WAITING),
        'requires_confirmation': ('Requires confirmation', Settlement.WAITING),
        'requires_capture': ('Requires capture', Settlement.WAITING),
        'requires_payment_method': ('Payment method declined', Settlement.FAILED),
        'canceled': ('Canceled', Settlement.FAILED),
    }

    def __init__(self, publishable_key: str, secret_key: str, webhook_secret: Optional[str] = None):
        """
        Args:
            publishable_key: Key handed to Stripe.js for card tokenisation
            secret_key: Secret API key, passed per request
            webhook_secret: Endpoint signing secret (whsec_...)
        """
        super().__init__(publishable_key, secret_key, webhook_secret)

    def normalize_status_code(self, code: Any) -> Any:
        return str(code)

    def validate(self) -> None:
        try:
            stripe.Account.retrieve(api_key=self.api_secret)
        except stripe.StripeError as e:
            raise GatewayConfigurationError(message=f"Can not connect to Stripe: {str(e)}")

    # Payments

    def do_charge(self, customer, data: Dict[str, Any]) -> Dict[str, Any]:
        method = customer.get_payment_method()
        if not self.billable_user_has_card(customer):
            raise ProviderError(
                message="Customer has no card on file",
                error_code=ErrorCode.REMOTE_REJECTED
            )

        try:
            intent = stripe.PaymentIntent.create(
                amount=data['amount_cents'],
                currency=data['currency'].lower(),
                customer=method['customer_id'],
                payment_method=method['payment_method_id'],
                description=data['description'],
                metadata={'invoice_uid': data['id']},
                off_session=True,
                confirm=True,
                api_key=self.api_secret,
            )
        except stripe.CardError as e:
            logger.warning(
                "Stripe declined card",
                extra={'invoice_id': data['id'], 'decline_code': getattr(e, 'code', None)}
            )
            raise ProviderError(
                message=e.user_message or str(e),
                error_code=ErrorCode.REMOTE_REJECTED,
                gateway_response=getattr(e, 'json_body', None)
            )
        except stripe.StripeError as e:
            logger.error(
                "Stripe error creating PaymentIntent",
                extra={'invoice_id': data['id'], 'error': str(e)},
                exc_info=True
            )
            raise ProviderError(
                message=f"Stripe request failed: {str(e)}",
                gateway_response=getattr(e, 'json_body', None)
            )

        return {
            'txn_id': intent.id,
            'checkout_url': None,
            'status_url': None,
            'qrcode_url': None,
            'status': intent.status,
            'raw': self._intent_payload(intent),
        }

    def fetch_remote_status(self, reference: str) -> RemoteStatus:
        try:
            intent = stripe.PaymentIntent.retrieve(reference, api_key=self.api_secret)
        except stripe.StripeError as e:
            raise ProviderError(
                message=f"Can not fetch PaymentIntent {reference}: {str(e)}",
                gateway_response=getattr(e, 'json_body', None)
            )
        return RemoteStatus(code=intent.status, text=intent.status, raw=self._intent_payload(intent))

    def _intent_payload(self, intent) -> Dict[str, Any]:
        return {
            'id': intent.id,
            'status': intent.status,
            'amount': intent.amount,
            'currency': intent.currency,
        }

    # Card on file

    def billable_user_has_card(self, customer) -> bool:
        method = customer.get_payment_method()
        return method.get('method') == self.name and bool(method.get('payment_method_id'))

    def get_card_information(self, customer) -> Optional[Dict[str, Any]]:
        if not self.billable_user_has_card(customer):
            return None
        return customer.get_payment_method().get('card')

    def update_card(self, customer, token: str) -> None:
        """
        Attach a tokenised card (PaymentMethod id) and make it the default.

        Creates the Stripe customer on first use.
        """
        method = customer.get_payment_method()
        customer_id = method.get('customer_id') if method.get('method') == self.name else None

        try:
            if not customer_id:
                stripe_customer = stripe.Customer.create(
                    email=customer.get_billable_email(),
                    metadata={'user_id': customer.get_billable_id()},
                    api_key=self.api_secret,
                )
                customer_id = stripe_customer.id

            payment_method = stripe.PaymentMethod.attach(token, customer=customer_id, api_key=self.api_secret)
            stripe.Customer.modify(
                customer_id,
                invoice_settings={'default_payment_method': token},
                api_key=self.api_secret,
            )
        except stripe.StripeError as e:
            logger.warning(
                "Failed to update Stripe card",
                extra={'user_id': customer.get_billable_id(), 'error': str(e)}
            )
            raise ProviderError(
                message=getattr(e, 'user_message', None) or str(e),
                error_code=ErrorCode.REMOTE_REJECTED,
                gateway_response=getattr(e, 'json_body', None)
            )

        card = payment_method.card
        customer.update_payment_method({
            'method': self.name,
            'user_id': customer.get_billable_email(),
            'customer_id': customer_id,
            'payment_method_id': token,
            'card': {
                'brand': card.brand,
                'last4': card.last4,
                'exp_month': card.exp_month,
                'exp_year': card.exp_year,
            },
        })
        logger.info(
            "Updated Stripe card on file",
            extra={'user_id': customer.get_billable_id(), 'customer_id': customer_id}
        )

    # Webhooks

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        if not self.webhook_secret:
            raise GatewayException(
                message="Webhook secret not configured",
                error_code=ErrorCode.CONFIGURATION_ERROR
            )

        try:
            stripe.WebhookSignature.verify_header(payload.decode('utf-8'), signature, self.webhook_secret)
        except stripe.SignatureVerificationError:
            return False
        return True

    def parse_webhook_event(self, payload: bytes) -> Dict[str, Any]:
        try:
            event = json.loads(payload)
            obj = event['data']['object']
        except (ValueError, KeyError, TypeError) as e:
            raise GatewayException(
                message=f"Failed to parse webhook event: {str(e)}",
                error_code=ErrorCode.WEBHOOK_INVALID
            )

        return {
            'event_type': event.get('type'),
            'event_id': event.get('id'),
            'reference': obj.get('id') if obj.get('object') == 'payment_intent' else None,
            'data': obj,
        }
