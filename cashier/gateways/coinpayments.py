"""
CoinPayments gateway implementation.

Crypto payments are never confirmed synchronously: a charge creates a remote
payment request the customer pays from their wallet, and the result is read
back by polling `get_tx_info` (or on an IPN callback).
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from django.utils.translation import gettext as _

from ..reconciliation import RemoteStatus, Settlement
from .base import BasePaymentGateway, GatewayConfigurationError, GatewayException, ProviderError
from .coinpayments_api import CoinpaymentsAPI

logger = logging.getLogger(__name__)


class CoinpaymentsGateway(BasePaymentGateway):
    """
    CoinPayments gateway.

    No card on file and no recurring billing: every period is paid by a new
    remote transaction.
    """

    name = 'coinpayments'
    display_name = 'CoinPayments'

    STATUS_TABLE = {
        -2: ('Refund / Reversal', Settlement.FAILED),
        -1: ('Cancelled / Timed Out', Settlement.FAILED),
        0: ('Waiting', Settlement.WAITING),
        1: ('Coin Confirmed', Settlement.WAITING),
        2: ('Queued', Settlement.WAITING),
        3: ('PayPal Pending', Settlement.WAITING),
        100: ('Complete', Settlement.COMPLETE),
    }

    def __init__(
        self,
        merchant_id: str,
        public_key: str,
        private_key: str,
        ipn_secret: Optional[str] = None,
        receive_currency: str = 'BTC',
        api: Optional[CoinpaymentsAPI] = None
    ):
        """
        Args:
            merchant_id: CoinPayments merchant id, checked on IPN callbacks
            public_key: API public key
            private_key: API private key, signs every request
            ipn_secret: Secret shared with the IPN sender
            receive_currency: Coin the merchant receives (currency2)
            api: Preconfigured API client
        """
        super().__init__(public_key, private_key, ipn_secret)
        self.merchant_id = merchant_id
        self.receive_currency = receive_currency
        self.api = api or CoinpaymentsAPI(private_key, public_key, 'json')

    def normalize_status_code(self, code: Any) -> Any:
        return int(code)

    def validate(self) -> None:
        info = self.api.get_basic_info()
        if info.get('error') != 'ok':
            raise GatewayConfigurationError(
                message=info.get('error') or _('Can not connect to CoinPayments'),
                gateway_response=info
            )

    def do_charge(self, customer, data: Dict[str, Any]) -> Dict[str, Any]:
        options = {
            'currency1': data['currency'],
            'currency2': self.receive_currency,
            'amount': data['amount'],
            'item_name': data['description'],
            'item_number': data['id'],
            'buyer_email': customer.get_billable_email(),
            'custom': json.dumps({'invoice_uid': data['id']}),
        }

        res = self.api.create_simple_transaction(options)
        if res.get('error') != 'ok':
            raise ProviderError(
                message=res.get('error') or _('Unknown CoinPayments error'),
                gateway_response=res
            )

        result = res['result']
        logger.info(
            f"Created CoinPayments transaction {result.get('txn_id')}",
            extra={'invoice_id': data['id'], 'txn_id': result.get('txn_id')}
        )
        return {
            'txn_id': result['txn_id'],
            'checkout_url': result.get('checkout_url'),
            'status_url': result.get('status_url'),
            'qrcode_url': result.get('qrcode_url'),
            'raw': result,
        }

    def fetch_remote_status(self, reference: str) -> RemoteStatus:
        res = self.api.get_tx_info_single(reference, 1)
        if res.get('error') != 'ok':
            raise ProviderError(
                message=_('Can not find remote transaction %(txn_id)s: %(error)s') % {
                    'txn_id': reference,
                    'error': res.get('error'),
                },
                gateway_response=res
            )

        result = res['result']
        return RemoteStatus(code=result.get('status'), text=result.get('status_text', ''), raw=result)

    def get_rates(self) -> Dict[str, Any]:
        return self.api.get_rates()

    # Card on file (not supported)

    def billable_user_has_card(self, customer) -> bool:
        return False

    def get_card_information(self, customer) -> Optional[Dict[str, Any]]:
        return None

    def update_card(self, customer, token: str) -> None:
        pass

    # IPN

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """
        Verify a CoinPayments IPN.

        The HMAC header is an HMAC-SHA512 of the raw POST body keyed with
        the IPN secret.
        """
        if not self.webhook_secret:
            raise GatewayException(
                message="IPN secret not configured",
                error_code='configuration_error'
            )

        expected_signature = hmac.new(
            key=self.webhook_secret.encode('utf-8'),
            msg=payload,
            digestmod=hashlib.sha512
        ).hexdigest()

        if not hmac.compare_digest(expected_signature, signature or ''):
            return False

        merchant = self.parse_webhook_event(payload)['data'].get('merchant')
        return merchant == self.merchant_id

    def parse_webhook_event(self, payload: bytes) -> Dict[str, Any]:
        """
        Parse an IPN body.

        IPNs are form encoded:
            ipn_type=api&txn_id=...&status=100&status_text=Complete&merchant=...
        """
        fields = {k: v[0] for k, v in parse_qs(payload.decode('utf-8')).items()}
        return {
            'event_type': f"ipn.{fields.get('ipn_type', 'api')}",
            'event_id': fields.get('ipn_id'),
            'reference': fields.get('txn_id'),
            'data': fields,
        }
