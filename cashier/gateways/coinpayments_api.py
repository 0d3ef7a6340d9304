"""
Minimal client for the CoinPayments merchant API.

Every call is a form-encoded POST to a single endpoint, authenticated by an
HMAC-SHA512 of the request body keyed with the private key.
"""

import hashlib
import hmac
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from requests.adapters import HTTPAdapter, Retry

logger = logging.getLogger(__name__)


class CoinpaymentsAPI:
    API_URL = 'https://www.coinpayments.net/api.php'
    API_VERSION = 1

    def __init__(self, private_key: str, public_key: str, format: str = 'json',
                 timeout: int = 30, session: Optional[requests.Session] = None):
        self.private_key = private_key
        self.public_key = public_key
        self.format = format
        self.timeout = timeout
        self.session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session that retries idempotent reads on 5xx."""
        session = requests.Session()
        retries = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[500, 502, 503, 504]
        )
        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        return session

    def sign(self, body: str) -> str:
        return hmac.new(
            key=self.private_key.encode('utf-8'),
            msg=body.encode('utf-8'),
            digestmod=hashlib.sha512
        ).hexdigest()

    def call(self, cmd: str, **fields) -> Dict[str, Any]:
        """
        Run an API command.

        Returns the decoded body, `{'error': 'ok', 'result': {...}}` on
        success. Transport failures are reported the same way as API
        errors, as `{'error': message}`.
        """
        params = {
            'version': self.API_VERSION,
            'cmd': cmd,
            'key': self.public_key,
            'format': self.format,
        }
        params.update({k: v for k, v in fields.items() if v is not None})
        body = urlencode(params)

        try:
            response = self.session.post(
                self.API_URL,
                data=body,
                headers={
                    'HMAC': self.sign(body),
                    'Content-Type': 'application/x-www-form-urlencoded',
                },
                timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.warning(
                f"CoinPayments {cmd} request failed: {str(e)}",
                extra={'cmd': cmd}
            )
            return {'error': f"CoinPayments request failed: {str(e)}"}
        except ValueError:
            logger.warning(f"CoinPayments {cmd} returned a non-JSON body", extra={'cmd': cmd})
            return {'error': 'Invalid response from CoinPayments'}

    def get_basic_info(self) -> Dict[str, Any]:
        return self.call('get_basic_info')

    def create_simple_transaction(self, options: Dict[str, Any]) -> Dict[str, Any]:
        return self.call('create_transaction', **options)

    def get_tx_info_single(self, txid: str, full: int = 1) -> Dict[str, Any]:
        return self.call('get_tx_info', txid=txid, full=full)

    def get_rates(self, short: int = 1, accepted: int = 1) -> Dict[str, Any]:
        return self.call('rates', short=short, accepted=accepted)
