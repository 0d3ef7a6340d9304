"""
Shared fixtures for cashier tests.

Provider APIs are always mocked: the CoinPayments gateway gets a Mock
API client, Razorpay a mocked client and Stripe patched module calls.
"""

import pytest
from unittest.mock import MagicMock

from accounts.models import User
from cashier.gateways.coinpayments import CoinpaymentsGateway
from cashier.gateways.coinpayments_api import CoinpaymentsAPI
from cashier.models import Plan


def cp_created(txn_id='CPTX1'):
    """create_transaction answer"""
    return {
        'error': 'ok',
        'result': {
            'amount': '0.00120000',
            'txn_id': txn_id,
            'address': 'bc1qtestaddress',
            'confirms_needed': '2',
            'timeout': 7200,
            'checkout_url': f'https://www.coinpayments.net/index.php?cmd=checkout&id={txn_id}',
            'status_url': f'https://www.coinpayments.net/index.php?cmd=status&id={txn_id}',
            'qrcode_url': f'https://www.coinpayments.net/qrgen.php?id={txn_id}',
        }
    }


def cp_status(status, status_text=''):
    """get_tx_info answer"""
    return {
        'error': 'ok',
        'result': {
            'time_created': 1700000000,
            'time_expires': 1700007200,
            'status': status,
            'status_text': status_text,
            'type': 'coins',
            'coin': 'BTC',
            'amount': 120000,
            'amountf': '0.00120000',
        }
    }


@pytest.fixture
def user(db):
    return User.objects.create_user(email='customer@example.com', password='testpass123')


@pytest.fixture
def plan(db):
    return Plan.objects.create(name='Basic', price_cents=1999, currency='USD', billing_interval='month')


@pytest.fixture
def pro_plan(db):
    return Plan.objects.create(name='Pro', price_cents=4999, currency='USD', billing_interval='month')


@pytest.fixture
def free_plan(db):
    return Plan.objects.create(name='Free', price_cents=0, currency='USD', billing_interval='month')


@pytest.fixture
def coinpayments_api():
    api = MagicMock(spec=CoinpaymentsAPI)
    api.get_basic_info.return_value = {'error': 'ok', 'result': {'merchant_id': 'merchant_123'}}
    api.create_simple_transaction.return_value = cp_created()
    api.get_tx_info_single.return_value = cp_status(0, 'Waiting for buyer funds...')
    return api


@pytest.fixture
def coinpayments_gateway(coinpayments_api):
    return CoinpaymentsGateway(
        merchant_id='merchant_123',
        public_key='cp_public',
        private_key='cp_private',
        ipn_secret='ipn_secret',
        receive_currency='BTC',
        api=coinpayments_api
    )


@pytest.fixture
def pending_subscription(coinpayments_gateway, user, plan):
    """Subscription whose init transaction has been sent to CoinPayments"""
    subscription = coinpayments_gateway.create(user, plan)
    coinpayments_gateway.checkout(subscription)
    subscription.refresh_from_db()
    return subscription


@pytest.fixture
def active_subscription(coinpayments_gateway, coinpayments_api, pending_subscription):
    """Subscription whose init transaction settled as Complete"""
    coinpayments_api.get_tx_info_single.return_value = cp_status(100, 'Complete')
    coinpayments_gateway.sync(pending_subscription)
    pending_subscription.refresh_from_db()
    return pending_subscription
