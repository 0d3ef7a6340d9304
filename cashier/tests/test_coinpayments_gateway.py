"""
Tests for the CoinPayments gateway and the subscription lifecycle it drives.

Covers:
- Free and paid subscriptions
- Settlement of the init transaction (complete / failed / waiting)
- Renewals and plan changes
- Idempotent sync, unknown status codes, provider outages
- Single-flight guard on pending transactions
"""

import hashlib
import hmac
import json

import pytest
from dateutil.relativedelta import relativedelta

from cashier.exceptions import ErrorCode, GatewayConfigurationError, UnmappedStatusError
from cashier.models import Invoice, Subscription, SubscriptionLog, SubscriptionTransaction
from cashier.reconciliation import Settlement
from cashier.signals import subscription_logged
from cashier.tests.conftest import cp_created, cp_status


def log_types(subscription):
    return list(subscription.logs.order_by('sequence').values_list('type', flat=True))


@pytest.mark.django_db
class TestStatusTable:
    """Tests for CoinPayments status codes"""

    @pytest.mark.parametrize('code,text', [
        (-2, 'Refund / Reversal'),
        (-1, 'Cancelled / Timed Out'),
        (0, 'Waiting'),
        (1, 'Coin Confirmed'),
        (2, 'Queued'),
        (3, 'PayPal Pending'),
        (100, 'Complete'),
    ])
    def test_status_text(self, coinpayments_gateway, code, text):
        assert coinpayments_gateway.get_transaction_status(code) == text

    def test_settlements(self, coinpayments_gateway):
        assert coinpayments_gateway.settlement_for(100) is Settlement.COMPLETE
        assert coinpayments_gateway.settlement_for(-1) is Settlement.FAILED
        assert coinpayments_gateway.settlement_for(-2) is Settlement.FAILED
        assert coinpayments_gateway.settlement_for(2) is Settlement.WAITING

    def test_string_codes_are_normalized(self, coinpayments_gateway):
        assert coinpayments_gateway.get_transaction_status('100') == 'Complete'

    def test_unknown_code_raises(self, coinpayments_gateway):
        with pytest.raises(UnmappedStatusError) as exc_info:
            coinpayments_gateway.get_transaction_status(7)

        assert isinstance(exc_info.value, LookupError)
        assert exc_info.value.code == 7
        assert exc_info.value.gateway == 'coinpayments'

    def test_capabilities(self, coinpayments_gateway, user):
        assert coinpayments_gateway.supports_auto_billing is False
        assert coinpayments_gateway.is_support_recurring() is False
        assert coinpayments_gateway.billable_user_has_card(user) is False
        assert coinpayments_gateway.get_card_information(user) is None
        assert coinpayments_gateway.update_card(user, 'tok') is None


class TestValidate:
    """Tests for credential validation"""

    def test_validate_ok(self, coinpayments_gateway, coinpayments_api):
        coinpayments_gateway.validate()

        coinpayments_api.get_basic_info.assert_called_once()

    def test_validate_error(self, coinpayments_gateway, coinpayments_api):
        coinpayments_api.get_basic_info.return_value = {'error': 'Invalid API public key passed'}

        with pytest.raises(GatewayConfigurationError) as exc_info:
            coinpayments_gateway.validate()

        assert 'Invalid API public key' in exc_info.value.message
        assert exc_info.value.error_code == ErrorCode.CONFIGURATION_ERROR


@pytest.mark.django_db
class TestCreate:
    """Tests for subscription creation"""

    def test_free_plan_activates_without_network(self, coinpayments_gateway, coinpayments_api, user, free_plan):
        subscription = coinpayments_gateway.create(user, free_plan)

        assert subscription.status == Subscription.STATUS_ACTIVE
        transactions = list(subscription.transactions.all())
        assert len(transactions) == 1
        assert transactions[0].type == SubscriptionTransaction.TYPE_SUBSCRIBE
        assert transactions[0].status == SubscriptionTransaction.STATUS_SUCCESS
        assert log_types(subscription) == [SubscriptionLog.TYPE_PAID, SubscriptionLog.TYPE_SUBSCRIBED]
        coinpayments_api.create_simple_transaction.assert_not_called()
        coinpayments_api.get_tx_info_single.assert_not_called()

    def test_paid_plan_is_new(self, coinpayments_gateway, user, plan):
        subscription = coinpayments_gateway.create(user, plan)

        assert subscription.status == Subscription.STATUS_NEW
        assert subscription.gateway == 'coinpayments'
        assert subscription.current_period_ends_at == subscription.started_at + relativedelta(months=1)
        assert subscription.transactions.count() == 0

    def test_saves_payment_method(self, coinpayments_gateway, user, plan):
        coinpayments_gateway.create(user, plan)
        user.refresh_from_db()

        assert user.payment_method == {'method': 'coinpayments', 'user_id': 'customer@example.com'}

    def test_reuses_new_subscription(self, coinpayments_gateway, user, plan, pro_plan):
        first = coinpayments_gateway.create(user, plan)
        second = coinpayments_gateway.create(user, pro_plan)

        assert first.pk == second.pk
        assert second.plan == pro_plan
        assert Subscription.objects.filter(user=user).count() == 1

    def test_keeps_subscription_with_pending_payment(self, coinpayments_gateway, pending_subscription, user, pro_plan):
        subscription = coinpayments_gateway.create(user, pro_plan)

        assert subscription.pk == pending_subscription.pk
        assert subscription.plan_id == pending_subscription.plan_id


@pytest.mark.django_db
class TestCheckout:
    """Tests for the init transaction"""

    def test_checkout_creates_remote_transaction(self, coinpayments_gateway, coinpayments_api, user, plan):
        subscription = coinpayments_gateway.create(user, plan)

        response = coinpayments_gateway.checkout(subscription)

        assert response.success is True
        assert response.data['txn_id'] == 'CPTX1'
        assert 'cmd=checkout' in response.data['checkout_url']
        subscription.refresh_from_db()
        assert subscription.status == Subscription.STATUS_PENDING

        txn = subscription.init_transaction()
        assert txn.status == SubscriptionTransaction.STATUS_PENDING
        assert txn.remote_reference == 'CPTX1'
        assert txn.amount_cents == 1999

        options = coinpayments_api.create_simple_transaction.call_args[0][0]
        invoice = txn.invoice()
        assert options['currency1'] == 'USD'
        assert options['currency2'] == 'BTC'
        assert str(options['amount']) == '19.99'
        assert options['item_number'] == invoice.uid
        assert options['buyer_email'] == 'customer@example.com'
        assert json.loads(options['custom']) == {'invoice_uid': invoice.uid}
        assert invoice.get_metadata()['txn_id'] == 'CPTX1'

    def test_checkout_failure_keeps_subscription_new(self, coinpayments_gateway, coinpayments_api, user, plan):
        coinpayments_api.create_simple_transaction.return_value = {'error': 'Amount too small'}
        subscription = coinpayments_gateway.create(user, plan)

        response = coinpayments_gateway.checkout(subscription)

        assert response.success is False
        assert response.error_code == ErrorCode.PROVIDER_UNAVAILABLE
        assert response.error_message == 'Amount too small'
        subscription.refresh_from_db()
        assert subscription.status == Subscription.STATUS_NEW
        txn = subscription.init_transaction()
        assert txn.status == SubscriptionTransaction.STATUS_FAILED
        assert txn.invoice().status == Invoice.STATUS_FAILED
        assert not subscription.has_pending()

    def test_checkout_refused_when_not_new(self, coinpayments_gateway, pending_subscription):
        response = coinpayments_gateway.checkout(pending_subscription)

        assert response.success is False
        assert response.error_code == ErrorCode.VALIDATION_FAILED


@pytest.mark.django_db
class TestSyncInitTransaction:
    """Tests for settling the init transaction"""

    def test_complete_activates(self, coinpayments_gateway, coinpayments_api, pending_subscription):
        coinpayments_api.get_tx_info_single.return_value = cp_status(100, 'Complete')

        response = coinpayments_gateway.sync(pending_subscription)

        assert response.success is True
        pending_subscription.refresh_from_db()
        assert pending_subscription.status == Subscription.STATUS_ACTIVE
        txn = pending_subscription.init_transaction()
        assert txn.status == SubscriptionTransaction.STATUS_SUCCESS
        assert txn.description == 'Complete'
        assert txn.remote_status_code == '100'
        assert txn.invoice().is_paid()
        assert log_types(pending_subscription) == [SubscriptionLog.TYPE_PAID, SubscriptionLog.TYPE_SUBSCRIBED]
        coinpayments_api.get_tx_info_single.assert_called_with('CPTX1', 1)

    def test_failing_log_receiver_does_not_block_settlement(self, coinpayments_gateway, coinpayments_api,
                                                            pending_subscription):
        def notify(sender, log, subscription, **kwargs):
            raise RuntimeError('mail server down')

        subscription_logged.connect(notify)
        coinpayments_api.get_tx_info_single.return_value = cp_status(100, 'Complete')
        try:
            response = coinpayments_gateway.sync(pending_subscription)
        finally:
            subscription_logged.disconnect(notify)

        assert response.success is True
        pending_subscription.refresh_from_db()
        assert pending_subscription.status == Subscription.STATUS_ACTIVE
        assert pending_subscription.init_transaction().is_success()
        assert log_types(pending_subscription) == [SubscriptionLog.TYPE_PAID, SubscriptionLog.TYPE_SUBSCRIBED]

    def test_sent_init_payment_on_new_subscription_is_resolved(self, coinpayments_gateway, coinpayments_api,
                                                               user, plan):
        """Init payment reached the provider but the subscription was never marked pending"""
        subscription = coinpayments_gateway.create(user, plan)
        subscription.add_transaction(
            SubscriptionTransaction.TYPE_SUBSCRIBE,
            amount_cents=1999,
            remote_reference='CPTX1',
            ends_at=subscription.ends_at,
            current_period_ends_at=subscription.current_period_ends_at,
        )
        coinpayments_api.get_tx_info_single.return_value = cp_status(100, 'Complete')

        coinpayments_gateway.sync(subscription)

        subscription.refresh_from_db()
        assert subscription.status == Subscription.STATUS_ACTIVE
        assert not subscription.has_pending()

    def test_failed_init_payment_on_new_subscription_ends_it(self, coinpayments_gateway, coinpayments_api,
                                                             user, plan):
        subscription = coinpayments_gateway.create(user, plan)
        subscription.add_transaction(SubscriptionTransaction.TYPE_SUBSCRIBE, amount_cents=1999,
                                     remote_reference='CPTX1')
        coinpayments_api.get_tx_info_single.return_value = cp_status(-1, 'Cancelled / Timed Out')

        coinpayments_gateway.sync(subscription)

        subscription.refresh_from_db()
        assert subscription.status == Subscription.STATUS_ENDED
        assert not subscription.has_pending()

    def test_cancelled_cancels_subscription(self, coinpayments_gateway, coinpayments_api, pending_subscription):
        coinpayments_api.get_tx_info_single.return_value = cp_status(-1, 'Cancelled / Timed Out')

        coinpayments_gateway.sync(pending_subscription)

        pending_subscription.refresh_from_db()
        assert pending_subscription.status == Subscription.STATUS_CANCELLED
        assert pending_subscription.ends_at is not None
        txn = pending_subscription.init_transaction()
        assert txn.status == SubscriptionTransaction.STATUS_FAILED
        assert txn.description == 'Cancelled / Timed Out'
        assert 'cancelled / timed out' in txn.error
        assert txn.invoice().status == Invoice.STATUS_FAILED
        assert log_types(pending_subscription) == [SubscriptionLog.TYPE_ERROR, SubscriptionLog.TYPE_CANCELLED_NOW]

    def test_waiting_only_records_status(self, coinpayments_gateway, coinpayments_api, pending_subscription):
        coinpayments_api.get_tx_info_single.return_value = cp_status(1, 'Coin Confirmed')

        response = coinpayments_gateway.sync(pending_subscription)

        assert response.data['resolved'][0]['settlement'] == 'waiting'
        pending_subscription.refresh_from_db()
        assert pending_subscription.status == Subscription.STATUS_PENDING
        txn = pending_subscription.init_transaction()
        assert txn.is_pending()
        assert txn.description == 'Coin Confirmed'
        assert log_types(pending_subscription) == []

    def test_second_sync_is_noop(self, coinpayments_gateway, coinpayments_api, active_subscription):
        calls = coinpayments_api.get_tx_info_single.call_count
        logs = active_subscription.logs.count()

        response = coinpayments_gateway.sync(active_subscription)

        assert response.success is True
        assert response.data['resolved'] == []
        assert coinpayments_api.get_tx_info_single.call_count == calls
        assert active_subscription.logs.count() == logs

    def test_unknown_code_changes_nothing(self, coinpayments_gateway, coinpayments_api, pending_subscription):
        coinpayments_api.get_tx_info_single.return_value = cp_status(7, 'Something new')

        with pytest.raises(UnmappedStatusError):
            coinpayments_gateway.sync(pending_subscription)

        pending_subscription.refresh_from_db()
        assert pending_subscription.status == Subscription.STATUS_PENDING
        txn = pending_subscription.init_transaction()
        assert txn.is_pending()
        assert txn.remote_status_code == ''
        assert pending_subscription.logs.count() == 0

    def test_provider_unavailable(self, coinpayments_gateway, coinpayments_api, pending_subscription):
        coinpayments_api.get_tx_info_single.return_value = {'error': 'CoinPayments request failed: timeout'}

        response = coinpayments_gateway.sync(pending_subscription)

        assert response.success is False
        assert response.error_code == ErrorCode.PROVIDER_UNAVAILABLE
        pending_subscription.refresh_from_db()
        assert pending_subscription.status == Subscription.STATUS_PENDING
        assert pending_subscription.init_transaction().is_pending()


@pytest.mark.django_db
class TestRenew:
    """Tests for manual renewals"""

    def test_renew_complete_extends_period(self, coinpayments_gateway, coinpayments_api, active_subscription):
        period_end = active_subscription.current_period_ends_at
        coinpayments_api.create_simple_transaction.return_value = cp_created('CPTX2')
        coinpayments_api.get_tx_info_single.return_value = cp_status(0, 'Waiting')

        response = coinpayments_gateway.renew(active_subscription)

        assert response.success is True
        active_subscription.refresh_from_db()
        assert active_subscription.status == Subscription.STATUS_ACTIVE
        assert active_subscription.has_pending()

        coinpayments_api.get_tx_info_single.return_value = cp_status(100, 'Complete')
        coinpayments_gateway.sync(active_subscription)

        active_subscription.refresh_from_db()
        txn = active_subscription.last_transaction()
        assert txn.type == SubscriptionTransaction.TYPE_RENEW
        assert txn.status == SubscriptionTransaction.STATUS_SUCCESS
        assert txn.remote_reference == 'CPTX2'
        assert active_subscription.current_period_ends_at == period_end + relativedelta(months=1)
        assert active_subscription.error is None
        assert log_types(active_subscription)[-2:] == [SubscriptionLog.TYPE_PAID, SubscriptionLog.TYPE_RENEWED]

    def test_renew_failed_sets_warning(self, coinpayments_gateway, coinpayments_api, active_subscription):
        period_end = active_subscription.current_period_ends_at
        coinpayments_api.create_simple_transaction.return_value = cp_created('CPTX2')
        coinpayments_gateway.renew(active_subscription)

        coinpayments_api.get_tx_info_single.return_value = cp_status(-1, 'Cancelled / Timed Out')
        coinpayments_gateway.sync(active_subscription)

        active_subscription.refresh_from_db()
        assert active_subscription.status == Subscription.STATUS_ACTIVE
        assert active_subscription.current_period_ends_at == period_end
        assert active_subscription.error['type'] == 'renew_failed'
        assert active_subscription.error['status'] == 'warning'
        assert active_subscription.error['link'].endswith(f'/subscriptions/{active_subscription.uid}/renew/')
        assert log_types(active_subscription)[-1] == SubscriptionLog.TYPE_ERROR

    def test_renew_expiring_reactivates(self, coinpayments_gateway, coinpayments_api, active_subscription):
        coinpayments_gateway.cancel(active_subscription)
        coinpayments_api.create_simple_transaction.return_value = cp_created('CPTX2')
        coinpayments_gateway.renew(active_subscription)

        coinpayments_api.get_tx_info_single.return_value = cp_status(100, 'Complete')
        coinpayments_gateway.sync(active_subscription)

        active_subscription.refresh_from_db()
        assert active_subscription.status == Subscription.STATUS_ACTIVE


@pytest.mark.django_db
class TestChangePlan:
    """Tests for plan changes"""

    def test_change_plan_complete_swaps_plan(self, coinpayments_gateway, coinpayments_api, active_subscription, pro_plan):
        coinpayments_api.create_simple_transaction.return_value = cp_created('CPTX3')

        response = coinpayments_gateway.change_plan(active_subscription, pro_plan)

        assert response.success is True
        txn = active_subscription.last_transaction()
        assert txn.type == SubscriptionTransaction.TYPE_CHANGE_PLAN
        assert txn.plan == pro_plan
        assert 0 < txn.amount_cents <= 4999

        coinpayments_api.get_tx_info_single.return_value = cp_status(100, 'Complete')
        coinpayments_gateway.sync(active_subscription)

        active_subscription.refresh_from_db()
        assert active_subscription.plan == pro_plan
        assert active_subscription.current_period_ends_at == txn.current_period_ends_at
        assert log_types(active_subscription)[-2:] == [SubscriptionLog.TYPE_PAID, SubscriptionLog.TYPE_PLAN_CHANGED]

    def test_change_plan_failed_sets_error(self, coinpayments_gateway, coinpayments_api, active_subscription, plan, pro_plan):
        coinpayments_api.create_simple_transaction.return_value = cp_created('CPTX3')
        coinpayments_gateway.change_plan(active_subscription, pro_plan)

        coinpayments_api.get_tx_info_single.return_value = cp_status(-1, 'Cancelled / Timed Out')
        coinpayments_gateway.sync(active_subscription)

        active_subscription.refresh_from_db()
        assert active_subscription.status == Subscription.STATUS_ACTIVE
        assert active_subscription.plan == plan
        assert active_subscription.error['type'] == 'change_plan_failed'
        assert active_subscription.error['status'] == 'error'
        assert active_subscription.error['link'].endswith('/change-plan/')
        assert active_subscription.last_transaction().status == SubscriptionTransaction.STATUS_FAILED

    def test_change_plan_failed_while_expiring_links_to_renew(self, coinpayments_gateway, coinpayments_api,
                                                              active_subscription, pro_plan):
        coinpayments_gateway.cancel(active_subscription)
        coinpayments_api.create_simple_transaction.return_value = cp_created('CPTX3')
        coinpayments_gateway.change_plan(active_subscription, pro_plan)

        coinpayments_api.get_tx_info_single.return_value = cp_status(-2, 'Refund / Reversal')
        coinpayments_gateway.sync(active_subscription)

        active_subscription.refresh_from_db()
        assert active_subscription.status == Subscription.STATUS_EXPIRING
        assert active_subscription.error['type'] == 'change_plan_failed'
        assert active_subscription.error['link'].endswith('/renew/')

    def test_change_to_same_plan_refused(self, coinpayments_gateway, coinpayments_api, active_subscription, plan):
        calls = coinpayments_api.create_simple_transaction.call_count

        response = coinpayments_gateway.change_plan(active_subscription, plan)

        assert response.success is False
        assert response.error_code == ErrorCode.VALIDATION_FAILED
        assert coinpayments_api.create_simple_transaction.call_count == calls


@pytest.mark.django_db
class TestSingleFlight:
    """Only one transaction may be pending per subscription"""

    def test_second_renew_refused(self, coinpayments_gateway, coinpayments_api, active_subscription, pro_plan):
        coinpayments_api.create_simple_transaction.return_value = cp_created('CPTX2')
        coinpayments_gateway.renew(active_subscription)
        calls = coinpayments_api.create_simple_transaction.call_count

        renew = coinpayments_gateway.renew(active_subscription)
        change = coinpayments_gateway.change_plan(active_subscription, pro_plan)

        assert renew.success is False
        assert renew.error_code == ErrorCode.ALREADY_PENDING
        assert change.error_code == ErrorCode.ALREADY_PENDING
        assert coinpayments_api.create_simple_transaction.call_count == calls
        assert active_subscription.transactions.filter(status=SubscriptionTransaction.STATUS_PENDING).count() == 1

    def test_cancel_now_refused_while_pending(self, coinpayments_gateway, pending_subscription):
        response = coinpayments_gateway.cancel_now(pending_subscription)

        assert response.success is False
        assert response.error_code == ErrorCode.ALREADY_PENDING
        pending_subscription.refresh_from_db()
        assert pending_subscription.status == Subscription.STATUS_PENDING


@pytest.mark.django_db
class TestCancellation:
    """Tests for cancel, resume and cancel_now"""

    def test_cancel_and_resume(self, coinpayments_gateway, active_subscription):
        response = coinpayments_gateway.cancel(active_subscription)

        assert response.success is True
        active_subscription.refresh_from_db()
        assert active_subscription.status == Subscription.STATUS_EXPIRING

        coinpayments_gateway.resume(active_subscription)

        active_subscription.refresh_from_db()
        assert active_subscription.status == Subscription.STATUS_ACTIVE
        assert log_types(active_subscription)[-2:] == [SubscriptionLog.TYPE_CANCELLED, SubscriptionLog.TYPE_RESUMED]

    def test_cancel_reads_current_row(self, coinpayments_gateway, active_subscription):
        """A stale copy cannot cancel twice or write a second audit entry"""
        stale = Subscription.objects.get(pk=active_subscription.pk)
        coinpayments_gateway.cancel(active_subscription)

        response = coinpayments_gateway.cancel(stale)

        assert response.success is False
        assert response.error_code == ErrorCode.VALIDATION_FAILED
        assert response.data['status'] == Subscription.STATUS_EXPIRING
        assert log_types(active_subscription).count(SubscriptionLog.TYPE_CANCELLED) == 1
        sequences = list(active_subscription.logs.values_list('sequence', flat=True))
        assert sequences == list(range(1, len(sequences) + 1))

    def test_resume_reads_current_row(self, coinpayments_gateway, active_subscription):
        coinpayments_gateway.cancel(active_subscription)
        stale = Subscription.objects.get(pk=active_subscription.pk)
        coinpayments_gateway.resume(active_subscription)

        response = coinpayments_gateway.resume(stale)

        assert response.success is False
        assert log_types(active_subscription).count(SubscriptionLog.TYPE_RESUMED) == 1

    def test_cancel_now_new_subscription_ends_it(self, coinpayments_gateway, user, plan):
        subscription = coinpayments_gateway.create(user, plan)

        coinpayments_gateway.cancel_now(subscription)

        assert subscription.status == Subscription.STATUS_ENDED
        assert log_types(subscription) == [SubscriptionLog.TYPE_ENDED]

    def test_cancel_now_active_subscription(self, coinpayments_gateway, active_subscription):
        coinpayments_gateway.cancel_now(active_subscription)

        assert active_subscription.status == Subscription.STATUS_CANCELLED
        assert log_types(active_subscription)[-1] == SubscriptionLog.TYPE_CANCELLED_NOW

    def test_resume_requires_expiring(self, coinpayments_gateway, active_subscription):
        response = coinpayments_gateway.resume(active_subscription)

        assert response.success is False


@pytest.mark.django_db
class TestCheckPay:
    """Tests for stand-alone invoices"""

    def test_check_pay_fulfills_invoice(self, coinpayments_gateway, coinpayments_api, user):
        invoice = Invoice.objects.create(customer=user, amount_cents=500, currency='USD', description='Top up')
        coinpayments_gateway.charge(invoice)
        coinpayments_api.get_tx_info_single.return_value = cp_status(100, 'Complete')

        response = coinpayments_gateway.check_pay(invoice)

        assert response.success is True
        invoice.refresh_from_db()
        assert invoice.is_paid()
        assert invoice.paid_at is not None

    def test_check_pay_fails_pending_transaction(self, coinpayments_gateway, coinpayments_api, pending_subscription):
        invoice = pending_subscription.init_transaction().invoice()
        coinpayments_api.get_tx_info_single.return_value = cp_status(-1, 'Cancelled / Timed Out')

        coinpayments_gateway.check_pay(invoice)

        invoice.refresh_from_db()
        assert invoice.status == Invoice.STATUS_FAILED
        assert pending_subscription.init_transaction().is_failed()

    def test_check_pay_without_remote_transaction(self, coinpayments_gateway, user):
        invoice = Invoice.objects.create(customer=user, amount_cents=500, currency='USD')

        response = coinpayments_gateway.check_pay(invoice)

        assert response.success is False
        assert response.error_code == ErrorCode.VALIDATION_FAILED


@pytest.mark.django_db
class TestReadProjections:
    """Tests for transaction listings"""

    def test_get_transactions(self, coinpayments_gateway, active_subscription):
        transactions = coinpayments_gateway.get_transactions(active_subscription)

        assert len(transactions) == 1
        assert transactions[0]['txn_id'] == 'CPTX1'
        assert transactions[0]['status'] == 'success'
        assert transactions[0]['amount'] == '19.99 USD'

    def test_last_transaction_excludes_init(self, coinpayments_gateway, active_subscription):
        assert coinpayments_gateway.get_last_transaction(active_subscription) is None
        assert coinpayments_gateway.get_init_transaction(active_subscription).remote_reference == 'CPTX1'

    def test_get_transaction_with_remote(self, coinpayments_gateway, active_subscription):
        data = coinpayments_gateway.get_transaction(active_subscription, with_remote=True)

        assert data['remote']['status'] == 100
        assert data['remote']['status_text'] == 'Complete'

    def test_get_transaction_remote_unavailable(self, coinpayments_gateway, coinpayments_api, active_subscription):
        coinpayments_api.get_tx_info_single.return_value = {'error': 'down'}

        data = coinpayments_gateway.get_transaction(active_subscription, with_remote=True)

        assert data['remote'] is None

    def test_empty_subscription(self, coinpayments_gateway, user, plan):
        subscription = coinpayments_gateway.create(user, plan)

        assert coinpayments_gateway.get_transactions(subscription) == []
        assert coinpayments_gateway.get_transaction(subscription) is None
        assert coinpayments_gateway.get_init_transaction(subscription) is None


@pytest.mark.django_db
class TestUrls:
    def test_urls(self, coinpayments_gateway, pending_subscription):
        invoice = pending_subscription.init_transaction().invoice()

        assert coinpayments_gateway.get_checkout_url(invoice, '/account/') == (
            f'http://localhost:8000/cashier/coinpayments/invoices/{invoice.uid}/checkout/?return_url=%2Faccount%2F'
        )
        assert coinpayments_gateway.get_connect_url() == 'http://localhost:8000/cashier/coinpayments/connect/?return_url=%2F'
        assert coinpayments_gateway.get_renew_url(pending_subscription) == (
            f'http://localhost:8000/cashier/coinpayments/subscriptions/{pending_subscription.uid}/renew/'
        )


class TestIpn:
    """Tests for IPN authentication"""

    def sign(self, body):
        return hmac.new(b'ipn_secret', body, hashlib.sha512).hexdigest()

    def test_valid_ipn(self, coinpayments_gateway):
        body = b'ipn_version=1.0&ipn_type=api&ipn_id=abc&merchant=merchant_123&txn_id=CPTX1&status=100'

        assert coinpayments_gateway.verify_webhook_signature(body, self.sign(body)) is True

        event = coinpayments_gateway.parse_webhook_event(body)
        assert event['reference'] == 'CPTX1'
        assert event['event_type'] == 'ipn.api'

    def test_tampered_ipn(self, coinpayments_gateway):
        body = b'ipn_type=api&merchant=merchant_123&txn_id=CPTX1&status=100'

        assert coinpayments_gateway.verify_webhook_signature(body + b'0', self.sign(body)) is False

    def test_other_merchant(self, coinpayments_gateway):
        body = b'ipn_type=api&merchant=someone_else&txn_id=CPTX1&status=100'

        assert coinpayments_gateway.verify_webhook_signature(body, self.sign(body)) is False
