"""
Base classes for payment gateway abstraction.

This module defines the interface that all payment gateways must implement.
Every gateway exposes the full surface: a capability a provider lacks is
declared through the capability flags and implemented as a no-op, so callers
can check `supports_*` and still rely on every method being present.

The subscription lifecycle (create, checkout, renew, change plan, cancel,
sync) is implemented once here on top of a small provider-specific core:
`do_charge`, `fetch_remote_status` and the `STATUS_TABLE`.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode, urljoin

from django.conf import settings
from django.db import transaction as db_transaction
from django.utils import timezone
from django.utils.translation import gettext as _

from ..exceptions import (
    ErrorCode,
    GatewayConfigurationError,
    GatewayException,
    ProviderError,
    UnmappedStatusError,
)
from ..models import Invoice, Subscription, SubscriptionLog, SubscriptionTransaction
from ..reconciliation import RemoteStatus, Settlement, SubscriptionReconciler

logger = logging.getLogger(__name__)


@dataclass
class GatewayResponse:
    """
    Standardized response from payment gateway operations.

    Attributes:
        success: Whether the operation succeeded
        data: Response data from the gateway
        status_code: HTTP-like status (200=ok, 201=created, 409=already pending, ...)
        error_message: Human-readable error message if operation failed
        error_code: One of the ErrorCode values
        gateway_response: Raw gateway response for debugging and logging
    """
    success: bool
    data: Dict[str, Any]
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    gateway_response: Optional[Dict[str, Any]] = None  # Raw gateway response for debugging


class BasePaymentGateway(ABC):
    """
    Abstract base class for payment gateway implementations.

    Subclasses provide:
        - `name` and the capability flags
        - `STATUS_TABLE`: provider status code -> (status text, Settlement)
        - validate / do_charge / fetch_remote_status
        - card-on-file methods (no-ops where unsupported)
        - webhook signature verification and parsing
    """

    name: str = ''
    display_name: str = ''

    # Capability flags
    supports_auto_billing = False
    supports_recurring = False
    supports_card = False

    STATUS_TABLE: Dict[Any, Tuple[str, Settlement]] = {}

    def __init__(self, api_key: str, api_secret: str, webhook_secret: Optional[str] = None):
        """
        Initialize the payment gateway.

        Args:
            api_key: Public/publishable API key
            api_secret: Secret API key
            webhook_secret: Secret for verifying webhook / IPN signatures
        """
        self.api_key = api_key
        self.api_secret = api_secret
        self.webhook_secret = webhook_secret
        self.reconciler = SubscriptionReconciler(self)

    # Capabilities

    def is_support_recurring(self) -> bool:
        return self.supports_recurring

    # Provider core

    @abstractmethod
    def validate(self) -> None:
        """
        Check credentials against the provider.

        Raises:
            GatewayConfigurationError: if the account cannot be reached
        """

    @abstractmethod
    def do_charge(self, customer, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a remote payment request.

        Args:
            customer: Billable customer
            data: id, amount (major units), amount_cents, currency, description

        Returns:
            Dict with txn_id, checkout_url, status_url, qrcode_url and,
            when the provider answers synchronously, the remote status code

        Raises:
            ProviderError: if the provider call fails or is rejected
        """

    @abstractmethod
    def fetch_remote_status(self, reference: str) -> RemoteStatus:
        """
        Read the provider-side status of a payment.

        Raises:
            ProviderError: if the provider cannot be reached
        """

    @abstractmethod
    def billable_user_has_card(self, customer) -> bool:
        pass

    @abstractmethod
    def get_card_information(self, customer) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def update_card(self, customer, token: str) -> None:
        pass

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """
        Verify a provider callback signature.

        Returns:
            True if signature is valid, False otherwise
        """

    @abstractmethod
    def parse_webhook_event(self, payload: bytes) -> Dict[str, Any]:
        """
        Parse a verified callback body into a standardized event.

        Returns:
            Dict with keys:
                - event_type: str
                - event_id: str
                - reference: provider payment id used as remote_reference
                - data: raw event payload
        """

    # Status table

    def normalize_status_code(self, code: Any) -> Any:
        return code

    def _status_entry(self, code: Any) -> Tuple[str, Settlement]:
        try:
            return self.STATUS_TABLE[self.normalize_status_code(code)]
        except (KeyError, TypeError, ValueError):
            raise UnmappedStatusError(code, gateway=self.name)

    def get_transaction_status(self, code: Any) -> str:
        """Human text for a provider status code."""
        return self._status_entry(code)[0]

    def settlement_for(self, code: Any) -> Settlement:
        return self._status_entry(code)[1]

    def get_remote_status(self, reference: str) -> RemoteStatus:
        """Fetch a remote status and normalise its code and text through the status table."""
        remote = self.fetch_remote_status(reference)
        text = self.get_transaction_status(remote.code)
        return RemoteStatus(code=self.normalize_status_code(remote.code), text=text, raw=remote.raw)

    def remote_failure_message(self, remote: RemoteStatus) -> str:
        return _('%(gateway)s transaction is %(status)s') % {
            'gateway': self.display_name or self.name,
            'status': remote.text.lower(),
        }

    # Customer

    def payment_method_descriptor(self, customer) -> Dict[str, Any]:
        return {
            'method': self.name,
            'user_id': customer.get_billable_email(),
        }

    # Invoices

    def charge(self, invoice: Invoice) -> GatewayResponse:
        """
        Create the remote payment for an invoice.

        Failures are recorded on the invoice through `pay_failed` and never
        raised past this method.
        """
        try:
            result = self.do_charge(invoice.customer, {
                'id': invoice.uid,
                'amount': invoice.total(),
                'amount_cents': invoice.amount_cents,
                'currency': invoice.currency_code,
                'description': invoice.description or _('Payment for invoice #%(id)s') % {'id': invoice.uid},
            })
        except GatewayException as e:
            logger.warning(
                f"{self.name} charge failed for invoice {invoice.uid}: {e.message}",
                extra={'invoice_id': invoice.uid, 'error_code': e.error_code}
            )
            invoice.pay_failed(e.message)
            return GatewayResponse(
                success=False,
                data={'invoice_uid': invoice.uid},
                error_message=e.message,
                error_code=e.error_code,
                gateway_response=e.gateway_response,
            )
        except Exception as e:
            logger.error(
                f"Unexpected error charging invoice {invoice.uid} with {self.name}",
                extra={'invoice_id': invoice.uid, 'error': str(e)},
                exc_info=True
            )
            invoice.pay_failed(str(e))
            return GatewayResponse(
                success=False,
                data={'invoice_uid': invoice.uid},
                error_message=str(e),
                error_code=ErrorCode.PROVIDER_UNAVAILABLE,
            )

        invoice.update_metadata({
            'txn_id': result.get('txn_id'),
            'checkout_url': result.get('checkout_url'),
            'status_url': result.get('status_url'),
            'qrcode_url': result.get('qrcode_url'),
        })
        return GatewayResponse(success=True, data=result, status_code=201, gateway_response=result.get('raw'))

    def check_pay(self, invoice: Invoice) -> GatewayResponse:
        """Refresh an invoice from its remote payment and settle it when final."""
        reference = invoice.get_metadata().get('txn_id')
        if not reference:
            return GatewayResponse(
                success=False,
                data={'invoice_uid': invoice.uid},
                error_message=_('Invoice has no remote transaction'),
                error_code=ErrorCode.VALIDATION_FAILED,
            )

        try:
            remote = self.get_remote_status(reference)
        except ProviderError as e:
            logger.warning(
                f"Could not check payment of invoice {invoice.uid}: {e.message}",
                extra={'invoice_id': invoice.uid}
            )
            return GatewayResponse(
                success=False,
                data={'invoice_uid': invoice.uid},
                error_message=e.message,
                error_code=e.error_code,
            )

        txn = invoice.pending_transaction()
        if txn is not None:
            settlement = self.reconciler.apply_settlement(txn.subscription, txn, remote)
        else:
            settlement = self.settlement_for(remote.code)
            if not invoice.is_paid():
                invoice.update_metadata({'remote': remote.as_dict()})
                if settlement is Settlement.COMPLETE:
                    invoice.fulfill()
                elif settlement is Settlement.FAILED:
                    invoice.pay_failed(remote.text)

        return GatewayResponse(
            success=True,
            data={'invoice_uid': invoice.uid, 'settlement': settlement.value if settlement else None},
            status_code=200,
        )

    # Subscription lifecycle

    def create(self, customer, plan) -> Subscription:
        """
        Create (or reuse) the customer's subscription to `plan`.

        A NEW subscription is reset to the given plan; one that is pending
        or live is returned unchanged. A free plan is activated immediately
        without reaching the provider.
        """
        with db_transaction.atomic():
            subscription = (
                Subscription.objects.select_for_update()
                .filter(user=customer)
                .exclude(status__in=Subscription.TERMINAL_STATUSES)
                .order_by('-created_at')
                .first()
            )
            if subscription is not None and (not subscription.is_new() or self.has_pending(subscription)):
                logger.info(
                    "Customer already has a subscription in progress, reusing it unchanged",
                    extra={'subscription_id': subscription.uid}
                )
                return subscription

            if subscription is None:
                subscription = Subscription(user=customer)

            now = timezone.now()
            subscription.plan = plan
            subscription.gateway = self.name
            subscription.status = Subscription.STATUS_NEW
            subscription.started_at = now
            subscription.ends_at = plan.period_ends_at(now)
            subscription.current_period_ends_at = subscription.ends_at
            subscription.error = None
            subscription.save()

            customer.update_payment_method(self.payment_method_descriptor(customer))

            if plan.is_free():
                subscription.add_transaction(
                    SubscriptionTransaction.TYPE_SUBSCRIBE,
                    status=SubscriptionTransaction.STATUS_SUCCESS,
                    amount_cents=0,
                    currency=plan.currency,
                    title=_('Subscribed to plan: %(plan)s') % {'plan': plan.get_billable_name()},
                    ends_at=subscription.ends_at,
                    current_period_ends_at=subscription.current_period_ends_at,
                )
                subscription.set_active()

                payload = {'plan': plan.get_billable_name(), 'price': plan.get_billable_formatted_price()}
                subscription.add_log(SubscriptionLog.TYPE_PAID, payload)
                subscription.add_log(SubscriptionLog.TYPE_SUBSCRIBED, payload)

        logger.info(
            f"Created {subscription.status} subscription {subscription.uid} on {self.name}",
            extra={'subscription_id': subscription.uid, 'plan_id': plan.get_billable_id()}
        )
        return subscription

    def checkout(self, subscription: Subscription) -> GatewayResponse:
        """Start the init (subscribe) payment of a NEW subscription."""
        if not subscription.is_new():
            return self._refuse(subscription, _('Only new subscriptions can be checked out'))

        plan = subscription.plan
        return self._start_transaction(
            subscription,
            SubscriptionTransaction.TYPE_SUBSCRIBE,
            amount_cents=plan.get_billable_amount(),
            title=_('Subscribed to plan: %(plan)s') % {'plan': plan.get_billable_name()},
            ends_at=subscription.ends_at,
            current_period_ends_at=subscription.current_period_ends_at,
        )

    def renew(self, subscription: Subscription) -> GatewayResponse:
        """Charge the next billing period of the current plan."""
        if not subscription.can_renew_plan():
            return self._refuse(subscription, _('This subscription cannot be renewed'))

        plan = subscription.plan
        period_start = max(subscription.current_period_ends_at or timezone.now(), timezone.now())
        period_end = plan.period_ends_at(period_start)
        return self._start_transaction(
            subscription,
            SubscriptionTransaction.TYPE_RENEW,
            amount_cents=plan.get_billable_amount(),
            title=_('Renew plan: %(plan)s') % {'plan': plan.get_billable_name()},
            ends_at=period_end,
            current_period_ends_at=period_end,
        )

    def change_plan(self, subscription: Subscription, new_plan) -> GatewayResponse:
        """Charge the prorated difference and swap to `new_plan` once paid."""
        from ..services import calc_change_plan

        try:
            result = calc_change_plan(subscription, new_plan)
        except GatewayException as e:
            return self._refuse(subscription, _('Can not change plan: %(error)s') % {'error': e.message})

        return self._start_transaction(
            subscription,
            SubscriptionTransaction.TYPE_CHANGE_PLAN,
            amount_cents=result['amount'],
            title=_('Change plan to: %(plan)s') % {'plan': new_plan.get_billable_name()},
            plan=new_plan,
            ends_at=result['ends_at'],
            current_period_ends_at=result['ends_at'],
        )

    def cancel(self, subscription: Subscription) -> GatewayResponse:
        """Stop renewing: the subscription stays usable until the period ends."""
        with db_transaction.atomic():
            locked = Subscription.objects.select_for_update().select_related('plan').get(pk=subscription.pk)
            if not locked.is_active():
                return self._refuse(locked, _('Only active subscriptions can be cancelled'))
            locked.set_expiring()
            locked.add_log(SubscriptionLog.TYPE_CANCELLED, {
                'plan': locked.plan.get_billable_name(),
                'ends_at': locked.current_period_ends_at.isoformat() if locked.current_period_ends_at else None,
            })

        subscription.refresh_from_db()
        return self._ok(subscription)

    def resume(self, subscription: Subscription) -> GatewayResponse:
        with db_transaction.atomic():
            locked = Subscription.objects.select_for_update().select_related('plan').get(pk=subscription.pk)
            if not locked.is_expiring():
                return self._refuse(locked, _('Only expiring subscriptions can be resumed'))
            locked.set_active()
            locked.add_log(SubscriptionLog.TYPE_RESUMED, {'plan': locked.plan.get_billable_name()})

        subscription.refresh_from_db()
        return self._ok(subscription)

    def cancel_now(self, subscription: Subscription) -> GatewayResponse:
        """End a NEW subscription, or cancel any live one immediately."""
        with db_transaction.atomic():
            locked = Subscription.objects.select_for_update().select_related('plan').get(pk=subscription.pk)
            if self.has_pending(locked):
                return self._already_pending(locked)
            if locked.is_terminal():
                return self._refuse(locked, _('Subscription is already ended'))

            payload = {
                'plan': locked.plan.get_billable_name(),
                'price': locked.plan.get_billable_formatted_price(),
            }
            if locked.is_new():
                locked.set_ended()
                locked.add_log(SubscriptionLog.TYPE_ENDED, payload)
            else:
                locked.cancel_now()
                locked.add_log(SubscriptionLog.TYPE_CANCELLED_NOW, payload)

        subscription.refresh_from_db()
        return self._ok(subscription)

    def sync(self, subscription: Subscription) -> GatewayResponse:
        """Reconcile pending transactions with the provider. Safe to call repeatedly."""
        return self.reconciler.sync(subscription)

    def has_pending(self, subscription: Subscription) -> bool:
        return subscription.has_pending()

    def _start_transaction(self, subscription, type, amount_cents, title, **fields) -> GatewayResponse:
        """
        Open a ledger entry and charge it.

        The pending check and the insert run under the subscription row lock;
        the provider call happens after the lock is released, the pending
        row itself keeps other callers out.
        """
        with db_transaction.atomic():
            locked = Subscription.objects.select_for_update().select_related('plan', 'user').get(pk=subscription.pk)
            if self.has_pending(locked):
                return self._already_pending(locked)

            txn = locked.add_transaction(
                type,
                status=SubscriptionTransaction.STATUS_PENDING,
                amount_cents=amount_cents,
                currency=locked.plan.currency,
                title=title,
                **fields
            )
            invoice = None
            if amount_cents > 0:
                invoice = Invoice.objects.create(
                    customer=locked.user,
                    transaction=txn,
                    amount_cents=amount_cents,
                    currency=txn.currency,
                    description=title,
                )

        if invoice is None:
            # Nothing to collect
            self.reconciler.apply_settlement(subscription, txn, self._free_status())
            if type == SubscriptionTransaction.TYPE_SUBSCRIBE:
                subscription.refresh_from_db()
            return self._ok(subscription, transaction=txn)

        response = self.charge(invoice)
        if not response.success:
            self.reconciler.fail(subscription, txn, response.error_message)
            response.data.update({'subscription_uid': subscription.uid, 'transaction_uid': str(txn.uid)})
            return response

        metadata = invoice.get_metadata()
        txn.remote_reference = metadata.get('txn_id') or ''
        txn.metadata = {k: metadata.get(k) for k in ('checkout_url', 'status_url', 'qrcode_url')}
        txn.metadata['invoice_uid'] = invoice.uid
        txn.save()

        if type == SubscriptionTransaction.TYPE_SUBSCRIBE:
            with db_transaction.atomic():
                locked = Subscription.objects.select_for_update().get(pk=subscription.pk)
                if locked.is_new():
                    locked.set_pending()
            subscription.refresh_from_db()

        # Card charges answer synchronously
        if response.data.get('status') is not None:
            status = response.data['status']
            remote = RemoteStatus(code=status, text=self.get_transaction_status(status), raw=response.data.get('raw') or {})
            self.reconciler.apply_settlement(subscription, txn, remote)

        txn.refresh_from_db()
        return self._ok(subscription, transaction=txn, invoice=invoice)

    def _free_status(self) -> RemoteStatus:
        for code, (text, settlement) in self.STATUS_TABLE.items():
            if settlement is Settlement.COMPLETE:
                return RemoteStatus(code=code, text=text, raw={})
        raise UnmappedStatusError('complete', gateway=self.name)

    def _ok(self, subscription, transaction=None, invoice=None) -> GatewayResponse:
        data = {'subscription_uid': subscription.uid, 'status': subscription.status}
        if transaction is not None:
            data.update({
                'transaction_uid': str(transaction.uid),
                'transaction_status': transaction.status,
                'txn_id': transaction.remote_reference or None,
            })
        if invoice is not None:
            data.update({
                'invoice_uid': invoice.uid,
                'checkout_url': invoice.get_metadata().get('checkout_url'),
            })
        return GatewayResponse(success=True, data=data, status_code=200)

    def _refuse(self, subscription, message) -> GatewayResponse:
        return GatewayResponse(
            success=False,
            data={'subscription_uid': subscription.uid, 'status': subscription.status},
            status_code=400,
            error_message=message,
            error_code=ErrorCode.VALIDATION_FAILED,
        )

    def _already_pending(self, subscription) -> GatewayResponse:
        logger.info(
            "Refusing to start a transaction while another one is pending",
            extra={'subscription_id': subscription.uid}
        )
        return GatewayResponse(
            success=False,
            data={'subscription_uid': subscription.uid, 'status': subscription.status},
            status_code=409,
            error_message=_('A payment for this subscription is already in progress'),
            error_code=ErrorCode.ALREADY_PENDING,
        )

    # Read-only projections

    def get_init_transaction(self, subscription: Subscription) -> Optional[SubscriptionTransaction]:
        return subscription.init_transaction()

    def get_last_transaction(self, subscription: Subscription) -> Optional[SubscriptionTransaction]:
        """Last transaction, or None when the subscription only has its init transaction."""
        if subscription.transactions.count() <= 1:
            return None
        return subscription.last_transaction()

    def get_last_transaction_with_init(self, subscription: Subscription) -> Optional[SubscriptionTransaction]:
        return subscription.last_transaction()

    def get_transactions(self, subscription: Subscription) -> List[Dict[str, Any]]:
        return [txn.as_dict() for txn in subscription.transactions.order_by('created_at', 'id')]

    def get_transaction(self, subscription: Subscription, with_remote: bool = False) -> Optional[Dict[str, Any]]:
        txn = subscription.last_transaction()
        if txn is None:
            return None

        data = txn.as_dict()
        if with_remote and txn.remote_reference:
            try:
                data['remote'] = self.get_remote_status(txn.remote_reference).as_dict()
            except ProviderError as e:
                logger.warning(f"Could not fetch remote transaction {txn.remote_reference}: {e.message}")
                data['remote'] = None
        return data

    # URLs for the controller layer

    def _build_url(self, name: str, return_url: Optional[str] = None, **params) -> str:
        path = settings.CASHIER_URLS[name].format(gateway=self.name, **params)
        url = urljoin(settings.CASHIER_BASE_URL, path)
        if return_url:
            url = f"{url}?{urlencode({'return_url': return_url})}"
        return url

    def get_checkout_url(self, invoice: Invoice, return_url: str = '/') -> str:
        return self._build_url('checkout', return_url, invoice_uid=invoice.uid)

    def get_connect_url(self, return_url: str = '/') -> str:
        return self._build_url('connect', return_url)

    def get_renew_url(self, subscription: Subscription, return_url: Optional[str] = None) -> str:
        return self._build_url('renew', return_url, subscription_uid=subscription.uid)

    def get_change_plan_url(self, subscription: Subscription, return_url: Optional[str] = None) -> str:
        return self._build_url('change_plan', return_url, subscription_uid=subscription.uid)
