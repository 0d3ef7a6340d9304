"""
Reconciliation of local subscription state against provider-side payment status.

A gateway reports a `RemoteStatus` for a provider reference; the gateway's
status table turns it into a `Settlement`, and `SubscriptionReconciler`
applies that settlement to the pending ledger entry and its subscription.
Every write happens under a row lock on the subscription and re-checks that
the transaction is still pending, so repeated or concurrent syncs and
duplicated provider callbacks settle a transaction at most once.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from django.db import transaction as db_transaction
from django.utils.translation import gettext as _

from .exceptions import ErrorCode, ProviderError
from .models import Subscription, SubscriptionLog, SubscriptionTransaction

logger = logging.getLogger(__name__)


class Settlement(str, Enum):
    COMPLETE = 'complete'
    WAITING = 'waiting'
    FAILED = 'failed'


@dataclass(frozen=True)
class RemoteStatus:
    """Status of one provider-side payment: provider code, human text and raw payload."""
    code: Any
    text: str
    raw: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {'status': self.code, 'status_text': self.text, 'raw': self.raw}


class SubscriptionReconciler:
    """Advances transactions and subscriptions for one gateway."""

    def __init__(self, gateway):
        self.gateway = gateway

    def pending_candidates(self, subscription: Subscription) -> List[SubscriptionTransaction]:
        """
        Ledger entries `sync` should resolve: the init transaction of a pending
        subscription, then the last transaction if it is a pending renewal or
        plan change.

        A NEW subscription whose init payment was sent but never marked
        PENDING is resolved the same way.
        """
        candidates = []
        if subscription.is_pending() or subscription.is_new():
            init = subscription.init_transaction()
            if init is not None and init.is_pending():
                candidates.append(init)

        last = subscription.last_transaction()
        if (last is not None and last.is_pending()
                and last.type != SubscriptionTransaction.TYPE_SUBSCRIBE
                and last not in candidates):
            candidates.append(last)
        return candidates

    def sync(self, subscription: Subscription):
        from .gateways.base import GatewayResponse

        resolved = []
        for txn in self.pending_candidates(subscription):
            if not txn.remote_reference:
                logger.warning(
                    "Pending transaction has no remote reference, skipping",
                    extra={'subscription_id': subscription.uid, 'transaction_id': str(txn.uid)}
                )
                continue

            try:
                remote = self.gateway.get_remote_status(txn.remote_reference)
            except ProviderError as e:
                logger.warning(
                    f"Could not fetch {self.gateway.name} status for {txn.remote_reference}: {e.message}",
                    extra={'subscription_id': subscription.uid, 'transaction_id': str(txn.uid)}
                )
                return GatewayResponse(
                    success=False,
                    data={'subscription_uid': subscription.uid, 'status': subscription.status, 'resolved': resolved},
                    error_message=e.message,
                    error_code=e.error_code or ErrorCode.PROVIDER_UNAVAILABLE,
                    gateway_response=e.gateway_response,
                )

            settlement = self.apply_settlement(subscription, txn, remote)
            if settlement is not None:
                resolved.append({'transaction_uid': str(txn.uid), 'settlement': settlement.value})

        return GatewayResponse(
            success=True,
            data={'subscription_uid': subscription.uid, 'status': subscription.status, 'resolved': resolved},
            status_code=200,
        )

    def apply_settlement(self, subscription: Subscription, txn: SubscriptionTransaction,
               remote: RemoteStatus) -> Optional[Settlement]:
        """
        Apply a remote status to a pending transaction.

        Returns the settlement applied, or None when the transaction was
        already final. Raises UnmappedStatusError before any write when the
        code is not in the gateway's table.
        """
        settlement = self.gateway.settlement_for(remote.code)

        with db_transaction.atomic():
            locked = Subscription.objects.select_for_update().select_related('plan', 'user').get(pk=subscription.pk)
            txn = SubscriptionTransaction.objects.select_for_update().get(pk=txn.pk)
            if not txn.is_pending():
                return None

            txn.record_remote(remote)

            if settlement is Settlement.COMPLETE:
                if txn.type == SubscriptionTransaction.TYPE_SUBSCRIBE:
                    self._complete_init(locked, txn)
                else:
                    self._complete_change(locked, txn)
            elif settlement is Settlement.FAILED:
                message = self.gateway.remote_failure_message(remote)
                if txn.type == SubscriptionTransaction.TYPE_SUBSCRIBE:
                    self._fail_init(locked, txn, message)
                else:
                    self._fail_change(locked, txn, message)

        subscription.refresh_from_db()
        logger.info(
            f"Settled {txn.type} transaction {txn.uid} as {settlement.value}",
            extra={
                'subscription_id': subscription.uid,
                'gateway': self.gateway.name,
                'remote_status': str(remote.code),
            }
        )
        return settlement

    def fail(self, subscription: Subscription, txn: SubscriptionTransaction, message: str):
        """Finalise a transaction whose charge could not even be started."""
        with db_transaction.atomic():
            locked = Subscription.objects.select_for_update().select_related('plan').get(pk=subscription.pk)
            txn = SubscriptionTransaction.objects.select_for_update().get(pk=txn.pk)
            if not txn.is_pending():
                return
            if txn.type == SubscriptionTransaction.TYPE_SUBSCRIBE:
                txn.set_failed(message)
                locked.add_log(SubscriptionLog.TYPE_ERROR, {'message': message})
            else:
                self._fail_change(locked, txn, message)
        subscription.refresh_from_db()

    # Transitions

    def _plan_payload(self, subscription, price=None):
        return {
            'plan': subscription.plan.get_billable_name(),
            'price': price or subscription.plan.get_billable_formatted_price(),
        }

    def _fulfill_invoice(self, txn):
        invoice = txn.invoice()
        if invoice is not None and not invoice.is_paid():
            invoice.fulfill()

    def _fail_invoice(self, txn, message):
        invoice = txn.invoice()
        if invoice is not None and not invoice.is_paid():
            invoice.pay_failed(message)

    def _complete_init(self, subscription, txn):
        txn.set_success()
        subscription.set_active()
        self._fulfill_invoice(txn)

        subscription.add_log(SubscriptionLog.TYPE_PAID, self._plan_payload(subscription))
        subscription.add_log(SubscriptionLog.TYPE_SUBSCRIBED, self._plan_payload(subscription))

    def _fail_init(self, subscription, txn, message):
        if subscription.is_new():
            subscription.set_ended()
        else:
            subscription.cancel_now()
        txn.set_failed(message)
        self._fail_invoice(txn, message)

        subscription.add_log(SubscriptionLog.TYPE_ERROR, {'message': message})
        subscription.add_log(SubscriptionLog.TYPE_CANCELLED_NOW, self._plan_payload(subscription))

    def _complete_change(self, subscription, txn):
        txn.set_success()
        subscription.approve_pending(txn)
        self._fulfill_invoice(txn)

        if txn.type == SubscriptionTransaction.TYPE_RENEW:
            subscription.add_log(SubscriptionLog.TYPE_PAID, self._plan_payload(subscription))
            subscription.add_log(SubscriptionLog.TYPE_RENEWED, self._plan_payload(subscription))
        else:
            payload = self._plan_payload(subscription, price=txn.amount_display)
            subscription.add_log(SubscriptionLog.TYPE_PAID, payload)
            subscription.add_log(SubscriptionLog.TYPE_PLAN_CHANGED, payload)

    def _fail_change(self, subscription, txn, message):
        txn.set_failed(message)
        self._fail_invoice(txn, message)

        subscription.add_log(SubscriptionLog.TYPE_ERROR, {'message': message})
        subscription.set_error(self.error_notice(subscription, txn, message))

    def error_notice(self, subscription, txn, message):
        """User-facing descriptor for a failed renewal or plan change, with a retry link."""
        renew_url = self.gateway.get_renew_url(subscription)

        if txn.type == SubscriptionTransaction.TYPE_RENEW:
            return {
                'status': 'warning',
                'type': 'renew_failed',
                'message': _('Renewing your subscription failed: %(error)s.') % {'error': message},
                'link': renew_url,
            }

        if subscription.is_expiring() and subscription.can_renew_plan():
            return {
                'status': 'error',
                'type': 'change_plan_failed',
                'message': _(
                    'Changing your plan failed: %(error)s. Your current plan ends on %(date)s, renew it to keep access.'
                ) % {'error': message, 'date': subscription.current_period_ends_at.strftime('%B %d, %Y')},
                'link': renew_url,
            }

        return {
            'status': 'error',
            'type': 'change_plan_failed',
            'message': _('Changing your plan failed: %(error)s.') % {'error': message},
            'link': self.gateway.get_change_plan_url(subscription),
        }
