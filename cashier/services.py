from datetime import timedelta
from typing import Any, Dict, Optional

from dateutil.relativedelta import relativedelta
from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.translation import gettext as _

from .exceptions import ChangePlanError
from .models import Plan, Subscription, SubscriptionLog, SubscriptionTransaction


def calc_change_plan(subscription: Subscription, new_plan: Plan, now=None) -> Dict[str, Any]:
    """
    Price a plan change.

    The unused share of the current period, at the current plan's price, is
    credited against the new plan's price. The new period starts now.

    Returns:
        {'amount': amount due in cents (never negative), 'ends_at': end of the new period}

    Raises:
        ChangePlanError: if the subscription or the target plan does not allow a change
    """
    now = now or timezone.now()

    if not subscription.is_live():
        raise ChangePlanError(_('Only active subscriptions can change plan'))
    if new_plan.pk == subscription.plan_id:
        raise ChangePlanError(_('Subscription is already on plan %(plan)s') % {'plan': new_plan.name})
    if not new_plan.is_active:
        raise ChangePlanError(_('Plan %(plan)s is not available') % {'plan': new_plan.name})
    if new_plan.currency != subscription.plan.currency:
        raise ChangePlanError(
            _('Can not change from %(old)s to %(new)s pricing') % {
                'old': subscription.plan.currency,
                'new': new_plan.currency,
            }
        )

    current = subscription.plan
    period_end = subscription.current_period_ends_at or now
    period_start = period_end - relativedelta(**{f"{current.billing_interval}s": current.interval_count})

    total = (period_end - period_start).total_seconds()
    remaining = max((period_end - now).total_seconds(), 0)
    credit = int(current.price_cents * remaining // total) if total > 0 else 0

    return {
        'amount': max(new_plan.price_cents - credit, 0),
        'ends_at': new_plan.period_ends_at(now),
    }


class BillingService:
    """
    Service layer for billing operations.
    Bookkeeping the scheduled jobs run on top of the gateways.
    """

    @staticmethod
    def subscribe(customer, plan: Plan, gateway_name: Optional[str] = None):
        """
        Create a subscription and start its first payment.

        Returns:
            (subscription, GatewayResponse or None for a free plan)
        """
        from .gateways.factory import get_gateway

        gateway = get_gateway(gateway_name)
        subscription = gateway.create(customer, plan)
        if not subscription.is_new():
            return subscription, None

        response = gateway.checkout(subscription)
        subscription.refresh_from_db()
        return subscription, response

    @staticmethod
    def due_for_renewal(now=None):
        """ACTIVE subscriptions whose period ends within CASHIER_RENEW_BEFORE_DAYS."""
        now = now or timezone.now()
        horizon = now + timedelta(days=getattr(settings, 'CASHIER_RENEW_BEFORE_DAYS', 3))
        return Subscription.objects.filter(
            status=Subscription.STATUS_ACTIVE,
            current_period_ends_at__lte=horizon,
        ).select_related('plan', 'user')

    @staticmethod
    def expired(now=None):
        now = now or timezone.now()
        return Subscription.objects.filter(
            status=Subscription.STATUS_EXPIRING,
            current_period_ends_at__lte=now,
        ).select_related('plan', 'user')

    @staticmethod
    def with_pending_transactions():
        return Subscription.objects.filter(
            transactions__status=SubscriptionTransaction.STATUS_PENDING,
        ).distinct().select_related('plan', 'user')

    @staticmethod
    def mark_expiring(subscription: Subscription, gateway) -> bool:
        """
        Move a manually renewed subscription into its renewal window.

        The customer gets a `renew` notice linking to the renew page.
        Returns False when the subscription was no longer ACTIVE.
        """
        with transaction.atomic():
            locked = Subscription.objects.select_for_update().select_related('plan').get(pk=subscription.pk)
            if not locked.is_active():
                return False

            locked.set_expiring()
            locked.set_error({
                'status': 'warning',
                'type': 'renew',
                'message': _('Your subscription ends on %(date)s, renew it to keep access.') % {
                    'date': locked.current_period_ends_at.strftime('%B %d, %Y'),
                },
                'link': gateway.get_renew_url(locked),
            })

        subscription.refresh_from_db()
        return True

    @staticmethod
    def end_expired(subscription: Subscription, now=None) -> bool:
        """
        End an EXPIRING subscription whose period is over.

        Skipped while a renewal is still pending.
        """
        now = now or timezone.now()
        with transaction.atomic():
            locked = Subscription.objects.select_for_update().select_related('plan').get(pk=subscription.pk)
            if not locked.is_expiring() or locked.has_pending():
                return False
            if locked.current_period_ends_at and locked.current_period_ends_at > now:
                return False

            locked.set_ended()
            locked.add_log(SubscriptionLog.TYPE_EXPIRED, {
                'plan': locked.plan.get_billable_name(),
                'ends_at': locked.ends_at.isoformat(),
            })

        subscription.refresh_from_db()
        return True
