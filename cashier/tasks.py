"""
Celery tasks for the cashier app.

These tasks handle the periodic side of the subscription lifecycle:
- Reconciling pending transactions with their payment gateways
- Renewing (or flagging for manual renewal) subscriptions near period end
- Ending subscriptions whose cancelled period is over
"""
from celery import shared_task
import logging

from .exceptions import GatewayException, UnmappedStatusError
from .gateways.factory import get_gateway_for
from .services import BillingService

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def sync_pending_subscriptions(self):
    """
    Sync every subscription that has a pending transaction.

    Returns:
        dict: Summary of sync operation
    """
    try:
        synced_count = 0
        failed_count = 0
        unmapped_count = 0
        failed_subscriptions = []

        for subscription in BillingService.with_pending_transactions():
            try:
                response = get_gateway_for(subscription).sync(subscription)
                if response.success:
                    synced_count += 1
                else:
                    failed_count += 1
                    failed_subscriptions.append(subscription.uid)
                    logger.warning(
                        f"Sync of subscription {subscription.uid} deferred: {response.error_message}",
                        extra={'subscription_id': subscription.uid, 'error_code': response.error_code}
                    )

            except UnmappedStatusError as e:
                unmapped_count += 1
                failed_subscriptions.append(subscription.uid)
                logger.error(
                    f"Unmapped {e.gateway} status {e.code!r} for subscription {subscription.uid}",
                    extra={'subscription_id': subscription.uid, 'gateway': e.gateway}
                )

            except GatewayException as e:
                failed_count += 1
                failed_subscriptions.append(subscription.uid)
                logger.error(f"Failed to sync subscription {subscription.uid}: {str(e)}")

            except Exception as e:
                failed_count += 1
                failed_subscriptions.append(subscription.uid)
                logger.error(
                    f"Unexpected error syncing subscription {subscription.uid}: {str(e)}",
                    exc_info=True
                )

        result = {
            'status': 'completed',
            'synced_count': synced_count,
            'failed_count': failed_count,
            'unmapped_count': unmapped_count,
            'failed_subscriptions': failed_subscriptions,
            'message': f'Synced {synced_count} subscriptions, {failed_count} failed, {unmapped_count} unmapped'
        }

        logger.info(f"Pending subscription sync completed: {result}")
        return result

    except Exception as exc:
        logger.error(f"Critical error in sync_pending_subscriptions task: {str(exc)}", exc_info=True)
        raise self.retry(exc=exc)


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def process_renewals(self):
    """
    Handle ACTIVE subscriptions entering their renewal window.

    Gateways that bill automatically are asked to renew; for the others the
    subscription moves to EXPIRING and the customer is told to renew.

    Returns:
        dict: Summary of renewal operation
    """
    try:
        renewed_count = 0
        expiring_count = 0
        failed_count = 0

        for subscription in BillingService.due_for_renewal():
            try:
                gateway = get_gateway_for(subscription)

                if gateway.supports_auto_billing and gateway.billable_user_has_card(subscription.user):
                    response = gateway.renew(subscription)
                    if response.success:
                        renewed_count += 1
                    else:
                        failed_count += 1
                        logger.warning(
                            f"Renewal of subscription {subscription.uid} failed: {response.error_message}",
                            extra={'subscription_id': subscription.uid, 'error_code': response.error_code}
                        )
                elif BillingService.mark_expiring(subscription, gateway):
                    expiring_count += 1

            except Exception as e:
                failed_count += 1
                logger.error(
                    f"Unexpected error renewing subscription {subscription.uid}: {str(e)}",
                    exc_info=True
                )

        result = {
            'status': 'completed',
            'renewed_count': renewed_count,
            'expiring_count': expiring_count,
            'failed_count': failed_count,
        }

        logger.info(f"Renewal task completed: {result}")
        return result

    except Exception as exc:
        logger.error(f"Critical error in process_renewals task: {str(exc)}", exc_info=True)
        raise self.retry(exc=exc)


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def end_expired_subscriptions(self):
    """
    End EXPIRING subscriptions whose period is over.

    Returns:
        dict: Summary of the operation
    """
    try:
        ended_count = 0

        for subscription in BillingService.expired():
            try:
                if BillingService.end_expired(subscription):
                    ended_count += 1
                    logger.info(f"Ended expired subscription {subscription.uid}")
            except Exception as e:
                logger.error(
                    f"Unexpected error ending subscription {subscription.uid}: {str(e)}",
                    exc_info=True
                )

        result = {
            'status': 'completed',
            'ended_count': ended_count,
        }

        logger.info(f"Expired subscriptions task completed: {result}")
        return result

    except Exception as exc:
        logger.error(f"Critical error in end_expired_subscriptions task: {str(exc)}", exc_info=True)
        raise self.retry(exc=exc)
