import logging

from django.dispatch import Signal, receiver

logger = logging.getLogger(__name__)

# Sent after an audit entry is written. Arguments: log, subscription.
subscription_logged = Signal()


@receiver(subscription_logged)
def mirror_subscription_log(sender, log, subscription, **kwargs):
    """
    Mirror every audit entry into the application log.

    Notification delivery (e-mail, chat) hooks onto the same signal.
    """
    logger.info(
        f"Subscription {subscription.uid} log #{log.sequence}: {log.type}",
        extra={
            'subscription_id': subscription.uid,
            'log_type': log.type,
            'sequence': log.sequence,
        }
    )
