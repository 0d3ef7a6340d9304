"""
Provider callbacks (webhooks and CoinPayments IPN).

A callback is only a hint that something changed: after the signature is
verified the pushed status is ignored and the referenced subscription is
synced from the provider, so repeated or out-of-order notifications
settle a transaction at most once.
"""
import logging
from django.http import HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from .exceptions import ErrorCode, GatewayException, UnmappedStatusError
from .gateways.base import GatewayResponse
from .gateways.factory import get_gateway
from .models import Invoice, SubscriptionTransaction

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = {
    'coinpayments': 'HMAC',
    'razorpay': 'X-Razorpay-Signature',
    'stripe': 'Stripe-Signature',
}


def handle_gateway_notification(gateway_name: str, payload: bytes, signature: str) -> GatewayResponse:
    """
    Authenticate a callback and reconcile whatever it refers to.

    Raises:
        UnmappedStatusError: if the provider reports an unknown status
    """
    gateway = get_gateway(gateway_name)

    # Verify signature BEFORE any processing
    if not gateway.verify_webhook_signature(payload, signature):
        logger.warning(f"Invalid {gateway_name} webhook signature")
        return GatewayResponse(
            success=False,
            data={},
            status_code=400,
            error_message='Invalid signature',
            error_code=ErrorCode.WEBHOOK_INVALID,
        )

    event = gateway.parse_webhook_event(payload)
    reference = event.get('reference')
    logger.info(
        f"Received {gateway_name} webhook: {event.get('event_type')} (ID: {event.get('event_id')})",
        extra={'reference': reference}
    )

    if not reference:
        return GatewayResponse(success=True, data={'ignored': True}, status_code=200)

    txn = (
        SubscriptionTransaction.objects.select_related('subscription')
        .filter(remote_reference=reference, subscription__gateway=gateway.name)
        .first()
    )
    if txn is not None:
        return gateway.sync(txn.subscription)

    invoice = Invoice.objects.filter(metadata__txn_id=reference).first()
    if invoice is not None:
        return gateway.check_pay(invoice)

    logger.info(f"No local transaction for {gateway_name} reference {reference}, ignoring")
    return GatewayResponse(success=True, data={'ignored': True, 'reference': reference}, status_code=200)


@csrf_exempt
@require_http_methods(["POST"])
def gateway_webhook(request, gateway_name):
    """
    Webhook endpoint for every registered gateway.

    URL: /cashier/webhooks/<gateway_name>/
    """
    header = SIGNATURE_HEADERS.get(gateway_name.lower(), 'X-Signature')
    signature = request.headers.get(header, '')

    try:
        response = handle_gateway_notification(gateway_name, request.body, signature)
    except UnmappedStatusError as e:
        logger.error(f"Unmapped {e.gateway} status {e.code!r} in webhook", exc_info=True)
        return HttpResponse(status=500)
    except GatewayException as e:
        logger.error(f"Gateway exception in {gateway_name} webhook: {str(e)}")
        return HttpResponse(status=400)
    except Exception as e:
        logger.error(f"Error processing {gateway_name} webhook: {str(e)}", exc_info=True)
        return HttpResponse(status=500)

    if response.status_code == 400:
        return HttpResponse(status=400)
    if not response.success:
        # Provider unreachable: ask the sender to retry later
        return HttpResponse(status=503)
    if gateway_name.lower() == 'coinpayments':
        return HttpResponse('IPN OK')
    return HttpResponse(status=200)
