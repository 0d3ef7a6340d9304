"""
URL configuration for the cashier app.

Only provider callbacks are routed here.
"""

from django.urls import path
from .webhooks import gateway_webhook


urlpatterns = [
    path(
        'webhooks/<str:gateway_name>/',
        gateway_webhook,
        name='cashier-webhook'
    ),
]
