"""
Celery configuration for the subscription cashier.

This module initializes the Celery application and configures it to work with Django.
"""
import os
from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

# Create the Celery app
app = Celery('config')

# Load configuration from Django settings, using the CELERY namespace
# This means all celery-related configuration keys should have a `CELERY_` prefix.
app.config_from_object('django.conf:settings', namespace='CELERY')

# Automatically discover tasks in all installed apps
app.autodiscover_tasks()

# Polling sync for gateways that settle asynchronously, plus period bookkeeping
app.conf.beat_schedule = {
    'cashier-sync-pending': {
        'task': 'cashier.tasks.sync_pending_subscriptions',
        'schedule': crontab(minute='*/5'),
    },
    'cashier-process-renewals': {
        'task': 'cashier.tasks.process_renewals',
        'schedule': crontab(minute=0),
    },
    'cashier-end-expired': {
        'task': 'cashier.tasks.end_expired_subscriptions',
        'schedule': crontab(minute=30),
    },
}
