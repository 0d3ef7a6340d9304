"""
Django settings for the subscription cashier project.

Values are read from the environment so the same module serves local
development, the test suite and production workers.
"""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'insecure-development-key')

DEBUG = os.environ.get('DJANGO_DEBUG', 'false').lower() in ('1', 'true', 'yes')

ALLOWED_HOSTS = [h for h in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost').split(',') if h]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'accounts',
    'cashier',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DATABASE_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DATABASE_NAME', str(BASE_DIR / 'db.sqlite3')),
        'USER': os.environ.get('DATABASE_USER', ''),
        'PASSWORD': os.environ.get('DATABASE_PASSWORD', ''),
        'HOST': os.environ.get('DATABASE_HOST', ''),
        'PORT': os.environ.get('DATABASE_PORT', ''),
    }
}

AUTH_USER_MODEL = 'accounts.User'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

USE_TZ = True
TIME_ZONE = 'UTC'
LANGUAGE_CODE = 'en-us'
USE_I18N = True

STATIC_URL = 'static/'

# Celery
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = os.environ.get('CELERY_TASK_ALWAYS_EAGER', 'false').lower() == 'true'
CELERY_TIMEZONE = TIME_ZONE

# Cashier
CASHIER_DEFAULT_GATEWAY = os.environ.get('CASHIER_DEFAULT_GATEWAY', 'coinpayments')

CASHIER_GATEWAYS = {
    'coinpayments': {
        'merchant_id': os.environ.get('COINPAYMENTS_MERCHANT_ID', ''),
        'public_key': os.environ.get('COINPAYMENTS_PUBLIC_KEY', ''),
        'private_key': os.environ.get('COINPAYMENTS_PRIVATE_KEY', ''),
        'ipn_secret': os.environ.get('COINPAYMENTS_IPN_SECRET', ''),
        'receive_currency': os.environ.get('COINPAYMENTS_RECEIVE_CURRENCY', 'BTC'),
    },
    'razorpay': {
        'key_id': os.environ.get('RAZORPAY_KEY_ID', ''),
        'key_secret': os.environ.get('RAZORPAY_KEY_SECRET', ''),
        'webhook_secret': os.environ.get('RAZORPAY_WEBHOOK_SECRET', ''),
    },
    'stripe': {
        'publishable_key': os.environ.get('STRIPE_PUBLISHABLE_KEY', ''),
        'secret_key': os.environ.get('STRIPE_SECRET_KEY', ''),
        'webhook_secret': os.environ.get('STRIPE_WEBHOOK_SECRET', ''),
    },
}

CASHIER_BASE_URL = os.environ.get('CASHIER_BASE_URL', 'http://localhost:8000')

# Paths served by the (external) controller layer
CASHIER_URLS = {
    'checkout': '/cashier/{gateway}/invoices/{invoice_uid}/checkout/',
    'connect': '/cashier/{gateway}/connect/',
    'renew': '/cashier/{gateway}/subscriptions/{subscription_uid}/renew/',
    'change_plan': '/cashier/{gateway}/subscriptions/{subscription_uid}/change-plan/',
}

# How early an ACTIVE subscription enters the renewal window
CASHIER_RENEW_BEFORE_DAYS = int(os.environ.get('CASHIER_RENEW_BEFORE_DAYS', '3'))

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': os.environ.get('LOG_LEVEL', 'INFO'),
    },
    'loggers': {
        'cashier': {
            'handlers': ['console'],
            'level': os.environ.get('CASHIER_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
