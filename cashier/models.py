import logging
import uuid
from decimal import Decimal

from dateutil.relativedelta import relativedelta
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError, models, transaction as db_transaction
from django.db.models import Max
from django.utils import timezone
from django.utils.text import slugify

from .exceptions import InvalidTransition, InvoiceLocked
from .signals import subscription_logged

logger = logging.getLogger(__name__)


def format_amount(amount_cents, currency):
    """Format minor units as '19.99 USD'."""
    return f"{Decimal(amount_cents or 0) / 100:.2f} {currency}"


class Plan(models.Model):
    """
    A billing plan customers subscribe to.
    The price is charged once per billing period of `interval_count` intervals.
    """
    BILLING_INTERVAL_CHOICES = [
        ('day', 'Daily'),
        ('week', 'Weekly'),
        ('month', 'Monthly'),
        ('year', 'Yearly'),
    ]

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the plan"
    )
    name = models.CharField(
        max_length=255,
        help_text="Display name of the plan (e.g., 'Pro', 'Enterprise')"
    )
    slug = models.SlugField(
        max_length=255,
        unique=True,
        help_text="URL-friendly identifier for the plan"
    )
    price_cents = models.PositiveIntegerField(
        help_text="Price in cents (e.g., 1999 for 19.99)"
    )
    currency = models.CharField(
        max_length=3,
        default='USD',
        help_text="Currency code (ISO 4217)"
    )
    billing_interval = models.CharField(
        max_length=20,
        choices=BILLING_INTERVAL_CHOICES,
        default='month',
        help_text="Unit of the billing period"
    )
    interval_count = models.PositiveIntegerField(
        default=1,
        help_text="Number of intervals in one billing period"
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Whether this plan is currently available for new subscriptions"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['price_cents']
        verbose_name = 'Plan'
        verbose_name_plural = 'Plans'

    def __str__(self):
        return f"{self.name} - {self.get_billing_interval_display()}"

    def save(self, *args, **kwargs):
        """Auto-generate slug from name if not provided"""
        if not self.slug:
            base_slug = slugify(self.name)
            slug = base_slug
            counter = 1

            while Plan.objects.filter(slug=slug).exists():
                slug = f"{base_slug}-{counter}"
                counter += 1

            self.slug = slug

        super().save(*args, **kwargs)

    @property
    def price_display(self):
        return format_amount(self.price_cents, self.currency)

    def is_free(self):
        return self.price_cents == 0

    def period_ends_at(self, start):
        """End of a billing period beginning at `start`."""
        return start + relativedelta(**{f"{self.billing_interval}s": self.interval_count})

    # Billable plan interface

    def get_billable_id(self):
        return str(self.pk)

    def get_billable_amount(self):
        return self.price_cents

    def get_billable_name(self):
        return self.name

    def get_billable_formatted_price(self):
        return self.price_display


class Subscription(models.Model):
    """
    A customer's billing relationship with a plan.

    Status only moves along TRANSITIONS; rows are never deleted, terminal
    subscriptions stay for audit.
    """
    STATUS_NEW = 'new'
    STATUS_PENDING = 'pending'
    STATUS_ACTIVE = 'active'
    STATUS_EXPIRING = 'expiring'
    STATUS_ENDED = 'ended'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (STATUS_NEW, 'New'),
        (STATUS_PENDING, 'Pending'),
        (STATUS_ACTIVE, 'Active'),
        (STATUS_EXPIRING, 'Expiring'),
        (STATUS_ENDED, 'Ended'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    TERMINAL_STATUSES = (STATUS_ENDED, STATUS_CANCELLED)

    TRANSITIONS = {
        STATUS_NEW: (STATUS_PENDING, STATUS_ACTIVE, STATUS_ENDED),
        STATUS_PENDING: (STATUS_ACTIVE, STATUS_CANCELLED),
        STATUS_ACTIVE: (STATUS_EXPIRING, STATUS_CANCELLED),
        STATUS_EXPIRING: (STATUS_ACTIVE, STATUS_CANCELLED, STATUS_ENDED),
    }

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the subscription"
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='subscriptions',
        help_text="Customer that owns this subscription"
    )
    plan = models.ForeignKey(
        Plan,
        on_delete=models.PROTECT,
        related_name='subscriptions',
        help_text="The plan this subscription is for"
    )
    gateway = models.CharField(
        max_length=50,
        help_text="Payment gateway handling this subscription"
    )
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_NEW,
        help_text="Current lifecycle state"
    )
    started_at = models.DateTimeField(null=True, blank=True)
    ends_at = models.DateTimeField(null=True, blank=True)
    current_period_ends_at = models.DateTimeField(null=True, blank=True)
    error = models.JSONField(
        null=True,
        blank=True,
        help_text="Last user-facing error descriptor (type, status, message, link)"
    )
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Subscription'
        verbose_name_plural = 'Subscriptions'
        indexes = [
            models.Index(fields=['user', 'status'], name='cashier_sub_user_id_7a1f3e_idx'),
            models.Index(fields=['status', 'current_period_ends_at'], name='cashier_sub_status_4c9b2d_idx'),
        ]

    def __str__(self):
        return f"{self.user} - {self.plan.name} ({self.status})"

    @property
    def uid(self):
        return str(self.id)

    def clean(self):
        if self.started_at and self.current_period_ends_at and self.current_period_ends_at < self.started_at:
            raise ValidationError("current_period_ends_at cannot be before started_at")

    def save(self, *args, **kwargs):
        self.clean()
        super().save(*args, **kwargs)

    # Status checks

    def is_new(self):
        return self.status == self.STATUS_NEW

    def is_pending(self):
        return self.status == self.STATUS_PENDING

    def is_active(self):
        return self.status == self.STATUS_ACTIVE

    def is_expiring(self):
        return self.status == self.STATUS_EXPIRING

    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def is_live(self):
        """Active or expiring: the customer currently has access."""
        return self.status in (self.STATUS_ACTIVE, self.STATUS_EXPIRING)

    def can_transition(self, status):
        return status in self.TRANSITIONS.get(self.status, ())

    def _transition(self, status, **changes):
        if not self.can_transition(status):
            raise InvalidTransition(f"Subscription {self.uid} cannot move from {self.status} to {status}")
        self.status = status
        for field, value in changes.items():
            setattr(self, field, value)
        self.save()

    def set_pending(self):
        self._transition(self.STATUS_PENDING)

    def set_active(self):
        self._transition(self.STATUS_ACTIVE)

    def set_expiring(self):
        self._transition(self.STATUS_EXPIRING)

    def set_ended(self):
        self._transition(self.STATUS_ENDED, ends_at=timezone.now())

    def cancel_now(self):
        self._transition(self.STATUS_CANCELLED, ends_at=timezone.now())

    def can_renew_plan(self):
        return self.is_live() and self.plan.is_active

    def approve_pending(self, transaction):
        """Apply the period extension or plan swap carried by a settled transaction."""
        if transaction.type == SubscriptionTransaction.TYPE_CHANGE_PLAN and transaction.plan_id:
            self.plan = transaction.plan
        if transaction.current_period_ends_at:
            self.current_period_ends_at = transaction.current_period_ends_at
        if transaction.ends_at:
            self.ends_at = transaction.ends_at
        self.error = None
        if self.is_expiring():
            self._transition(self.STATUS_ACTIVE)
        else:
            self.save()

    def set_error(self, descriptor):
        self.error = descriptor
        self.save(update_fields=['error', 'updated_at'])

    def clear_error(self):
        if self.error is not None:
            self.set_error(None)

    # Ledger

    def add_transaction(self, type, **fields):
        fields.setdefault('currency', self.plan.currency)
        return SubscriptionTransaction.objects.create(subscription=self, type=type, **fields)

    def init_transaction(self):
        return self.transactions.filter(type=SubscriptionTransaction.TYPE_SUBSCRIBE).order_by('-created_at', '-id').first()

    def last_transaction(self):
        return self.transactions.order_by('-created_at', '-id').first()

    def pending_transaction(self):
        return self.transactions.filter(status=SubscriptionTransaction.STATUS_PENDING).order_by('-created_at', '-id').first()

    def has_pending(self):
        return self.transactions.filter(status=SubscriptionTransaction.STATUS_PENDING).exists()

    # Audit log

    def add_log(self, type, data=None):
        """
        Append an audit entry with the next per-subscription sequence number.

        Never raises: a failed audit write or a failing `subscription_logged`
        receiver is logged and the caller continues.
        """
        try:
            with db_transaction.atomic():
                last = self.logs.aggregate(last=Max('sequence'))['last'] or 0
                entry = SubscriptionLog.objects.create(
                    subscription=self,
                    type=type,
                    sequence=last + 1,
                    data=data or {},
                )
        except DatabaseError:
            logger.error(
                "Failed to write subscription log",
                extra={'subscription_id': self.uid, 'log_type': type},
                exc_info=True
            )
            return None

        responses = subscription_logged.send_robust(sender=SubscriptionLog, log=entry, subscription=self)
        for receiver, result in responses:
            if isinstance(result, Exception):
                logger.error(
                    f"Subscription log receiver {getattr(receiver, '__name__', receiver)} failed: {result}",
                    extra={'subscription_id': self.uid, 'log_type': type, 'sequence': entry.sequence},
                    exc_info=(result.__class__, result, result.__traceback__)
                )
        return entry


class SubscriptionTransaction(models.Model):
    """
    One billable attempt (subscribe, renew, change plan) in a subscription's ledger.

    Type is fixed at creation; status moves once, from pending to success or failed.
    """
    TYPE_SUBSCRIBE = 'subscribe'
    TYPE_RENEW = 'renew'
    TYPE_CHANGE_PLAN = 'change_plan'

    TYPE_CHOICES = [
        (TYPE_SUBSCRIBE, 'Subscribe'),
        (TYPE_RENEW, 'Renew'),
        (TYPE_CHANGE_PLAN, 'Change plan'),
    ]

    STATUS_PENDING = 'pending'
    STATUS_SUCCESS = 'success'
    STATUS_FAILED = 'failed'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_SUCCESS, 'Success'),
        (STATUS_FAILED, 'Failed'),
    ]

    uid = models.UUIDField(default=uuid.uuid4, unique=True, editable=False)
    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.PROTECT,
        related_name='transactions'
    )
    type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    amount_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=3, default='USD')
    title = models.CharField(max_length=255, blank=True)
    description = models.TextField(blank=True)
    plan = models.ForeignKey(
        Plan,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='+',
        help_text="Target plan of a plan change"
    )
    ends_at = models.DateTimeField(null=True, blank=True)
    current_period_ends_at = models.DateTimeField(null=True, blank=True)
    remote_reference = models.CharField(
        max_length=255,
        blank=True,
        db_index=True,
        help_text="Provider transaction / payment id"
    )
    remote_status_code = models.CharField(max_length=50, blank=True)
    remote_status_text = models.CharField(max_length=255, blank=True)
    remote_payload = models.JSONField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['created_at', 'id']
        verbose_name = 'Subscription transaction'
        verbose_name_plural = 'Subscription transactions'
        indexes = [
            models.Index(fields=['subscription', 'status'], name='cashier_sub_subscri_e2d8a1_idx'),
        ]

    def __str__(self):
        return f"{self.get_type_display()} {self.amount_display} ({self.status})"

    def save(self, *args, **kwargs):
        if self.pk:
            stored_type = SubscriptionTransaction.objects.filter(pk=self.pk).values_list('type', flat=True).first()
            if stored_type and stored_type != self.type:
                raise InvalidTransition(f"Transaction {self.uid} type cannot change")
        super().save(*args, **kwargs)

    @property
    def amount_display(self):
        return format_amount(self.amount_cents, self.currency)

    def is_pending(self):
        return self.status == self.STATUS_PENDING

    def is_success(self):
        return self.status == self.STATUS_SUCCESS

    def is_failed(self):
        return self.status == self.STATUS_FAILED

    def _finalize(self, status, error=''):
        if not self.is_pending():
            raise InvalidTransition(f"Transaction {self.uid} is already {self.status}")
        self.status = status
        if error:
            self.error = error
        self.save()

    def set_success(self):
        self._finalize(self.STATUS_SUCCESS)

    def set_failed(self, error=''):
        self._finalize(self.STATUS_FAILED, error)

    def record_remote(self, remote):
        """Store the latest remote status; the human status text becomes the description."""
        self.remote_status_code = str(remote.code)
        self.remote_status_text = remote.text
        self.remote_payload = remote.raw
        self.description = remote.text
        self.save()

    def invoice(self):
        return self.invoices.order_by('-created_at').first()

    def as_dict(self):
        return {
            'uid': str(self.uid),
            'type': self.type,
            'status': self.status,
            'amount': self.amount_display,
            'title': self.title,
            'description': self.description,
            'txn_id': self.remote_reference or None,
            'remote_status': self.remote_status_code or None,
            'checkout_url': self.metadata.get('checkout_url'),
            'status_url': self.metadata.get('status_url'),
            'qrcode_url': self.metadata.get('qrcode_url'),
            'error': self.error or None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class SubscriptionLog(models.Model):
    """
    Append-only audit trail of a subscription.

    `sequence` increases strictly per subscription and is the authoritative order.
    """
    TYPE_SUBSCRIBED = 'subscribed'
    TYPE_PAID = 'paid'
    TYPE_RENEWED = 'renewed'
    TYPE_PLAN_CHANGED = 'plan_changed'
    TYPE_CANCELLED = 'cancelled'
    TYPE_CANCELLED_NOW = 'cancelled_now'
    TYPE_RESUMED = 'resumed'
    TYPE_ENDED = 'ended'
    TYPE_EXPIRED = 'expired'
    TYPE_ERROR = 'error'

    TYPE_CHOICES = [
        (TYPE_SUBSCRIBED, 'Subscribed'),
        (TYPE_PAID, 'Paid'),
        (TYPE_RENEWED, 'Renewed'),
        (TYPE_PLAN_CHANGED, 'Plan changed'),
        (TYPE_CANCELLED, 'Cancelled'),
        (TYPE_CANCELLED_NOW, 'Cancelled now'),
        (TYPE_RESUMED, 'Resumed'),
        (TYPE_ENDED, 'Ended'),
        (TYPE_EXPIRED, 'Expired'),
        (TYPE_ERROR, 'Error'),
    ]

    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.PROTECT,
        related_name='logs'
    )
    type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    sequence = models.PositiveIntegerField()
    data = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['subscription', 'sequence']
        constraints = [
            models.UniqueConstraint(fields=['subscription', 'sequence'], name='unique_subscription_log_sequence'),
        ]

    def __str__(self):
        return f"#{self.sequence} {self.type}"


class Invoice(models.Model):
    """
    An amount owed by a customer, charged through a gateway.
    Immutable once fulfilled.
    """
    STATUS_NEW = 'new'
    STATUS_PAID = 'paid'
    STATUS_FAILED = 'failed'

    STATUS_CHOICES = [
        (STATUS_NEW, 'New'),
        (STATUS_PAID, 'Paid'),
        (STATUS_FAILED, 'Failed'),
    ]

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for the invoice"
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='invoices'
    )
    transaction = models.ForeignKey(
        SubscriptionTransaction,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='invoices',
        help_text="Ledger entry this invoice pays, if any"
    )
    amount_cents = models.PositiveIntegerField(help_text="Total amount in cents")
    currency = models.CharField(max_length=3, default='USD', help_text="Currency code (ISO 4217)")
    description = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_NEW)
    metadata = models.JSONField(default=dict, blank=True)
    error = models.TextField(blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Invoice'
        verbose_name_plural = 'Invoices'

    def __str__(self):
        return f"Invoice {self.uid} - {self.amount_display}"

    @property
    def uid(self):
        return str(self.id)

    @property
    def currency_code(self):
        return self.currency

    @property
    def amount_display(self):
        return format_amount(self.amount_cents, self.currency)

    def total(self):
        """Amount in major units."""
        return Decimal(self.amount_cents) / 100

    def is_paid(self):
        return self.status == self.STATUS_PAID

    def _ensure_mutable(self):
        if self.is_paid():
            raise InvoiceLocked(f"Invoice {self.uid} is already paid")

    def get_metadata(self):
        return dict(self.metadata or {})

    def update_metadata(self, data):
        self._ensure_mutable()
        metadata = self.get_metadata()
        metadata.update(data)
        self.metadata = metadata
        self.save(update_fields=['metadata', 'updated_at'])

    def fulfill(self):
        self._ensure_mutable()
        self.status = self.STATUS_PAID
        self.error = ''
        self.paid_at = timezone.now()
        self.save()

    def pay_failed(self, message):
        self._ensure_mutable()
        self.status = self.STATUS_FAILED
        self.error = message
        self.save()

    def pending_transaction(self):
        if self.transaction_id and self.transaction.is_pending():
            return self.transaction
        return None
