"""
Django Admin configuration for the cashier app.

Provides admin interfaces for:
- Plans
- Subscriptions (with ledger and audit log inlines, and a sync action)
- Subscription transactions
- Invoices
"""

from django.contrib import admin, messages
from django.utils.html import format_html
from .models import Plan, Subscription, SubscriptionLog, SubscriptionTransaction, Invoice


class SubscriptionTransactionInline(admin.TabularInline):
    """
    Inline admin for the ledger of a subscription.
    """
    model = SubscriptionTransaction
    extra = 0
    fields = ['created_at', 'type', 'status', 'amount_cents', 'currency', 'remote_reference', 'remote_status_text', 'error']
    readonly_fields = fields
    can_delete = False
    ordering = ['created_at', 'id']

    def has_add_permission(self, request, obj=None):
        return False


class SubscriptionLogInline(admin.TabularInline):
    """
    Inline admin for the audit log, in sequence order.
    """
    model = SubscriptionLog
    extra = 0
    fields = ['sequence', 'type', 'data', 'created_at']
    readonly_fields = fields
    can_delete = False
    ordering = ['sequence']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    list_display = [
        'name',
        'slug',
        'price_display_formatted',
        'billing_interval',
        'interval_count',
        'subscription_count',
        'is_active',
        'created_at',
    ]

    list_filter = ['billing_interval', 'is_active', 'currency']
    search_fields = ['name', 'slug']
    readonly_fields = ['id', 'slug', 'created_at', 'updated_at']

    fieldsets = (
        ('Basic Information', {
            'fields': ('id', 'name', 'slug', 'is_active')
        }),
        ('Pricing', {
            'fields': ('price_cents', 'currency', 'billing_interval', 'interval_count')
        }),
        ('Metadata', {
            'fields': ('created_at', 'updated_at')
        }),
    )

    def price_display_formatted(self, obj):
        """Display formatted price"""
        return obj.price_display
    price_display_formatted.short_description = 'Price'
    price_display_formatted.admin_order_field = 'price_cents'

    def subscription_count(self, obj):
        """Display count of live subscriptions"""
        return obj.subscriptions.filter(status__in=[Subscription.STATUS_ACTIVE, Subscription.STATUS_EXPIRING]).count()
    subscription_count.short_description = 'Live Subs'


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    """
    Admin interface for Subscription model.

    Subscriptions change state only through the gateways, so every field is
    read-only here; the "sync" action reconciles the selection with the
    provider.
    """

    list_display = [
        'user',
        'plan_name',
        'status_display',
        'gateway',
        'current_period_ends_at',
        'has_error',
        'created_at',
    ]

    list_filter = ['status', 'gateway', 'created_at', 'current_period_ends_at']
    search_fields = ['user__email', 'plan__name', 'transactions__remote_reference']

    readonly_fields = [
        'id',
        'user',
        'plan',
        'gateway',
        'status',
        'started_at',
        'ends_at',
        'current_period_ends_at',
        'error',
        'metadata',
        'created_at',
        'updated_at',
    ]

    inlines = [SubscriptionTransactionInline, SubscriptionLogInline]
    actions = ['sync_from_gateway']

    def plan_name(self, obj):
        return obj.plan.name
    plan_name.short_description = 'Plan'
    plan_name.admin_order_field = 'plan__name'

    def status_display(self, obj):
        """Display status with color coding"""
        status_colors = {
            Subscription.STATUS_NEW: 'gray',
            Subscription.STATUS_PENDING: 'orange',
            Subscription.STATUS_ACTIVE: 'green',
            Subscription.STATUS_EXPIRING: 'blue',
            Subscription.STATUS_ENDED: 'gray',
            Subscription.STATUS_CANCELLED: 'red',
        }
        return format_html(
            '<span style="color: {}; font-weight: bold;">{}</span>',
            status_colors.get(obj.status, 'gray'),
            obj.get_status_display()
        )
    status_display.short_description = 'Status'
    status_display.admin_order_field = 'status'

    def has_error(self, obj):
        return bool(obj.error)
    has_error.short_description = 'Error'
    has_error.boolean = True

    def sync_from_gateway(self, request, queryset):
        """Action to sync selected subscriptions from gateway"""
        from .gateways.factory import get_gateway_for
        from .exceptions import GatewayException

        MAX_SYNC_PER_REQUEST = 50

        count = queryset.count()
        if count > MAX_SYNC_PER_REQUEST:
            self.message_user(
                request,
                f"Cannot sync more than {MAX_SYNC_PER_REQUEST} subscriptions at once. "
                f"You selected {count}. Please select fewer items.",
                level=messages.ERROR
            )
            return

        synced = 0
        failed = 0

        for subscription in queryset:
            try:
                if get_gateway_for(subscription).sync(subscription).success:
                    synced += 1
                else:
                    failed += 1
            except GatewayException:
                failed += 1

        self.message_user(
            request,
            f"Synced {synced} subscription(s). {failed} failed."
        )
    sync_from_gateway.short_description = "Sync selected subscriptions from gateway"

    def has_add_permission(self, request):
        return False

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('user', 'plan')


@admin.register(SubscriptionTransaction)
class SubscriptionTransactionAdmin(admin.ModelAdmin):
    list_display = ['uid', 'subscription', 'type', 'status', 'amount_display', 'remote_reference', 'created_at']
    list_filter = ['type', 'status', 'created_at']
    search_fields = ['uid', 'remote_reference', 'subscription__user__email']
    readonly_fields = [f.name for f in SubscriptionTransaction._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ['uid', 'customer', 'amount_display', 'status', 'paid_at', 'created_at']
    list_filter = ['status', 'currency', 'created_at', 'paid_at']
    search_fields = ['id', 'customer__email', 'description']
    readonly_fields = [f.name for f in Invoice._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
