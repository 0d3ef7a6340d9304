from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.translation import gettext_lazy as _

from .models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Admin interface for customers with email-based authentication.
    The payment method descriptor is read-only; only gateways write it.
    """

    list_display = (
        'email',
        'first_name',
        'last_name',
        'billing_gateway',
        'is_active',
        'is_staff',
        'created_at',
    )

    list_filter = (
        'is_staff',
        'is_superuser',
        'is_active',
        'created_at',
    )

    search_fields = ('email', 'first_name', 'last_name')

    ordering = ('-created_at',)

    readonly_fields = (
        'payment_method',
        'created_at',
        'updated_at',
        'last_login',
        'date_joined',
    )

    fieldsets = (
        (None, {
            'fields': ('email', 'password')
        }),
        (_('Personal Info'), {
            'fields': ('first_name', 'last_name')
        }),
        (_('Billing'), {
            'fields': ('payment_method',),
            'classes': ('collapse',)
        }),
        (_('Permissions'), {
            'fields': (
                'is_active',
                'is_staff',
                'is_superuser',
                'groups',
                'user_permissions'
            ),
        }),
        (_('Important Dates'), {
            'fields': (
                'last_login',
                'date_joined',
                'created_at',
                'updated_at'
            ),
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': (
                'email',
                'password1',
                'password2',
                'first_name',
                'last_name',
            ),
        }),
    )

    def billing_gateway(self, obj):
        return obj.get_payment_method().get('method') or '-'

    billing_gateway.short_description = _('Gateway')
