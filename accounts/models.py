from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.db import models
from django.utils.translation import gettext_lazy as _


class UserManager(BaseUserManager):
    """
    Custom user manager where email is the unique identifier
    instead of username for authentication.
    """

    def create_user(self, email, password=None, **extra_fields):
        """
        Create and save a regular user with the given email and password.
        """
        if not email:
            raise ValueError(_('The Email field must be set'))

        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """
        Create and save a superuser with the given email and password.
        """
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)

        if extra_fields.get('is_staff') is not True:
            raise ValueError(_('Superuser must have is_staff=True.'))
        if extra_fields.get('is_superuser') is not True:
            raise ValueError(_('Superuser must have is_superuser=True.'))

        return self.create_user(email, password, **extra_fields)


class User(AbstractUser):
    """
    Customer account billed by the cashier.

    Email is the login identifier. The payment method descriptor records
    which gateway the customer pays through plus any gateway-side ids
    (e.g. a Stripe customer id), and is written only by the gateways.
    """

    username = None

    email = models.EmailField(_('email address'), unique=True)

    payment_method = models.JSONField(
        _('payment method'),
        default=dict,
        blank=True,
        help_text=_('Gateway name and gateway-side identifiers for this customer')
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = _('user')
        verbose_name_plural = _('users')

    def __str__(self):
        return self.email

    # Billable interface

    def get_billable_id(self):
        return str(self.pk)

    def get_billable_email(self):
        return self.email

    def get_payment_method(self):
        return dict(self.payment_method or {})

    def update_payment_method(self, descriptor):
        """
        Merge gateway data into the stored payment method.

        Switching to a different gateway discards the previous gateway's keys.
        """
        current = self.get_payment_method()
        if descriptor.get('method') and descriptor['method'] != current.get('method'):
            current = {}
        current.update(descriptor)
        self.payment_method = current
        self.save(update_fields=['payment_method', 'updated_at'])
