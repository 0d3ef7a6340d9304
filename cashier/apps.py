from django.apps import AppConfig


class CashierConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "cashier"
    verbose_name = "Cashier"

    def ready(self):
        """
        Import signal handlers when the app is ready.
        This ensures receivers are connected before the first audit entry is written.
        """
        import cashier.signals  # noqa: F401
