from django.apps import AppConfig


class BillingConfig(AppConfig):
    """
    Django app configuration for the billing app.

    Handles installment memberships, the payment ledger, and Stripe and
    Hotmart webhooks.
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "academie.billing"
