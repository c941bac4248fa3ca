"""
URL configuration for processor webhooks.

Routes:
- /webhooks/stripe/   - Stripe events (Stripe-Signature verified)
- /webhooks/hotmart/  - Hotmart postbacks (hottok verified)

The billing API lives in config/api_router.py.
"""

from django.urls import path

from academie.billing.views import hotmart_webhook
from academie.billing.views import stripe_webhook

app_name = "billing"

urlpatterns = [
    path(
        "stripe/",
        stripe_webhook,
        name="stripe-webhook",
    ),
    path(
        "hotmart/",
        hotmart_webhook,
        name="hotmart-webhook",
    ),
]
