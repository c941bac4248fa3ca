"""
Public API router.

- users/me/                          current member profile
- membership/{start,cancel,reactivate}/  member's own membership
- prices/, prices/grid/, prices/publish/, prices/hotmart/
- billing/accounts/<id>/...          admin projection and reconciliation
"""

from django.conf import settings
from rest_framework.routers import DefaultRouter
from rest_framework.routers import SimpleRouter

from academie.billing.views import AccountBillingViewSet
from academie.billing.views import MembershipViewSet
from academie.billing.views import PriceOfferViewSet
from academie.users.api.views import UserViewSet

router = DefaultRouter() if settings.DEBUG else SimpleRouter()

router.register("users", UserViewSet)
router.register("membership", MembershipViewSet, basename="membership")
router.register("prices", PriceOfferViewSet, basename="prices")
router.register("billing/accounts", AccountBillingViewSet, basename="billing-account")

app_name = "api"
urlpatterns = router.urls
