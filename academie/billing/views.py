"""
Billing views.

Views in this module:
- stripe_webhook / hotmart_webhook: processor webhook endpoints
- AccountBillingViewSet: admin projection, overrides and reconciliation
- PriceOfferViewSet: membership price lookup and publishing
- MembershipViewSet: member starts, cancels or reactivates a membership
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict
from typing import TYPE_CHECKING

from django.conf import settings
from django.http import HttpResponse
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from rest_framework import exceptions as api_exceptions
from rest_framework import mixins
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny
from rest_framework.permissions import IsAdminUser
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from academie.billing import exceptions
from academie.billing.catalog import PriceCatalog
from academie.billing.gateway import StripeGateway
from academie.billing.hotmart import HotmartClient
from academie.billing.reconciliation import ReconciliationService
from academie.billing.serializers import AccountBillingSerializer
from academie.billing.serializers import LinkSubscriptionSerializer
from academie.billing.serializers import ManualOverrideSerializer
from academie.billing.serializers import MembershipProjectionSerializer
from academie.billing.serializers import PriceOfferQuerySerializer
from academie.billing.serializers import PriceOfferSerializer
from academie.billing.serializers import PublishOfferSerializer
from academie.billing.serializers import RecordPaymentSerializer
from academie.billing.serializers import StartMembershipSerializer
from academie.billing.serializers import TransactionSerializer
from academie.billing.services import MembershipService
from academie.billing.webhooks import HotmartEventIngestor
from academie.billing.webhooks import MalformedPayload
from academie.billing.webhooks import StripeEventIngestor
from academie.users.models import User

if TYPE_CHECKING:
    from django.http import HttpRequest

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


@csrf_exempt
@require_http_methods(["POST"])
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    try:
        result = StripeEventIngestor().ingest(request.body, request.headers)
    except exceptions.AuthenticationFailure as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        return HttpResponse(status=400)
    return JsonResponse(result.as_dict())


@csrf_exempt
@require_http_methods(["POST"])
def hotmart_webhook(request: HttpRequest) -> HttpResponse:
    try:
        result = HotmartEventIngestor().ingest(request.body, request.headers)
    except MalformedPayload:
        return HttpResponse(status=400)
    except exceptions.AuthenticationFailure as e:
        logger.warning("Rejected Hotmart webhook: %s", e)
        return JsonResponse({"detail": "Unauthorized"}, status=401)
    return JsonResponse(result.as_dict())


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


class ConflictError(api_exceptions.APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict."
    default_code = "conflict"


class ProcessorUnavailable(api_exceptions.APIException):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "Payment processor request failed."
    default_code = "processor_error"


@contextmanager
def billing_errors():
    """Translate billing exceptions into DRF responses."""
    try:
        yield
    except exceptions.NotFound as e:
        raise api_exceptions.NotFound(str(e)) from e
    except exceptions.Conflict as e:
        raise ConflictError(str(e)) from e
    except exceptions.InvalidRequest as e:
        raise api_exceptions.ValidationError({"detail": str(e)}) from e
    except exceptions.ProcessorError as e:
        raise ProcessorUnavailable(str(e)) from e


def _projection_response(result, status_code=status.HTTP_200_OK) -> Response:
    data = MembershipProjectionSerializer(asdict(result.projection)).data
    return Response(data, status=status_code)


class AccountBillingViewSet(mixins.RetrieveModelMixin, GenericViewSet):
    """
    Admin view of an account's billing state.

    GET returns the projection and the ledger. Writes go through the
    reconciliation actions only.
    """

    serializer_class = AccountBillingSerializer
    permission_classes = [IsAdminUser]
    queryset = User.objects.prefetch_related("transactions")

    @action(detail=True, methods=["post"])
    def override(self, request, pk=None):
        account = self.get_object()
        serializer = ManualOverrideSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with billing_errors():
            result = ReconciliationService().apply_override(
                account.pk,
                **serializer.to_override_kwargs(),
            )
        return _projection_response(result)

    @action(detail=True, methods=["post"], url_path="grant-lifetime")
    def grant_lifetime(self, request, pk=None):
        account = self.get_object()
        with billing_errors():
            result = ReconciliationService().grant_lifetime(account.pk)
        return _projection_response(result)

    @action(detail=True, methods=["post"], url_path="link-subscription")
    def link_subscription(self, request, pk=None):
        account = self.get_object()
        serializer = LinkSubscriptionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with billing_errors():
            result = ReconciliationService().link_subscription(
                account.pk,
                serializer.validated_data["subscription_id"],
            )
        return _projection_response(result)

    @action(detail=True, methods=["post"])
    def payments(self, request, pk=None):
        account = self.get_object()
        serializer = RecordPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with billing_errors():
            ledger_row = ReconciliationService().record_stripe_payment(
                account.pk,
                serializer.validated_data["payment_intent_id"],
                closer=serializer.validated_data["closer"],
            )
        return Response(
            TransactionSerializer(ledger_row).data,
            status=status.HTTP_201_CREATED,
        )


class PriceOfferViewSet(GenericViewSet):
    """Current membership prices."""

    permission_classes = [AllowAny]
    serializer_class = PriceOfferSerializer

    def get_permissions(self):
        if self.action == "publish":
            return [IsAdminUser()]
        return super().get_permissions()

    def list(self, request):
        query = PriceOfferQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        catalog = PriceCatalog(StripeGateway.from_settings())
        with billing_errors():
            offer = catalog.get_offer(
                query.validated_data["installments"],
                query.validated_data["currency"],
            )
        return Response(PriceOfferSerializer(offer).data)

    @action(detail=False, methods=["get"])
    def grid(self, request):
        currency = request.query_params.get("currency", settings.DEFAULT_CURRENCY)
        catalog = PriceCatalog(StripeGateway.from_settings())
        with billing_errors():
            offers = catalog.pricing_grid(currency)
        return Response(PriceOfferSerializer(offers, many=True).data)

    @action(detail=False, methods=["post"])
    def publish(self, request):
        serializer = PublishOfferSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        catalog = PriceCatalog(StripeGateway.from_settings())
        with billing_errors():
            offer = catalog.publish_offer(**serializer.validated_data)
        return Response(PriceOfferSerializer(offer).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"])
    def hotmart(self, request):
        with billing_errors():
            offer = HotmartClient().get_main_offer(settings.HOTMART_OFFER_PRODUCT_ID)
        return Response(asdict(offer))


class MembershipViewSet(GenericViewSet):
    """The signed-in member's own membership."""

    permission_classes = [IsAuthenticated]
    serializer_class = StartMembershipSerializer

    @action(detail=False, methods=["post"])
    def start(self, request):
        serializer = StartMembershipSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with billing_errors():
            result = MembershipService().start_membership(
                request.user,
                serializer.validated_data["price_id"],
                serializer.validated_data["payment_method_id"],
            )
        return Response(asdict(result), status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"])
    def cancel(self, request):
        with billing_errors():
            result = MembershipService().schedule_cancellation(request.user)
        return _projection_response(result)

    @action(detail=False, methods=["post"])
    def reactivate(self, request):
        with billing_errors():
            result = MembershipService().reactivate(request.user)
        return _projection_response(result)
