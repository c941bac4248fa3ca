"""
Billing middleware for membership enforcement.

This middleware checks the membership status on requests to the member
area and blocks accounts without access. Manually tracked members whose
paid period has ended are moved to PAST_DUE on their next request.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import TYPE_CHECKING

from django.conf import settings
from django.http import JsonResponse
from django.utils import timezone

from academie.billing.commands import MarkLapsed
from academie.billing.constants import ACCESS_GRANTING_STATUSES
from academie.billing.constants import MembershipStatus
from academie.billing.effects import EffectDispatcher
from academie.billing.membership import MembershipStateMachine

if TYPE_CHECKING:
    from django.http import HttpRequest
    from django.http import HttpResponse

logger = logging.getLogger(__name__)


class MembershipAccessMiddleware:
    """
    Return 402 Payment Required for member-area requests without access.

    Only paths under MEMBERSHIP_PROTECTED_PATH_PREFIXES are checked. Staff
    and anonymous requests pass through untouched; authentication is
    handled elsewhere.

    This middleware should be added after AuthenticationMiddleware.
    """

    DEFAULT_PROTECTED_PREFIXES = ("/api/v1/academy/",)

    def __init__(self, get_response):
        self.get_response = get_response
        self.protected_prefixes = tuple(
            getattr(
                settings,
                "MEMBERSHIP_PROTECTED_PATH_PREFIXES",
                self.DEFAULT_PROTECTED_PREFIXES,
            ),
        )

    def __call__(self, request: HttpRequest) -> HttpResponse:
        user = getattr(request, "user", None)
        if user is None or not user.is_authenticated or user.is_staff:
            return self.get_response(request)
        if not self._is_protected_path(request.path):
            return self.get_response(request)

        status = self._current_status(user)
        if status not in ACCESS_GRANTING_STATUSES:
            return self._block_request(status)
        return self.get_response(request)

    def _is_protected_path(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.protected_prefixes)

    def _current_status(self, user) -> str:
        now = timezone.now()
        lapsed = (
            user.is_manually_tracked
            and user.current_period_end is not None
            and user.current_period_end < now
            and user.subscription_status
            in (MembershipStatus.ACTIVE, MembershipStatus.TRIALING)
        )
        if not lapsed:
            return user.subscription_status

        result = MembershipStateMachine().mark_lapsed(
            MarkLapsed(account_id=user.pk, as_of=now),
        )
        EffectDispatcher().dispatch(result.effects)
        if result.applied:
            logger.info("Membership lapsed for account=%s", user.pk)
        user.subscription_status = result.projection.status
        return result.projection.status

    def _block_request(self, status: str) -> HttpResponse:
        error_messages = {
            MembershipStatus.INCOMPLETE: "Your membership is not active yet.",
            MembershipStatus.PAST_DUE: (
                "Your membership payment is past due. "
                "Please update your payment method."
            ),
            MembershipStatus.CANCELED: (
                "Your membership has been canceled. Please subscribe to continue."
            ),
            MembershipStatus.SMMA_ONLY: (
                "Your purchase covers the SMMA course only."
            ),
        }
        return JsonResponse(
            {
                "detail": error_messages.get(status, "Membership inactive."),
                "code": "membership_inactive",
                "status": status,
            },
            status=HTTPStatus.PAYMENT_REQUIRED,
        )
