import pytest
from rest_framework.test import APIRequestFactory

from academie.billing.constants import MembershipStatus
from academie.users.api.views import UserViewSet
from academie.users.models import User


class TestUserViewSet:
    """
    The UserViewSet only exposes the 'me' action, which includes the
    member's read-only membership status.
    """

    @pytest.fixture
    def api_rf(self) -> APIRequestFactory:
        return APIRequestFactory()

    def test_me(self, installment_member: User, api_rf: APIRequestFactory):
        view = UserViewSet()
        request = api_rf.get("/fake-url/")
        request.user = installment_member

        view.request = request

        response = view.me(request)  # type: ignore[call-arg, arg-type, misc]

        assert response.data["email"] == installment_member.email
        assert response.data["subscription_status"] == MembershipStatus.ACTIVE
        assert response.data["installments_paid"] == 0
        assert response.data["installments_required"] == 3
