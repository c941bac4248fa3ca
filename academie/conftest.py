import pytest
from django.core.cache import cache

from academie.users.models import User
from academie.users.tests.factories import UserFactory


@pytest.fixture(autouse=True)
def _clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def user(db) -> User:
    return UserFactory()


@pytest.fixture
def installment_member(db) -> User:
    return UserFactory(installment_plan=True)
