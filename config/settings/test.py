"""
With these settings, tests run faster.
"""

from .base import *  # noqa: F403
from .base import DATABASES
from .base import REST_FRAMEWORK
from .base import env

# GENERAL
# ------------------------------------------------------------------------------
# https://docs.djangoproject.com/en/dev/ref/settings/#secret-key
SECRET_KEY = env(
    "DJANGO_SECRET_KEY",
    default="p7Xr2QwLk9Bv4Nz1Ty6Hc3Ms8Fd0Ga5Je2Ui7Ox4Pl9Wn1Rb6Vk3Cq8Ym0Zt5Ea2",
)
# https://docs.djangoproject.com/en/dev/ref/settings/#test-runner
TEST_RUNNER = "django.test.runner.DiscoverRunner"
DATABASES["default"]["CONN_MAX_AGE"] = 0
# https://docs.djangoproject.com/en/dev/ref/settings/#allowed-hosts
ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]

# PASSWORDS
# ------------------------------------------------------------------------------
# https://docs.djangoproject.com/en/dev/ref/settings/#password-hashers
PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

# EMAIL
# ------------------------------------------------------------------------------
# https://docs.djangoproject.com/en/dev/ref/settings/#email-backend
EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"

# STORAGES
# ------------------------------------------------------------------------------
STORAGES = {
    "default": {
        "BACKEND": "django.core.files.storage.InMemoryStorage",
    },
    "staticfiles": {
        "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
    },
}

# CELERY
# ------------------------------------------------------------------------------
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"

# Your stuff...
# ------------------------------------------------------------------------------
STRIPE_SECRET_KEY = "sk_test_dummy_test_key_for_testing"
STRIPE_WEBHOOK_SECRET = "whsec_test_dummy_secret"
STRIPE_MEMBERSHIP_PRODUCT_ID = "prod_test_membership"
HOTMART_HOTTOK = "test-hottok"
HOTMART_BASIC_TOKEN = "Basic dGVzdDp0ZXN0"
HOTMART_OFFER_PRODUCT_ID = "1001"
HOTMART_MEMBERSHIP_PRODUCT_IDS = ["1001"]
HOTMART_ADDON_PRODUCT_IDS = ["2002"]
SITE_URL = "https://academie.test"
ACCOUNT_SETUP_URL = "https://academie.test/setup-account"

# Disable DRF throttling in tests to prevent rate limit failures during test runs
REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}
