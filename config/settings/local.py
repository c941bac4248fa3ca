from .base import *  # noqa: F403
from .base import INSTALLED_APPS
from .base import LOGGING
from .base import env

# GENERAL
# ------------------------------------------------------------------------------
# https://docs.djangoproject.com/en/dev/ref/settings/#debug
DEBUG = True
# https://docs.djangoproject.com/en/dev/ref/settings/#secret-key
SECRET_KEY = env(
    "DJANGO_SECRET_KEY",
    default="Zq3u8cN1mVb7pXo2Lr5tWy9aKd4fGh6jSe0iUn8OvMx2CqRz7BlTw3EyAs5DkPf1",
)
# https://docs.djangoproject.com/en/dev/ref/settings/#allowed-hosts
ALLOWED_HOSTS = ["localhost", "0.0.0.0", "127.0.0.1"]  # noqa: S104

# EMAIL
# ------------------------------------------------------------------------------
# Console backend prints emails to terminal (no mail server needed)
EMAIL_BACKEND = "django.core.mail.backends.console.EmailBackend"

# WhiteNoise
# ------------------------------------------------------------------------------
# http://whitenoise.evans.io/en/latest/django.html#using-whitenoise-in-development
INSTALLED_APPS = ["whitenoise.runserver_nostatic", *INSTALLED_APPS]

# Celery
# ------------------------------------------------------------------------------
# Run side-effect tasks inline unless a local worker is up
CELERY_TASK_ALWAYS_EAGER = env.bool("CELERY_TASK_ALWAYS_EAGER", default=True)

# Logging
# ------------------------------------------------------------------------------
# Make local development chatty so webhook processing shows up immediately.
LOGGING["root"]["level"] = "DEBUG"
LOGGING["loggers"]["academie"] = {
    "handlers": ["console"],
    "level": "DEBUG",
    "propagate": False,
}
