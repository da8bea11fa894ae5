"""Django settings used by the order_webhooks test suite."""

import os
import tempfile

import dramatiq
from dramatiq.brokers.stub import StubBroker

SECRET_KEY = "order-webhooks-tests"
DEBUG = False
USE_TZ = True
TIME_ZONE = "UTC"
ALLOWED_HOSTS = ["*"]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "order_webhooks",
]

MIDDLEWARE = [
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
]

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

ROOT_URLCONF = "order_webhooks.tests.urls"
STATIC_URL = "/static/"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
        # Writers wait up to 20s for the lock.
        "OPTIONS": {"timeout": 20, "transaction_mode": "IMMEDIATE"},
        # Threaded tests need one shared file database.
        "TEST": {
            "NAME": os.path.join(tempfile.gettempdir(), "order_webhooks_tests.sqlite3")
        },
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

ORDER_WEBHOOKS = {
    "PUBLIC_BASE_URL": "https://api.example.com",
    "YOUCAN_CLIENT_ID": "youcan-client",
    "YOUCAN_CLIENT_SECRET": "youcan-secret",
    "SHOPIFY_CLIENT_ID": "shopify-client",
    "SHOPIFY_CLIENT_SECRET": "shopify-secret",
}

# Actors are only enqueued in tests, never consumed.
dramatiq.set_broker(StubBroker())
