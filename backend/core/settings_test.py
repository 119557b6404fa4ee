from __future__ import annotations

import tempfile

from .settings import *  # noqa: F401,F403

DEBUG = False
SECRET_KEY = "test-secret-key-with-enough-length-for-hs256-signing"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]
EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
MEDIA_ROOT = tempfile.mkdtemp(prefix="aide-sociale-media-")
STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"},
}

DEPENDENCY_RETRY_DELAY_SECONDS = 0

LOGGING["root"]["level"] = "WARNING"  # type: ignore[index]  # noqa: F405
