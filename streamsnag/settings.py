from pathlib import Path
import os
import sys

BASE_DIR = Path(__file__).resolve().parent.parent


def env(name: str, default=None):
    return os.environ.get(name, os.environ.get(f"DJANGO_{name}", default))


def env_bool(name: str, default="0") -> bool:
    return str(env(name, default)).strip().lower() in ("1", "true", "yes", "on")


def env_int(name: str, default: int) -> int:
    try:
        return int(env(name, str(default)))
    except (TypeError, ValueError):
        return default


def env_float(name: str, default: float) -> float:
    try:
        return float(env(name, str(default)))
    except (TypeError, ValueError):
        return default


def split_csv(value) -> list[str]:
    cleaned = (value or "").replace(" ", "")
    return [x for x in cleaned.split(",") if x]


SECRET_KEY = env("SECRET_KEY", "dev-only-change-me")
DEBUG = env_bool("DEBUG", "1" if ("runserver" in sys.argv) else "0")

ALLOWED_HOSTS = split_csv(env("ALLOWED_HOSTS", "127.0.0.1,localhost"))

RUNNING_TESTS = ("test" in sys.argv) or ("pytest" in sys.modules)
if DEBUG or RUNNING_TESTS:
    if "testserver" not in ALLOWED_HOSTS:
        ALLOWED_HOSTS.append("testserver")

INSTALLED_APPS = [
    "rest_framework",
    "extraction",
]

# Basic auth creds (if unset, middleware is a no-op)
BASIC_AUTH_USER = env("BASIC_AUTH_USER", "")
BASIC_AUTH_PASS = env("BASIC_AUTH_PASS", "")

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",

    # Basic auth wrapper (private service)
    "extraction.middleware.BasicAuthMiddleware",
]

ROOT_URLCONF = "streamsnag.urls"

TEMPLATES = []

WSGI_APPLICATION = "streamsnag.wsgi.application"
ASGI_APPLICATION = "streamsnag.asgi.application"

# Nothing is persisted beyond temp files.
DATABASES = {}

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": [],
    "UNAUTHENTICATED_USER": None,
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True

# Bind address for `manage.py serve`
HOST = env("HOST", "0.0.0.0")
PORT = env_int("PORT", 3000)

# Headless browser
BROWSER_EXECUTABLE_PATH = env(
    "BROWSER_EXECUTABLE_PATH",
    env("PUPPETEER_EXECUTABLE_PATH", "/usr/bin/google-chrome-stable"),
)
BROWSER_REUSE = env_bool("BROWSER_REUSE", "1")
NAVIGATION_TIMEOUT_MS = env_int("NAVIGATION_TIMEOUT_MS", 45000)
SETTLE_SECONDS = env_float("SETTLE_SECONDS", 3.0)
STRATEGY_TIMEOUT_SECONDS = env_float("STRATEGY_TIMEOUT_SECONDS", 30.0)
NETWORK_WAIT_SECONDS = env_float("NETWORK_WAIT_SECONDS", 5.0)
MAX_ADDRESS_VARIANTS = env_int("MAX_ADDRESS_VARIANTS", 3)

# Temp files (downloads + merged outputs), served under /temp/
TEMP_DIR = env("TEMP_DIR", str(BASE_DIR / "temp"))
TEMP_MAX_AGE_MINUTES = env_int("TEMP_MAX_AGE_MINUTES", 30)

# Remux
FFMPEG_BIN = env("FFMPEG_BIN", "ffmpeg")
REMUX_TIMEOUT_SECONDS = env_float("REMUX_TIMEOUT_SECONDS", 300.0)
DOWNLOAD_TIMEOUT_SECONDS = env_float("DOWNLOAD_TIMEOUT_SECONDS", 60.0)
MAX_DOWNLOAD_BYTES = env_int("MAX_DOWNLOAD_BYTES", 1024**3)
DOWNLOAD_USER_AGENT = env(
    "DOWNLOAD_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "plain"},
    },
    "loggers": {
        "extraction": {"handlers": ["console"], "level": env("LOG_LEVEL", "INFO"), "propagate": False},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
}

# Production hardening
if not DEBUG:
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
    USE_X_FORWARDED_HOST = True

    SECURE_SSL_REDIRECT = env_bool("SECURE_SSL_REDIRECT", "0")
    SECURE_CONTENT_TYPE_NOSNIFF = True
    SECURE_REFERRER_POLICY = "same-origin"
    X_FRAME_OPTIONS = "DENY"
