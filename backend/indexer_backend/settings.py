import os
import sys
from pathlib import Path
from dotenv import load_dotenv
import dj_database_url

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

SECRET_KEY = os.environ.get("SECRET_KEY", os.environ.get("DJANGO_SECRET_KEY", "changeme"))
DEBUG = os.getenv("DEBUG", os.getenv("DJANGO_DEBUG", "True")) == "True"
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "127.0.0.1,localhost").split(",")

# Test-mode flag used by the read-model write barrier.
TESTING = (
    "PYTEST_CURRENT_TEST" in os.environ
    or "pytest" in sys.argv[0]
    or "test" in sys.argv
)

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "ops.apps.OpsConfig",  # Operations & observability
    "events.apps.EventsConfig",
    "projections.apps.ProjectionsConfig",
    "indexer.apps.IndexerConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "ops.metrics.track_request_metrics",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "indexer_backend.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    }
]

WSGI_APPLICATION = "indexer_backend.wsgi.application"

# =============================================================================
# Database Configuration
# =============================================================================
# Event store, checkpoints and read models share one database so a processor's
# writes and its applied-event marker commit together.
DATABASES = {
    "default": dj_database_url.config(
        env="DATABASE_URL",
        default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}",
        conn_max_age=600,
    )
}

AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
        "OPTIONS": {"min_length": 8},
    },
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": (
        "rest_framework.permissions.IsAuthenticated",
    ),
}

# =============================================================================
# Celery Configuration (periodic backlog catch-up)
# =============================================================================
REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379/0")

CELERY_BROKER_URL = REDIS_URL
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 30 * 60  # 30 minutes
CELERY_WORKER_PREFETCH_MULTIPLIER = 1  # Prevent task hoarding
CELERY_TASK_ALWAYS_EAGER = TESTING

CELERY_BEAT_SCHEDULE = {
    "check-indexer-health": {
        "task": "indexer.tasks.check_indexer_health",
        "schedule": 60.0,
    },
}

# =============================================================================
# Indexer Configuration
# =============================================================================
# Contracts the supervisor runs by default (one worker thread each).
INDEXER_CONTRACTS = [
    c.strip() for c in os.getenv("INDEXER_CONTRACTS", "issuer,lender").split(",") if c.strip()
]

# Seconds between live-subscription polls of the event store
INDEXER_POLL_INTERVAL = float(os.getenv("INDEXER_POLL_INTERVAL", "2.0"))

# Rows fetched per backlog page
INDEXER_PAGE_SIZE = int(os.getenv("INDEXER_PAGE_SIZE", "500"))

# Processor failures retried before the stream halts (0 = halt immediately)
INDEXER_PROCESSOR_RETRIES = int(os.getenv("INDEXER_PROCESSOR_RETRIES", "0"))

# Checkpoint write failures retried before the stream halts
INDEXER_CHECKPOINT_RETRIES = int(os.getenv("INDEXER_CHECKPOINT_RETRIES", "5"))

# Exponential backoff bounds (seconds)
INDEXER_BACKOFF_INITIAL = float(os.getenv("INDEXER_BACKOFF_INITIAL", "1.0"))
INDEXER_BACKOFF_MAX = float(os.getenv("INDEXER_BACKOFF_MAX", "60.0"))

# Consecutive source failures a Celery backlog task absorbs before failing
# with SourceUnavailable and leaving the retry to Celery
INDEXER_TASK_SOURCE_RETRIES = int(os.getenv("INDEXER_TASK_SOURCE_RETRIES", "3"))

# Unprocessed events per stream before health reports "degraded"
INDEXER_LAG_THRESHOLD = int(os.getenv("INDEXER_LAG_THRESHOLD", "1000"))

# =============================================================================
# Structured Logging Configuration
# =============================================================================
from ops.logging_config import get_logging_config
LOGGING = get_logging_config(DEBUG)

# =============================================================================
# Observability Configuration
# =============================================================================
# Application version (set via CI/CD)
VERSION = os.getenv("APP_VERSION", "dev")
