"""
Django settings for the bursary project.

Fee collection and allocation for school administration.
Production settings should override via environment variables.
"""
from pathlib import Path
import os
import sys

# Load environment variables from .env file (for local development)
from dotenv import load_dotenv
load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# Apps live under apps/ and are imported by their bare label (fees, finance, ...)
APPS_DIR = BASE_DIR / 'apps'
if str(APPS_DIR) not in sys.path:
    sys.path.insert(0, str(APPS_DIR))

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.environ.get(
    'DJANGO_SECRET_KEY',
    'django-insecure-change-this-in-production-bursary-secret-key'
)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.environ.get('DJANGO_DEBUG', 'True').lower() == 'true'

ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')


# Application definition

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Local apps
    'utils.apps.UtilsConfig',
    'core.apps.CoreConfig',
    'students.apps.StudentsConfig',
    'hr.apps.HrConfig',
    'finance.apps.FinanceConfig',
    'fees.apps.FeesConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    'utils.middleware.AuditContextMiddleware',
]

ROOT_URLCONF = 'bursary.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'bursary.wsgi.application'


# Database
# Set DATABASE_URL to a PostgreSQL connection string in production.
# Row locks (select_for_update) on the receipt counter need a real database.

DATABASE_URL = os.environ.get('DATABASE_URL')

if DATABASE_URL:
    import dj_database_url
    DATABASES = {
        'default': dj_database_url.config(
            default=DATABASE_URL,
            conn_max_age=600,
            conn_health_checks=True,
        )
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }


# Internationalization

LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.environ.get('DJANGO_TIME_ZONE', 'Asia/Kolkata')
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# =====================================================
# Fee Collection
# =====================================================

FEE_COLLECTION = {
    # Slack allowed when comparing monetary sums
    'ALLOCATION_TOLERANCE': os.environ.get('FEE_ALLOCATION_TOLERANCE', '0.01'),
    # Atomic, payment-keyed income booking. Empty disables it and the
    # direct-write fallback is used instead.
    'INCOME_BOOKING_FUNCTION': os.environ.get(
        'FEE_INCOME_BOOKING_FUNCTION',
        'finance.services.create_income_from_payment'
    ),
    'MAX_SIDE_EFFECT_ATTEMPTS': int(os.environ.get('FEE_MAX_SIDE_EFFECT_ATTEMPTS', '5')),
    'STAFF_ID_HEADER': 'HTTP_X_STAFF_ID',
    'IDEMPOTENCY_KEY_HEADER': 'HTTP_IDEMPOTENCY_KEY',
}


# =====================================================
# Logging
# =====================================================

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {process:d} {thread:d} {message}',
            'style': '{',
        },
        'simple': {
            'format': '{levelname} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'level': 'INFO',
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': os.environ.get('DJANGO_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'django.db.backends': {
            'handlers': ['console'],
            'level': 'WARNING',
            'propagate': False,
        },
        'fees': {
            'handlers': ['console'],
            'level': os.environ.get('FEES_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'finance': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}


# =====================================================
# Security Settings (Production)
# =====================================================
if not DEBUG:
    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = 'DENY'
    SECURE_HSTS_SECONDS = 31536000
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SECURE_SSL_REDIRECT = True
