"""
Django settings for the LifeOS planner project.

Values that differ between machines are read from the environment; a local
``.env`` file is loaded first so development setups don't need to export
anything by hand.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


SECRET_KEY = os.environ.get(
    'DJANGO_SECRET_KEY',
    'django-insecure-lifeos-planner-development-key'
)

DEBUG = _env_bool('DJANGO_DEBUG', True)

ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',')
    if host.strip()
]


# ==================== Applications ====================

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'drf_spectacular',
    'tasks',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'lifeos.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'lifeos.wsgi.application'


# ==================== Database ====================

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('DATABASE_PATH', str(BASE_DIR / 'db.sqlite3')),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# ==================== Internationalization ====================

LANGUAGE_CODE = 'en-us'

# "Today" and "tomorrow" in deadline scoring are calendar days in this zone.
TIME_ZONE = os.environ.get('TIME_ZONE', 'UTC')

USE_I18N = True

USE_TZ = True

STATIC_URL = 'static/'


# ==================== REST Framework ====================

REST_FRAMEWORK = {
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
        'rest_framework.renderers.BrowsableAPIRenderer',
    ],
}

SPECTACULAR_SETTINGS = {
    'TITLE': 'LifeOS Planner API',
    'DESCRIPTION': 'Task prioritization and daily planning engine',
    'VERSION': '1.0.0',
}


# ==================== Planner Engine ====================

PLANNER = {
    # Consecutive head skips before a task is reported as stuck
    'STUCK_THRESHOLD': int(os.environ.get('PLANNER_STUCK_THRESHOLD', 3)),
    'STUCK_RESET_ON_KEEP': _env_bool('PLANNER_STUCK_RESET_ON_KEEP', False),
    'STUCK_RESET_ON_DEFER': _env_bool('PLANNER_STUCK_RESET_ON_DEFER', False),
    # A duplicate complete/skip for a task is ignored for this long
    'IN_FLIGHT_TIMEOUT_SECONDS': float(os.environ.get('PLANNER_IN_FLIGHT_TIMEOUT_SECONDS', 5)),
    # Single-user mode: unauthenticated requests act on this account
    'PERSONAL_USERNAME': os.environ.get('PLANNER_PERSONAL_USERNAME', 'personal'),
    'DEFAULT_AVAILABLE_MINUTES': 240,
}


# ==================== Logging ====================

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '[{asctime}] {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'tasks': {
            'handlers': ['console'],
            'level': os.environ.get('PLANNER_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
