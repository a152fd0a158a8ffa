"""
Django settings for the linkmanager_site project.

The project serves the linkmanager JSON API together with the Django admin
used to manage documents. Everything that differs between environments is
read from environment variables so the same module works for local
development, the test suite and production.

See https://docs.djangoproject.com/en/4.2/ref/settings/ for the full list
of settings.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from urllib.parse import parse_qs, unquote, urlparse

from django.core.exceptions import ImproperlyConfigured

BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'django-insecure-change-me')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv('DJANGO_DEBUG', 'false').lower() == 'true'

RUNNING_TESTS = os.getenv('PYTEST_CURRENT_TEST') is not None or 'pytest' in sys.modules
if RUNNING_TESTS:
    DEBUG = True

if not DEBUG and SECRET_KEY == 'django-insecure-change-me' and not RUNNING_TESTS:
    raise ImproperlyConfigured('DJANGO_SECRET_KEY must be set when DEBUG is False.')

ALLOWED_HOSTS: list[str] = [
    host.strip()
    for host in os.getenv('DJANGO_ALLOWED_HOSTS', '127.0.0.1,localhost,testserver').split(',')
    if host.strip()
]

CSRF_TRUSTED_ORIGINS: list[str] = [
    origin.strip()
    for origin in os.getenv('DJANGO_CSRF_TRUSTED_ORIGINS', '').split(',')
    if origin.strip()
]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'axes',
    'linkmanager',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'whitenoise.middleware.WhiteNoiseMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'axes.middleware.AxesMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    'linkmanager.middleware.sliding_window_rate_throttle',
]

ROOT_URLCONF = 'linkmanager_site.urls'

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

WSGI_APPLICATION = 'linkmanager_site.wsgi.application'


def _database_from_url(url: str, *, conn_max_age: int, ssl_require: bool, sqlite_default: Path) -> dict[str, object]:
    """Translate a ``DATABASE_URL`` into a Django database entry."""

    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme in {'postgres', 'postgresql'}:
        config: dict[str, object] = {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': unquote(parsed.path.lstrip('/')),
        }
    elif scheme == 'sqlite':
        path = unquote(parsed.path or '').lstrip('/') or str(sqlite_default)
        if not os.path.isabs(path):
            path = str((sqlite_default.parent / path).resolve())
        return {'ENGINE': 'django.db.backends.sqlite3', 'NAME': path, 'CONN_MAX_AGE': conn_max_age}
    else:
        raise ImproperlyConfigured(f'Unsupported DATABASE_URL scheme: {scheme}')

    config['CONN_MAX_AGE'] = conn_max_age
    for key, value in (
        ('USER', parsed.username and unquote(parsed.username)),
        ('PASSWORD', parsed.password and unquote(parsed.password)),
        ('HOST', parsed.hostname),
        ('PORT', parsed.port and str(parsed.port)),
    ):
        if value:
            config[key] = value

    options = {key: values[-1] for key, values in parse_qs(parsed.query).items() if values}
    if ssl_require:
        options.setdefault('sslmode', 'require')
    if options:
        config['OPTIONS'] = options
    return config


default_sqlite_path = BASE_DIR / 'db.sqlite3'
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': default_sqlite_path,
    }
}

database_url = os.getenv('DATABASE_URL')
if database_url:
    DATABASES['default'] = _database_from_url(
        database_url,
        conn_max_age=int(os.getenv('DATABASE_CONN_MAX_AGE', '600')),
        ssl_require=os.getenv('DATABASE_SSL_REQUIRE', 'true').lower() == 'true',
        sqlite_default=default_sqlite_path,
    )

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = os.getenv('DJANGO_STATIC_URL', '/static/')
STATIC_ROOT = Path(os.getenv('DJANGO_STATIC_ROOT', BASE_DIR / 'staticfiles'))

STORAGES = {
    'default': {'BACKEND': 'django.core.files.storage.FileSystemStorage'},
    'staticfiles': {'BACKEND': 'whitenoise.storage.CompressedManifestStaticFilesStorage'},
}
if RUNNING_TESTS:
    # The manifest only exists after collectstatic.
    STORAGES['staticfiles'] = {'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage'}
WHITENOISE_KEEP_ONLY_HASHED_FILES = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LOGIN_URL = '/admin/login/'


# Link manager
LINKMANAGER_SITE_URL = os.getenv('LINKMANAGER_SITE_URL', 'http://localhost:8000')
LINKMANAGER_ENGINE_CONFIG = os.getenv('LINKMANAGER_ENGINE_CONFIG') or None
LINKMANAGER_LOCK_TIMEOUT = int(os.getenv('LINKMANAGER_LOCK_TIMEOUT', '150'))  # seconds
LINKMANAGER_DOCUMENT_TYPES = [
    value.strip()
    for value in os.getenv('LINKMANAGER_DOCUMENT_TYPES', 'post,page').split(',')
    if value.strip()
]


# django-axes configuration: guard against brute-force login attempts
AXES_FAILURE_LIMIT = 6
AXES_COOLOFF_TIME = 1  # hour(s)
AXES_ENABLE_ADMIN = True
AXES_RESET_ON_SUCCESS = True
AXES_LOCKOUT_PARAMETERS = ['username', 'ip_address']


# Security headers and session hardening
SESSION_COOKIE_HTTPONLY = True
CSRF_COOKIE_HTTPONLY = True
SESSION_COOKIE_SECURE = os.getenv('DJANGO_SESSION_COOKIE_SECURE', 'false').lower() == 'true'
CSRF_COOKIE_SECURE = os.getenv('DJANGO_CSRF_COOKIE_SECURE', 'false').lower() == 'true'
SECURE_CONTENT_TYPE_NOSNIFF = True
X_FRAME_OPTIONS = 'DENY'
SECURE_REFERRER_POLICY = 'strict-origin-when-cross-origin'
SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')
USE_X_FORWARDED_HOST = True

if not DEBUG:
    SECURE_SSL_REDIRECT = os.getenv('DJANGO_SECURE_SSL_REDIRECT', 'true').lower() == 'true'
    SESSION_COOKIE_SECURE = os.getenv('DJANGO_SESSION_COOKIE_SECURE', 'true').lower() == 'true'
    CSRF_COOKIE_SECURE = os.getenv('DJANGO_CSRF_COOKIE_SECURE', 'true').lower() == 'true'
    SECURE_HSTS_SECONDS = int(os.getenv('DJANGO_SECURE_HSTS_SECONDS', '31536000'))
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SECURE_HSTS_PRELOAD = True
else:
    SECURE_SSL_REDIRECT = False

# Rate limiting for the routes that rewrite document bodies (per IP per route)
THROTTLED_ROUTES = [
    'linkmanager:link_add',
    'linkmanager:link_batch_add',
    'linkmanager:link_update',
    'linkmanager:link_remove',
    'linkmanager:link_batch_remove',
]
THROTTLE_LIMIT = int(os.getenv('LINKMANAGER_THROTTLE_LIMIT', '60'))
THROTTLE_WINDOW = int(os.getenv('LINKMANAGER_THROTTLE_WINDOW', '60'))
THROTTLE_IP_HEADER = os.getenv('LINKMANAGER_THROTTLE_HEADER', 'HTTP_X_FORWARDED_FOR')
THROTTLE_KEY_PREFIX = 'linkmanager:throttle'

AUTHENTICATION_BACKENDS = [
    'django.contrib.auth.backends.ModelBackend',
    'axes.backends.AxesBackend',
]


log_level = os.getenv('DJANGO_LOG_LEVEL', 'INFO').upper()
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s %(name)s %(message)s',
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
        'level': log_level,
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': log_level,
            'propagate': False,
        },
        'axes': {
            'handlers': ['console'],
            'level': log_level,
            'propagate': False,
        },
        'linkmanager': {
            'handlers': ['console'],
            'level': os.getenv('LINKMANAGER_LOG_LEVEL', log_level).upper(),
            'propagate': False,
        },
    },
}
