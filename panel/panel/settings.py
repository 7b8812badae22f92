"""
Django settings for the panel project.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get(
    'DJANGO_SECRET_KEY',
    'django-insecure-3v9q@k!m2l#x7p$w0t^s8r&n6j*d4f-b5c+h1g=z_y%a(e)u'
)

DEBUG = os.environ.get('DEBUG', 'True').lower() in ('true', '1', 'yes')

ALLOWED_HOSTS = os.environ.get('ALLOWED_HOSTS', '').split(',') if os.environ.get('ALLOWED_HOSTS') else []

INSTALLED_APPS = [
    'stacks',
    'tenants',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
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

ROOT_URLCONF = 'panel.urls'

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

WSGI_APPLICATION = 'panel.wsgi.application'

# Database — use DATABASE_PATH when set (Docker volume),
# otherwise fall back to the local db.sqlite3
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('DATABASE_PATH', BASE_DIR / 'db.sqlite3'),
    }
}

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

# Sessions
SESSION_COOKIE_NAME = 'mautic-panel-session'
SESSION_COOKIE_AGE = 7 * 24 * 60 * 60
SESSION_COOKIE_HTTPONLY = True
SESSION_COOKIE_SAMESITE = 'Lax'
SESSION_COOKIE_SECURE = not DEBUG

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Portainer (orchestration control plane)
PORTAINER_URL = os.environ.get('PORTAINER_URL', '')
PORTAINER_API_TOKEN = os.environ.get('PORTAINER_API_TOKEN', '')
PORTAINER_ENDPOINT_ID = os.environ.get('PORTAINER_ENDPOINT_ID', '1')
PORTAINER_SWARM_ID = os.environ.get('PORTAINER_SWARM_ID', 'swarm-cluster')
PORTAINER_TIMEOUT = float(os.environ.get('PORTAINER_TIMEOUT', '30'))

# Edge routing, owned by the Traefik deployment on the cluster
TRAEFIK_NETWORK_NAME = os.environ.get('TRAEFIK_NETWORK_NAME', 'traefik-public')
TRAEFIK_TLS_RESOLVER_NAME = os.environ.get('TRAEFIK_TLS_RESOLVER_NAME', 'letsencrypt')

MAUTIC_DEFAULT_VERSION = os.environ.get('MAUTIC_DEFAULT_VERSION', '5.2.4')
MAUTIC_AVAILABLE_VERSIONS = [
    v.strip()
    for v in os.environ.get(
        'MAUTIC_AVAILABLE_VERSIONS',
        '5.2.4,5.2.3,5.2.2,5.2.1,5.2.0,5.1.1,5.1.0',
    ).split(',')
    if v.strip()
]

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'tenants': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
        'stacks': {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False},
    },
}
