"""
Django settings for the walletdrive project.

Everything deployment specific comes from the environment, optionally loaded
from a .env file at the project root.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / '.env')

SECRET_KEY = os.getenv('DJANGO_SECRET_KEY', 'django-insecure-walletdrive-dev-key')
DEBUG = os.getenv('DJANGO_DEBUG', 'False').lower() in ('true', '1', 't')
ALLOWED_HOSTS = [h.strip() for h in os.getenv('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if h.strip()]

INSTALLED_APPS = [
    # Local apps
    'apps.storage_providers',
    'apps.files',
    'apps.audio',
]

# JSON API authenticated by wallet signatures: no sessions, cookies or CSRF tokens
MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'apps.files.middleware.RequestLoggingMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
    'apps.files.middleware.ApiErrorMiddleware',
]

ROOT_URLCONF = 'walletdrive.urls'
ASGI_APPLICATION = 'walletdrive.asgi.application'
WSGI_APPLICATION = 'walletdrive.wsgi.application'

# Trailing-slash redirects would turn POSTs into GETs
APPEND_SLASH = False

# No relational state, every wallet's metadata lives on IPFS
DATABASES = {}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'walletdrive',
    }
}

# Uploads arrive base64 encoded inside JSON bodies
DATA_UPLOAD_MAX_MEMORY_SIZE = 50 * 1024 * 1024

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = False
USE_TZ = True


# 64 hex characters (32 bytes); the files app refuses to start without it
CID_ENCRYPTION_KEY = os.getenv('ENCRYPTION_KEY')

STORAGE_PROVIDER = {
    'platform': 'Pinata',
    'config': {
        'jwt': os.getenv('PINATA_JWT', ''),
        'api_url': os.getenv('PINATA_API_URL', 'https://api.pinata.cloud'),
        'gateway_url': os.getenv('PINATA_GATEWAY_URL', 'https://gateway.pinata.cloud'),
        'probe_timeout': 5.0,
        'metadata_timeout': 15.0,
        'content_timeout': 30.0,
        'cid_version': 1,
    },
}

GOOGLE_API_KEY = os.getenv('GOOGLE_API_KEY')
GEMINI_MODEL = os.getenv('GEMINI_MODEL', 'gemini-1.5-flash')

ELEVENLABS_API_KEY = os.getenv('ELEVENLABS_API_KEY')
ELEVENLABS_VOICE_ID = os.getenv('ELEVENLABS_VOICE_ID', 'pNInz6obpgDQGcFmaJgB')
AUDIO_DIR = Path(os.getenv('AUDIO_DIR', BASE_DIR / 'audio'))
AUDIO_RATE_LIMIT = {
    'requests': 10,
    'window': 15 * 60,
}

ACCESS_TOKEN_TTL_SECONDS = 5 * 60
ACCESS_TOKEN_SWEEP_INTERVAL = 5 * 60
ACCESS_TOKEN_MAX_ENTRIES = 10000
ACCESS_TOKEN_SWEEPER_ENABLED = True

METADATA_VERIFY_ATTEMPTS = 15
METADATA_VERIFY_DELAY = 0.5
METADATA_VERIFY_BACKOFF = 1.0
METADATA_WRITE_ATTEMPTS = 3

UPSTREAM_TIMEOUTS = {
    'probe': 5.0,
    'metadata': 15.0,
    'content': 30.0,
    'audio': 60.0,
}

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'apps': {
            'handlers': ['console'],
            'level': os.getenv('DJANGO_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
