from pathlib import Path
import os

import redis
from botocore.config import Config as BotocoreConfig
from django.core.exceptions import ImproperlyConfigured


# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

from dotenv import load_dotenv
load_dotenv(BASE_DIR / '.env')


def env_bool(name, default='false'):
    return os.getenv(name, default).lower() in ('true', '1', 't', 'yes')


def env_list(name, default=''):
    return [item.strip() for item in os.getenv(name, default).split(',') if item.strip()]


SECRET_KEY = os.getenv('DJANGO_SECRET_KEY')
if not SECRET_KEY:
    # Proxy URL signatures are keyed by SECRET_KEY, so every replica must share one.
    SECRET_KEY = 'django-insecure-fallback-dev-key-!!change-me!!'
    print("WARNING: DJANGO_SECRET_KEY not found in environment or .env. Using fallback. THIS IS INSECURE FOR PRODUCTION.")

DEBUG = env_bool('DJANGO_DEBUG', 'False')

ALLOWED_HOSTS = env_list('DJANGO_ALLOWED_HOSTS', '*')


# Application definition

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'storages',
    'lfs',
    'lfs_internals',
    'accounts',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'cargohold.urls'

# LFS paths never end with a slash; git-lfs would not follow the redirect on POST.
APPEND_SLASH = False

WSGI_APPLICATION = 'cargohold.wsgi.application'


# Database
# https://docs.djangoproject.com/en/5.2/ref/settings/#databases

DATABASE_SSLMODES = ('disable', 'require', 'verify-ca', 'verify-full')

DATABASE_HOST = os.getenv('DATABASE_HOST')
if DATABASE_HOST:
    DATABASE_SSLMODE = os.getenv('DATABASE_SSLMODE', 'require')
    if DATABASE_SSLMODE not in DATABASE_SSLMODES:
        raise ImproperlyConfigured(
            f"DATABASE_SSLMODE must be one of {', '.join(DATABASE_SSLMODES)}, got '{DATABASE_SSLMODE}'"
        )
    database_options = {
        'sslmode': DATABASE_SSLMODE,
        'pool': {
            'min_size': 1,
            'max_size': int(os.getenv('DATABASE_POOL_MAX_SIZE', '25')),
            'timeout': 10,
        },
    }
    if os.getenv('DATABASE_SSLROOTCERT'):
        database_options['sslrootcert'] = os.getenv('DATABASE_SSLROOTCERT')

    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'HOST': DATABASE_HOST,
            'PORT': os.getenv('DATABASE_PORT', '5432'),
            'USER': os.getenv('DATABASE_USER', 'postgres'),
            'PASSWORD': os.getenv('DATABASE_PASSWORD', ''),
            'NAME': os.getenv('DATABASE_DBNAME', 'lfs'),
            'OPTIONS': database_options,
        }
    }
else:
    print("WARNING: DATABASE_HOST not set. Using local sqlite database. THIS IS NOT SUPPORTED IN PRODUCTION.")
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }


# Internationalization
# https://docs.djangoproject.com/en/5.2/topics/i18n/

LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True


# Default primary key field type
# https://docs.djangoproject.com/en/5.2/ref/settings/#default-auto-field

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# Logging
LOGGING_CONFIG = 'cargohold.logging_config.setup_logging'
LOGGING = {
    'level': os.getenv('LOG_LEVEL', 'INFO'),
}


# REST Framework
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "lfs.custom_auth.LFSTokenAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "DEFAULT_RENDERER_CLASSES": ["lfs.renderers.LFSJSONRenderer"],
    "DEFAULT_PARSER_CLASSES": ["lfs.renderers.LFSJSONParser"],
    "EXCEPTION_HANDLER": "lfs.exceptions.lfs_exception_handler",
    "UNAUTHENTICATED_USER": None,
}


# Redis (sessions, OAuth state, metadata/allowlist/JWKS caches)
REDIS_HOST = os.getenv('REDIS_HOST', 'localhost')
REDIS_PORT = int(os.getenv('REDIS_PORT', '6379'))
REDIS_PASSWORD = os.getenv('REDIS_PASSWORD') or None
REDIS_DB = int(os.getenv('REDIS_DB', '0'))

REDIS_CLIENT = redis.Redis(
    connection_pool=redis.BlockingConnectionPool(
        host=REDIS_HOST,
        port=REDIS_PORT,
        password=REDIS_PASSWORD,
        db=REDIS_DB,
        max_connections=10,
        timeout=5,
        socket_timeout=5,
        socket_connect_timeout=5,
        decode_responses=True,
    )
)


# S3/MinIO General Settings
AWS_ACCESS_KEY_ID = os.getenv('S3_ACCESSKEYID')
AWS_SECRET_ACCESS_KEY = os.getenv('S3_SECRETACCESSKEY')
AWS_STORAGE_BUCKET_NAME = os.getenv('S3_BUCKETNAME', 'lfs-objects')
AWS_S3_ENDPOINT_URL = os.getenv('S3_ENDPOINT') or None
AWS_S3_REGION_NAME = os.getenv('S3_REGION', 'us-east-1')
AWS_S3_ADDRESSING_STYLE = 'path'
AWS_S3_SIGNATURE_VERSION = 's3v4'
AWS_S3_FILE_OVERWRITE = True
AWS_DEFAULT_ACL = None
AWS_QUERYSTRING_AUTH = True

# Upper bound for a single proxy transfer against the object store.
SERVER_PROXY_TIMEOUT = int(os.getenv('SERVER_PROXY_TIMEOUT', '600'))

AWS_S3_CLIENT_CONFIG = BotocoreConfig(
    signature_version=AWS_S3_SIGNATURE_VERSION,
    s3={'addressing_style': AWS_S3_ADDRESSING_STYLE},
    connect_timeout=10,
    read_timeout=SERVER_PROXY_TIMEOUT,
    retries={'max_attempts': 3, 'mode': 'standard'},
    request_checksum_calculation='when_required',
    response_checksum_validation='when_required',
)

STORAGES = {
    "default": {"BACKEND": "storages.backends.s3boto3.S3Boto3Storage"},
    "lfs": {"BACKEND": "storages.backends.s3boto3.S3Boto3Storage"},
}


# Git LFS
LFS_PUBLIC_BASE_URL = os.getenv('LFS_PUBLIC_BASE_URL', '')
LFS_PROXY_URL_TTL = int(os.getenv('LFS_PROXY_URL_TTL', '900'))
LFS_MAX_BATCH_BODY_SIZE = 10 * 1024 * 1024

SERVER_TRUST_PROXY = env_bool('SERVER_TRUST_PROXY')
if SERVER_TRUST_PROXY:
    SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')
    USE_X_FORWARDED_HOST = True


# GitHub Actions OIDC
OIDC_GITHUB_ENABLED = env_bool('OIDC_GITHUB_ENABLED', 'true')
OIDC_GITHUB_AUDIENCE = os.getenv('OIDC_GITHUB_AUDIENCE', '')
OIDC_GITHUB_JWKS_URL = os.getenv('OIDC_GITHUB_JWKS_URL', '')


# GitHub OAuth
OAUTH_GITHUB_ENABLED = env_bool('OAUTH_GITHUB_ENABLED')
GITHUB_OAUTH_CLIENT_ID = os.getenv('GITHUB_OAUTH_CLIENT_ID', '')
GITHUB_OAUTH_CLIENT_SECRET = os.getenv('GITHUB_OAUTH_CLIENT_SECRET', '')
OAUTH_GITHUB_ALLOWED_HOSTS = env_list('OAUTH_GITHUB_ALLOWED_HOSTS')
OAUTH_GITHUB_ALLOWED_REDIRECT_URIS = env_list('OAUTH_GITHUB_ALLOWED_REDIRECT_URIS')
OAUTH_GITHUB_SCOPES = env_list('OAUTH_GITHUB_SCOPES', 'repo')
