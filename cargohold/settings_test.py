# Standard settings, except that everything external is local or faked:
# sqlite in memory, a Redis double installed by the test cases, and fixed
# OIDC/OAuth configuration.
#
#   ./manage.py test --settings=cargohold.settings_test
#

from cargohold.settings import *                                      # noqa: F401,F403

SECRET_KEY = 'cargohold-test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

LFS_PUBLIC_BASE_URL = 'https://lfs.example.com'
LFS_PROXY_URL_TTL = 900

OIDC_GITHUB_ENABLED = True
OIDC_GITHUB_AUDIENCE = 'https://github.com/cargohold'
OIDC_GITHUB_JWKS_URL = ''

OAUTH_GITHUB_ENABLED = True
GITHUB_OAUTH_CLIENT_ID = 'test-client-id'
GITHUB_OAUTH_CLIENT_SECRET = 'test-client-secret'
OAUTH_GITHUB_ALLOWED_HOSTS = ['testserver']
OAUTH_GITHUB_ALLOWED_REDIRECT_URIS = ['http://testserver/auth/github/callback']
OAUTH_GITHUB_SCOPES = ['repo']

AWS_ACCESS_KEY_ID = 'test-access-key'
AWS_SECRET_ACCESS_KEY = 'test-secret-key'
AWS_STORAGE_BUCKET_NAME = 'lfs-test'
AWS_S3_ENDPOINT_URL = 'http://storage.invalid:9000'
