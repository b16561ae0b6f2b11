# cargohold/test_utils.py
"""
Shared fixtures for the test suites: in-memory stand-ins for Redis and the
object store, an RSA key that signs GitHub-Actions-shaped tokens, and a
TestCase that wires them into the running project.
"""
import base64
import functools
import hashlib
import json
import time
from unittest import mock
from urllib.parse import urlsplit

import django.test
import jwt
import redis
from cryptography.hazmat.primitives.asymmetric import rsa
from django.test import override_settings
from rest_framework.test import APIClient

from lfs.domain import RepositoryIdentifier
from lfs.renderers import LFS_MEDIA_TYPE
from lfs.repository import CachingRepositoryAllowlist
from lfs.storage import ObjectNotInStore, ObjectStoreError, SizeLimitedReader
from lfs_internals import cache_keys
from lfs_internals.oidc import GITHUB_ACTIONS_ISSUER

TEST_AUDIENCE = 'https://github.com/cargohold'
TEST_BASE_URL = 'https://lfs.example.com'


class FakePipeline:
    def __init__(self, server):
        self.server = server
        self.commands = []

    def get(self, name):
        self.commands.append(('get', (name,)))
        return self

    def delete(self, *names):
        self.commands.append(('delete', names))
        return self

    def execute(self):
        self.server._check()
        results = [getattr(self.server, command)(*args) for command, args in self.commands]
        self.commands = []
        return results


class FakeRedis:
    """Just enough of redis.Redis (decode_responses=True) for RedisCache."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.exceptions.ConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    def get(self, name):
        self._check()
        return self.store.get(name)

    def set(self, name, value, ex=None):
        self._check()
        self.store[name] = value if isinstance(value, str) else str(value)
        self.ttls[name] = ex
        return True

    def delete(self, *names):
        self._check()
        removed = 0
        for name in names:
            if name in self.store:
                del self.store[name]
                self.ttls.pop(name, None)
                removed += 1
        return removed

    def exists(self, *names):
        self._check()
        return sum(1 for name in names if name in self.store)

    def ping(self):
        self._check()
        return True

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class FakeObjectStore:
    """In-memory bucket with the same contract as lfs.storage.S3ObjectStore."""

    def __init__(self):
        self.objects = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise ObjectStoreError("object store is unavailable")

    def presign_put(self, storage_key, ttl):
        return f"https://bucket.s3.amazonaws.com/{storage_key}?X-Amz-Expires={ttl}"

    def presign_get(self, storage_key, ttl):
        return f"https://bucket.s3.amazonaws.com/{storage_key}?X-Amz-Expires={ttl}"

    def stream_put(self, storage_key, reader, size):
        self._check()
        body = SizeLimitedReader(reader, size)
        chunks = []
        while True:
            chunk = body.read(4096)
            if not chunk:
                break
            chunks.append(chunk)
        self.objects[storage_key] = b"".join(chunks)

    def stream_get(self, storage_key):
        self._check()
        if storage_key not in self.objects:
            raise ObjectNotInStore(storage_key)
        data = self.objects[storage_key]
        return iter([data[i:i + 4096] for i in range(0, len(data), 4096)]), len(data)

    def head(self, storage_key):
        self._check()
        if storage_key not in self.objects:
            raise ObjectNotInStore(storage_key)
        return len(self.objects[storage_key])

    def ping(self):
        self._check()


def b64url_uint(value: int) -> str:
    raw = value.to_bytes((value.bit_length() + 7) // 8 or 1, 'big')
    return base64.urlsafe_b64encode(raw).rstrip(b'=').decode('ascii')


class OIDCTestKey:
    def __init__(self, kid='test-key'):
        self.kid = kid
        self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    def jwk(self) -> dict:
        numbers = self.private_key.public_key().public_numbers()
        return {"kid": self.kid, "kty": "RSA", "use": "sig", "n": b64url_uint(numbers.n), "e": b64url_uint(numbers.e)}

    def jwks(self) -> dict:
        return {"keys": [self.jwk()]}

    def sign(self, claims: dict, headers=None) -> str:
        header = {"kid": self.kid}
        header.update(headers or {})
        return jwt.encode(claims, self.private_key, algorithm="RS256", headers=header)


@functools.lru_cache(maxsize=None)
def get_test_key(kid='test-key') -> OIDCTestKey:
    return OIDCTestKey(kid)


def github_claims(repository='octo/repo', **overrides) -> dict:
    now = int(time.time())
    claims = {
        "iss": GITHUB_ACTIONS_ISSUER,
        "aud": TEST_AUDIENCE,
        "sub": f"repo:{repository}:ref:refs/heads/main",
        "repository": repository,
        "ref": "refs/heads/main",
        "actor": "octocat",
        "iat": now,
        "nbf": now,
        "exp": now + 300,
    }
    claims.update(overrides)
    return claims


def oid_for(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def relative_url(href: str) -> str:
    parts = urlsplit(href)
    return f"{parts.path}?{parts.query}" if parts.query else parts.path


class LFSTestCase(django.test.TestCase):
    client_class = APIClient
    repository = 'octo/repo'

    def setUp(self):
        super().setUp()
        self.redis = FakeRedis()
        redis_override = override_settings(REDIS_CLIENT=self.redis)
        redis_override.enable()
        self.addCleanup(redis_override.disable)

        self.object_store = FakeObjectStore()
        for target in ('lfs.services.get_object_store', 'cargohold.health.get_object_store'):
            patcher = mock.patch(target, return_value=self.object_store)
            patcher.start()
            self.addCleanup(patcher.stop)

        self.oidc_key = get_test_key()
        self.redis.set(cache_keys.jwks_key('github'), json.dumps(self.oidc_key.jwks()))

    def allow(self, repository=None):
        CachingRepositoryAllowlist().add(RepositoryIdentifier.parse(repository or self.repository))

    def token(self, repository=None, **claims) -> str:
        return self.oidc_key.sign(github_claims(repository or self.repository, **claims))

    def lfs_url(self, endpoint, repository=None) -> str:
        return f"/{repository or self.repository}/info/lfs/objects/{endpoint}"

    def lfs_post(self, endpoint, payload, token=None, repository=None, content_type=LFS_MEDIA_TYPE, **extra):
        """POSTs to an LFS endpoint. token=False sends no Authorization header."""
        headers = {'HTTP_ACCEPT': LFS_MEDIA_TYPE}
        if token is not False:
            headers['HTTP_AUTHORIZATION'] = f"Bearer {token or self.token(repository)}"
        headers.update(extra)
        body = payload if isinstance(payload, (str, bytes)) else json.dumps(payload)
        return self.client.post(self.lfs_url(endpoint, repository), data=body, content_type=content_type, **headers)

    def batch(self, operation, objects, **kwargs):
        return self.lfs_post('batch', {"operation": operation, "objects": objects}, **kwargs)

    def upload_object(self, content: bytes, repository=None, token=None):
        """Runs batch upload and the proxy PUT; returns the OID. Leaves the object pending."""
        oid = oid_for(content)
        token = token or self.token(repository)
        response = self.batch("upload", [{"oid": oid, "size": len(content)}], token=token, repository=repository)
        self.assertEqual(response.status_code, 200)
        href = json.loads(response.content)["objects"][0]["actions"]["upload"]["href"]
        response = self.client.put(
            relative_url(href),
            data=content,
            content_type='application/octet-stream',
            HTTP_AUTHORIZATION=f"Bearer {token}",
        )
        self.assertEqual(response.status_code, 200)
        return oid
