from datetime import timedelta

from django.test import SimpleTestCase

from cargohold.test_utils import FakeRedis
from lfs_internals import cache_keys
from lfs_internals.cache import CacheError, CacheMiss, RedisCache


class RedisCacheTests(SimpleTestCase):

    def setUp(self):
        self.redis = FakeRedis()
        self.cache = RedisCache(self.redis)

    def test_get_and_set(self):
        self.cache.set("k", "v", timedelta(minutes=5))
        self.assertEqual(self.cache.get("k"), "v")
        self.assertEqual(self.redis.ttls["k"], 300)

    def test_set_without_ttl(self):
        self.cache.set("k", "v")
        self.assertIsNone(self.redis.ttls["k"])
        self.cache.set("k", "v", 0)
        self.assertIsNone(self.redis.ttls["k"])

    def test_miss(self):
        with self.assertRaises(CacheMiss):
            self.cache.get("missing")

    def test_errors_are_wrapped(self):
        self.redis.fail = True
        for call in (lambda: self.cache.get("k"), lambda: self.cache.set("k", "v"),
                     lambda: self.cache.delete("k"), lambda: self.cache.exists("k"),
                     lambda: self.cache.getdel_json("k"), self.cache.ping):
            with self.assertRaises(CacheError):
                call()

    def test_json(self):
        self.cache.set_json("j", {"a": [1, 2]}, 60)
        self.assertEqual(self.cache.get_json("j"), {"a": [1, 2]})
        self.assertTrue(self.cache.exists("j"))
        self.cache.delete("j")
        self.assertFalse(self.cache.exists("j"))

    def test_get_json_of_garbage(self):
        self.cache.set("j", "{nope")
        with self.assertRaises(ValueError):
            self.cache.get_json("j")

    def test_getdel_json_is_single_use(self):
        self.cache.set_json("state", {"repository": "octo/repo"})
        self.assertEqual(self.cache.getdel_json("state"), {"repository": "octo/repo"})
        with self.assertRaises(CacheMiss):
            self.cache.getdel_json("state")


class CacheKeyTests(SimpleTestCase):

    def test_layout(self):
        self.assertEqual(cache_keys.lfs_meta_key("abc"), "lfs:meta:abc")
        self.assertEqual(cache_keys.session_key("s"), "lfs:session:s")
        self.assertEqual(cache_keys.batch_upload_key("abc"), "lfs:batch:upload:abc")
        self.assertEqual(cache_keys.oidc_github_repo_key("octo/repo"), "lfs:oidc:github:repo:octo/repo")
        self.assertEqual(cache_keys.oauth_state_key("st"), "lfs:oidc:state:st")
        self.assertEqual(cache_keys.jwks_key("github"), "lfs:oidc:jwks:github")

    def test_ttls(self):
        self.assertEqual(cache_keys.METADATA_TTL, timedelta(minutes=30))
        self.assertEqual(cache_keys.SESSION_TTL, timedelta(hours=24))
        self.assertEqual(cache_keys.ALLOWLIST_TTL, timedelta(minutes=5))
        self.assertEqual(cache_keys.OAUTH_STATE_TTL, timedelta(minutes=10))
        self.assertEqual(cache_keys.JWKS_TTL, timedelta(hours=24))
