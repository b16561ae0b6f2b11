import json

from cargohold.test_utils import LFSTestCase, oid_for
from lfs.models import LFSObject
from lfs_internals import cache_keys


class VerifyTests(LFSTestCase):

    def setUp(self):
        super().setUp()
        self.allow()

    def assertMessage(self, response, status_code, message):
        self.assertEqual(response.status_code, status_code)
        self.assertEqual(json.loads(response.content), {"message": message})

    def test_verify_marks_object_uploaded(self):
        content = b"verify me"
        oid = self.upload_object(content)
        self.assertIn(cache_keys.batch_upload_key(oid), self.redis.store)

        r = self.lfs_post("verify", {"oid": oid, "size": len(content)})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.content, b"")
        self.assertTrue(LFSObject.objects.get(oid=oid).uploaded)
        self.assertNotIn(cache_keys.batch_upload_key(oid), self.redis.store)

    def test_verify_is_idempotent(self):
        content = b"verify twice"
        oid = self.upload_object(content)
        for _ in range(2):
            self.assertEqual(self.lfs_post("verify", {"oid": oid, "size": len(content)}).status_code, 200)
        self.assertTrue(LFSObject.objects.get(oid=oid).uploaded)

    def test_size_mismatch_with_metadata(self):
        content = b"x" * 1024
        oid = self.upload_object(content)
        self.assertEqual(self.lfs_post("verify", {"oid": oid, "size": 1024}).status_code, 200)

        r = self.lfs_post("verify", {"oid": oid, "size": 2048})
        self.assertMessage(r, 422, "サイズが一致しません")
        self.assertTrue(LFSObject.objects.get(oid=oid).uploaded)

    def test_size_mismatch_with_store(self):
        content = b"four"
        oid = oid_for(content)
        self.batch("upload", [{"oid": oid, "size": 4}])
        self.object_store.objects[LFSObject.objects.get(oid=oid).storage_key] = b"abc"

        r = self.lfs_post("verify", {"oid": oid, "size": 4})
        self.assertMessage(r, 422, "サイズが一致しません")
        self.assertFalse(LFSObject.objects.get(oid=oid).uploaded)

    def test_unknown_object(self):
        r = self.lfs_post("verify", {"oid": "a" * 64, "size": 1})
        self.assertMessage(r, 404, "オブジェクトが見つかりません")

    def test_announced_but_never_transferred(self):
        oid = oid_for(b"skipped the PUT")
        self.batch("upload", [{"oid": oid, "size": 15}])
        r = self.lfs_post("verify", {"oid": oid, "size": 15})
        self.assertEqual(r.status_code, 404)
        self.assertFalse(LFSObject.objects.get(oid=oid).uploaded)

    def test_store_unavailable(self):
        content = b"store down"
        oid = self.upload_object(content)
        self.object_store.fail = True
        r = self.lfs_post("verify", {"oid": oid, "size": len(content)})
        self.assertEqual(r.status_code, 502)
        self.assertFalse(LFSObject.objects.get(oid=oid).uploaded)

    def test_malformed_body(self):
        self.assertMessage(self.lfs_post("verify", "{"), 400, "リクエストボディの解析に失敗しました")

    def test_null_body(self):
        self.assertMessage(self.lfs_post("verify", None), 400, "リクエストボディの解析に失敗しました")

    def test_missing_oid(self):
        self.assertMessage(self.lfs_post("verify", {"size": 1}), 400, "oidフィールドは必須です")

    def test_invalid_oid(self):
        self.assertMessage(self.lfs_post("verify", {"oid": "xyz", "size": 1}), 400, "不正なOIDです")

    def test_size_must_be_positive(self):
        for size in (0, -5, "ten", None):
            r = self.lfs_post("verify", {"oid": "a" * 64, "size": size})
            self.assertMessage(r, 400, "sizeフィールドは正の整数である必要があります")

    def test_verify_requires_lfs_headers(self):
        r = self.lfs_post("verify", {"oid": "a" * 64, "size": 1}, HTTP_ACCEPT='*/*')
        self.assertEqual(r.status_code, 400)

    def test_verify_refreshes_cached_metadata(self):
        content = b"cached"
        oid = self.upload_object(content)
        # The PUT read the pending row through the cache.
        self.assertFalse(json.loads(self.redis.store[cache_keys.lfs_meta_key(oid)])["uploaded"])

        with self.captureOnCommitCallbacks(execute=True):
            self.lfs_post("verify", {"oid": oid, "size": len(content)})
        self.assertTrue(json.loads(self.redis.store[cache_keys.lfs_meta_key(oid)])["uploaded"])
