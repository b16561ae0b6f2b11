import json

from cargohold.test_utils import LFSTestCase
from lfs import db
from lfs.domain import RepositoryIdentifier
from lfs.models import AccessPolicy, LFSObject, RepositoryAllowlistEntry
from lfs.repository import (
    AccessPolicyRepository,
    CachingLFSObjectRepository,
    CachingRepositoryAllowlist,
    LFSObjectRepository,
)
from lfs_internals import cache_keys

OID = "ab" * 32


class LFSObjectRepositoryTests(LFSTestCase):

    def setUp(self):
        super().setUp()
        self.repository = CachingLFSObjectRepository()

    def test_find_populates_the_cache(self):
        LFSObjectRepository().save(LFSObject.new(oid=OID, size=10))
        self.assertNotIn(cache_keys.lfs_meta_key(OID), self.redis.store)

        obj = self.repository.find_by_oid(OID)
        self.assertEqual(obj.size, 10)
        cached = json.loads(self.redis.store[cache_keys.lfs_meta_key(OID)])
        self.assertEqual(cached["oid"], OID)
        self.assertEqual(cached["storage_key"], obj.storage_key)
        self.assertEqual(self.redis.ttls[cache_keys.lfs_meta_key(OID)], 30 * 60)

    def test_find_prefers_the_cache(self):
        self.repository.save(LFSObject.new(oid=OID, size=10))
        self.repository.find_by_oid(OID)
        LFSObject.objects.filter(oid=OID).update(size=99)
        self.assertEqual(self.repository.find_by_oid(OID).size, 10)

    def test_find_missing(self):
        self.assertIsNone(self.repository.find_by_oid(OID))
        self.assertFalse(self.repository.exists_by_oid(OID))

    def test_find_with_cache_down(self):
        LFSObjectRepository().save(LFSObject.new(oid=OID, size=3))
        self.redis.fail = True
        self.assertEqual(self.repository.find_by_oid(OID).size, 3)
        self.assertTrue(self.repository.exists_by_oid(OID))

    def test_unreadable_cache_entry_is_ignored(self):
        LFSObjectRepository().save(LFSObject.new(oid=OID, size=3))
        self.redis.set(cache_keys.lfs_meta_key(OID), json.dumps({"oid": OID, "size": -1}))
        self.assertEqual(self.repository.find_by_oid(OID).size, 3)

    def test_cache_entry_with_mismatched_storage_key_is_ignored(self):
        obj = LFSObject.new(oid=OID, size=3)
        LFSObjectRepository().save(obj)
        data = obj.to_cache()
        data["storage_key"] = "objects/sha256/00/00/" + OID
        self.redis.set(cache_keys.lfs_meta_key(OID), json.dumps(data))
        self.assertEqual(self.repository.find_by_oid(OID).storage_key, obj.storage_key)

    def test_writes_invalidate_then_reload_on_commit(self):
        self.repository.save(LFSObject.new(oid=OID, size=10))
        self.repository.find_by_oid(OID)
        obj = LFSObject.objects.get(oid=OID)
        obj.mark_as_uploaded()

        with self.captureOnCommitCallbacks(execute=True):
            self.repository.update(obj)
            self.assertNotIn(cache_keys.lfs_meta_key(OID), self.redis.store)
        self.assertTrue(json.loads(self.redis.store[cache_keys.lfs_meta_key(OID)])["uploaded"])

    def test_save_ignores_duplicates(self):
        self.repository.save(LFSObject.new(oid=OID, size=10))
        self.repository.save(LFSObject.new(oid=OID, size=20))
        self.assertEqual(LFSObject.objects.get(oid=OID).size, 10)

    def test_uploaded_objects_are_never_reverted(self):
        self.repository.save(LFSObject.new(oid=OID, size=10))
        stale = LFSObject.objects.get(oid=OID)
        uploaded = LFSObject.objects.get(oid=OID)
        uploaded.mark_as_uploaded()
        self.assertEqual(self.repository.update(uploaded), 1)

        stale.size = 20
        self.assertEqual(self.repository.update(stale), 0)
        row = LFSObject.objects.get(oid=OID)
        self.assertTrue(row.uploaded)
        self.assertEqual(row.size, 10)

    def test_writes_succeed_with_cache_down(self):
        self.redis.fail = True
        self.repository.save(LFSObject.new(oid=OID, size=10))
        self.repository.record_batch_upload(OID, "octo/repo", 10, 900)
        self.repository.delete_batch_upload_marker(OID)
        self.assertTrue(LFSObject.objects.filter(oid=OID).exists())

    def test_batch_upload_marker(self):
        self.repository.record_batch_upload(OID, "octo/repo", 10, 900)
        key = cache_keys.batch_upload_key(OID)
        self.assertEqual(json.loads(self.redis.store[key]), {"repository": "octo/repo", "size": 10})
        self.assertEqual(self.redis.ttls[key], 900)
        self.repository.delete_batch_upload_marker(OID)
        self.assertNotIn(key, self.redis.store)


class AccessPolicyRepositoryTests(LFSTestCase):

    def test_save_upserts_by_oid(self):
        policies = AccessPolicyRepository()
        policies.save(AccessPolicy(lfs_object_oid=OID, repository="octo/repo"))
        policies.save(AccessPolicy(lfs_object_oid=OID, repository="other/repo"))
        self.assertEqual(AccessPolicy.objects.filter(lfs_object_oid=OID).count(), 1)
        self.assertEqual(policies.find_by_oid(OID).repository, "other/repo")

    def test_find_missing(self):
        self.assertIsNone(AccessPolicyRepository().find_by_oid(OID))

    def test_delete(self):
        policies = AccessPolicyRepository()
        policies.save(AccessPolicy(lfs_object_oid=OID, repository="octo/repo"))
        policies.delete(OID)
        self.assertIsNone(policies.find_by_oid(OID))
        with self.assertRaises(AccessPolicy.DoesNotExist):
            policies.delete(OID)


class RepositoryAllowlistTests(LFSTestCase):

    def setUp(self):
        super().setUp()
        self.allowlist = CachingRepositoryAllowlist()
        self.repo = RepositoryIdentifier("octo", "repo")
        self.key = cache_keys.oidc_github_repo_key("octo/repo")

    def test_miss_is_cached(self):
        self.assertFalse(self.allowlist.is_allowed(self.repo))
        self.assertEqual(self.redis.store[self.key], "false")
        self.assertEqual(self.redis.ttls[self.key], 5 * 60)

    def test_add_and_remove(self):
        self.allowlist.add(self.repo)
        self.assertEqual(self.redis.store[self.key], "true")
        self.assertTrue(RepositoryAllowlistEntry.objects.filter(repository="octo/repo").exists())
        self.assertTrue(self.allowlist.is_allowed(self.repo))

        self.assertEqual(self.allowlist.remove(self.repo), 1)
        self.assertNotIn(self.key, self.redis.store)
        self.assertFalse(self.allowlist.is_allowed(self.repo))
        self.assertEqual(self.allowlist.remove(self.repo), 0)

    def test_cached_answer_wins(self):
        self.redis.set(self.key, "true")
        self.assertTrue(self.allowlist.is_allowed(self.repo))

    def test_unexpected_cached_value_falls_back_to_database(self):
        self.redis.set(self.key, "maybe")
        self.assertFalse(self.allowlist.is_allowed(self.repo))
        self.assertEqual(self.redis.store[self.key], "false")

    def test_cache_down_falls_back_to_database(self):
        RepositoryAllowlistEntry.objects.create(repository="octo/repo")
        self.redis.fail = True
        self.assertTrue(self.allowlist.is_allowed(self.repo))
        self.allowlist.add(RepositoryIdentifier("octo", "other"))
        self.assertEqual(self.allowlist.remove(RepositoryIdentifier("octo", "other")), 1)

    def test_list_is_sorted(self):
        for name in ("zeta/z", "alpha/a", "mid/m"):
            self.allowlist.add(RepositoryIdentifier.parse(name))
        self.assertEqual([r.full_name for r in self.allowlist.list()], ["alpha/a", "mid/m", "zeta/z"])

    def test_add_is_idempotent(self):
        self.allowlist.add(self.repo)
        self.allowlist.add(self.repo)
        self.assertEqual(RepositoryAllowlistEntry.objects.count(), 1)


class TransactionHelperTests(LFSTestCase):

    def test_with_transaction_returns_the_result(self):
        self.assertEqual(db.with_transaction(lambda: 42, db.IsolationLevel.READ_COMMITTED), 42)

    def test_with_transaction_rolls_back_on_error(self):
        def failing():
            LFSObject.new(oid=OID, size=1).save()
            raise RuntimeError("boom")

        with self.assertRaises(RuntimeError):
            db.with_transaction(failing)
        self.assertFalse(LFSObject.objects.filter(oid=OID).exists())

    def test_query_helpers(self):
        LFSObject.new(oid=OID, size=7).save()
        self.assertEqual(db.query_row("SELECT size FROM lfs_objects WHERE oid = %s", [OID]), (7,))
        self.assertIsNone(db.query_row("SELECT size FROM lfs_objects WHERE oid = %s", ["0" * 64]))
        self.assertEqual(db.query("SELECT oid FROM lfs_objects"), [(OID,)])
        self.assertEqual(db.execute("UPDATE lfs_objects SET size = 8 WHERE oid = %s", [OID]), 1)
        db.ping()
