import json
import os
from unittest import mock

from django.test import override_settings

from cargohold.test_utils import TEST_BASE_URL, LFSTestCase, oid_for, relative_url
from lfs.models import AccessPolicy, LFSObject
from lfs.renderers import LFS_MEDIA_TYPE
from lfs.repository import AccessPolicyRepository
from lfs_internals import cache_keys


class BatchUploadTests(LFSTestCase):

    def setUp(self):
        super().setUp()
        self.allow()

    def test_full_upload_verify_download_cycle(self):
        content = os.urandom(1024)
        oid = oid_for(content)
        token = self.token()

        r = self.batch("upload", [{"oid": oid, "size": 1024}], token=token)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r['Content-Type'], LFS_MEDIA_TYPE)
        body = json.loads(r.content)
        self.assertEqual(body["transfer"], "basic")
        self.assertEqual(body["hash_algo"], "sha256")
        entry = body["objects"][0]
        self.assertEqual(entry["oid"], oid)
        self.assertEqual(entry["size"], 1024)
        self.assertTrue(entry["authenticated"])
        upload = entry["actions"]["upload"]
        self.assertTrue(upload["href"].startswith(f"{TEST_BASE_URL}/octo/repo/info/lfs/objects/{oid}?"))
        self.assertEqual(upload["header"], {"Authorization": f"Bearer {token}"})
        self.assertEqual(upload["expires_in"], 900)
        self.assertEqual(entry["actions"]["verify"]["href"], f"{TEST_BASE_URL}/octo/repo/info/lfs/objects/verify")
        for forbidden in ("amazonaws", "X-Amz", "s3."):
            self.assertNotIn(forbidden, r.content.decode())

        r = self.client.put(relative_url(upload["href"]), data=content, content_type='application/octet-stream',
                            HTTP_AUTHORIZATION=f"Bearer {token}")
        self.assertEqual(r.status_code, 200)
        self.assertFalse(LFSObject.objects.get(oid=oid).uploaded)

        r = self.lfs_post("verify", {"oid": oid, "size": 1024}, token=token)
        self.assertEqual(r.status_code, 200)
        self.assertTrue(LFSObject.objects.get(oid=oid).uploaded)

        r = self.batch("download", [{"oid": oid, "size": 1024}], token=token)
        self.assertEqual(r.status_code, 200)
        download = json.loads(r.content)["objects"][0]["actions"]["download"]
        self.assertNotIn("amazonaws", download["href"])

        r = self.client.get(relative_url(download["href"]), HTTP_AUTHORIZATION=f"Bearer {token}")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r['Content-Length'], '1024')
        self.assertEqual(b"".join(r.streaming_content), content)

    def test_upload_creates_metadata_and_policy(self):
        oid = oid_for(b"metadata")
        r = self.batch("upload", [{"oid": oid, "size": 8}])
        self.assertEqual(r.status_code, 200)

        obj = LFSObject.objects.get(oid=oid)
        self.assertEqual(obj.size, 8)
        self.assertFalse(obj.uploaded)
        self.assertEqual(obj.storage_key, f"objects/sha256/{oid[0:2]}/{oid[2:4]}/{oid}")
        self.assertEqual(AccessPolicy.objects.get(lfs_object_oid=oid).repository, "octo/repo")
        self.assertIn(cache_keys.batch_upload_key(oid), self.redis.store)

    def test_repeated_upload_is_idempotent(self):
        oid = oid_for(b"twice")
        for _ in range(2):
            r = self.batch("upload", [{"oid": oid, "size": 5}])
            self.assertEqual(r.status_code, 200)
            self.assertIn("upload", json.loads(r.content)["objects"][0]["actions"])
        self.assertEqual(LFSObject.objects.filter(oid=oid).count(), 1)
        self.assertEqual(AccessPolicy.objects.filter(lfs_object_oid=oid).count(), 1)

    def test_pending_object_takes_the_new_size(self):
        oid = oid_for(b"resized")
        self.batch("upload", [{"oid": oid, "size": 10}])
        r = self.batch("upload", [{"oid": oid, "size": 12}])
        self.assertEqual(r.status_code, 200)
        self.assertEqual(LFSObject.objects.get(oid=oid).size, 12)

    def test_null_size_is_treated_as_zero(self):
        oid = oid_for(b"")
        r = self.batch("upload", [{"oid": oid, "size": None}])
        self.assertEqual(r.status_code, 200)
        entry = json.loads(r.content)["objects"][0]
        self.assertEqual(entry["size"], 0)
        self.assertIn("upload", entry["actions"])
        self.assertEqual(LFSObject.objects.get(oid=oid).size, 0)

    def test_uploaded_object_gets_no_actions(self):
        content = b"already there"
        oid = self.upload_object(content)
        self.lfs_post("verify", {"oid": oid, "size": len(content)})

        r = self.batch("upload", [{"oid": oid, "size": len(content)}])
        self.assertEqual(r.status_code, 200)
        entry = json.loads(r.content)["objects"][0]
        self.assertNotIn("actions", entry)
        self.assertNotIn("error", entry)

    def test_uploaded_object_with_different_size_is_a_conflict(self):
        content = b"fixed size"
        oid = self.upload_object(content)
        self.lfs_post("verify", {"oid": oid, "size": len(content)})

        self.allow("other/repo")
        r = self.batch("upload", [{"oid": oid, "size": len(content) + 1}], repository="other/repo")
        self.assertEqual(r.status_code, 200)
        entry = json.loads(r.content)["objects"][0]
        self.assertEqual(entry["error"], {"code": 409, "message": "オブジェクトサイズが一致しません"})
        self.assertNotIn("actions", entry)
        self.assertEqual(AccessPolicy.objects.get(lfs_object_oid=oid).repository, "octo/repo")
        self.assertEqual(LFSObject.objects.get(oid=oid).size, len(content))

    def test_reupload_from_another_repository_moves_the_policy(self):
        content = b"shared content"
        oid = self.upload_object(content)
        self.lfs_post("verify", {"oid": oid, "size": len(content)})

        self.allow("other/repo")
        r = self.batch("upload", [{"oid": oid, "size": len(content)}], repository="other/repo")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(AccessPolicy.objects.get(lfs_object_oid=oid).repository, "other/repo")

        r = self.batch("download", [{"oid": oid, "size": len(content)}])
        self.assertEqual(r.status_code, 403)

    def test_failed_policy_write_leaves_no_metadata_row(self):
        oid = "e" * 64
        with mock.patch.object(AccessPolicyRepository, "save", side_effect=RuntimeError("database went away")):
            r = self.batch("upload", [{"oid": oid, "size": 10}])
        self.assertEqual(r.status_code, 500)
        self.assertEqual(json.loads(r.content), {"message": "サーバー内部エラーが発生しました"})
        self.assertFalse(LFSObject.objects.filter(oid=oid).exists())
        self.assertFalse(AccessPolicy.objects.filter(lfs_object_oid=oid).exists())
        self.assertNotIn(cache_keys.lfs_meta_key(oid), self.redis.store)

    def test_multiple_objects_keep_request_order(self):
        oids = [oid_for(str(i).encode()) for i in range(3)]
        r = self.batch("upload", [{"oid": oid, "size": 1} for oid in oids])
        self.assertEqual(r.status_code, 200)
        self.assertEqual([entry["oid"] for entry in json.loads(r.content)["objects"]], oids)

    def test_actions_carry_the_callers_authorization(self):
        token = self.token()
        r = self.batch("upload", [{"oid": oid_for(b"header"), "size": 6}], token=token)
        actions = json.loads(r.content)["objects"][0]["actions"]
        self.assertEqual(actions["upload"]["header"], {"Authorization": f"Bearer {token}"})
        self.assertEqual(actions["verify"]["header"], {"Authorization": f"Bearer {token}"})


class BatchDownloadTests(LFSTestCase):

    def setUp(self):
        super().setUp()
        self.allow()

    def test_download_without_policy_is_denied(self):
        r = self.batch("download", [{"oid": "a" * 64, "size": 1}])
        self.assertEqual(r.status_code, 403)
        self.assertEqual(json.loads(r.content), {"message": "アクセスが拒否されました"})

    def test_one_foreign_object_denies_the_whole_batch(self):
        content = b"mine"
        oid = self.upload_object(content)
        self.lfs_post("verify", {"oid": oid, "size": len(content)})

        r = self.batch("download", [{"oid": oid, "size": 4}, {"oid": "b" * 64, "size": 1}])
        self.assertEqual(r.status_code, 403)
        self.assertNotIn("objects", json.loads(r.content))

    def test_policy_of_another_repository_is_denied(self):
        self.allow("other/repo")
        content = b"theirs"
        oid = self.upload_object(content, repository="other/repo")
        self.lfs_post("verify", {"oid": oid, "size": len(content)}, repository="other/repo")

        r = self.batch("download", [{"oid": oid, "size": len(content)}])
        self.assertEqual(r.status_code, 403)

    def test_pending_object_is_reported_per_object(self):
        oid = oid_for(b"pending")
        self.batch("upload", [{"oid": oid, "size": 7}])

        r = self.batch("download", [{"oid": oid, "size": 7}])
        self.assertEqual(r.status_code, 200)
        entry = json.loads(r.content)["objects"][0]
        self.assertEqual(entry["error"], {"code": 404, "message": "object not found"})
        self.assertNotIn("actions", entry)

    def test_policy_without_metadata_is_reported_per_object(self):
        oid = "c" * 64
        AccessPolicy.objects.create(lfs_object_oid=oid, repository="octo/repo")

        r = self.batch("download", [{"oid": oid, "size": 3}])
        self.assertEqual(r.status_code, 200)
        self.assertEqual(json.loads(r.content)["objects"][0]["error"]["code"], 404)

    def test_download_reports_stored_size(self):
        content = b"twelve bytes"
        oid = self.upload_object(content)
        self.lfs_post("verify", {"oid": oid, "size": len(content)})

        r = self.batch("download", [{"oid": oid, "size": 0}])
        self.assertEqual(json.loads(r.content)["objects"][0]["size"], len(content))


class BatchValidationTests(LFSTestCase):

    def setUp(self):
        super().setUp()
        self.allow()

    def assertMessage(self, response, status_code, message):
        self.assertEqual(response.status_code, status_code)
        self.assertEqual(json.loads(response.content), {"message": message})

    def test_wrong_accept_header(self):
        r = self.lfs_post("batch", {"operation": "upload", "objects": []}, HTTP_ACCEPT='application/json')
        self.assertMessage(r, 400, "accept ヘッダーは application/vnd.git-lfs+json である必要があります")

    def test_wrong_content_type(self):
        r = self.lfs_post("batch", {"operation": "upload", "objects": []}, content_type='application/json')
        self.assertMessage(r, 400, "Content-Typeは application/vnd.git-lfs+json である必要があります")

    def test_headers_are_checked_before_authentication(self):
        r = self.lfs_post("batch", {}, token=False, HTTP_ACCEPT='text/html')
        self.assertEqual(r.status_code, 400)

    def test_media_type_parameters_are_accepted(self):
        r = self.lfs_post("batch", {"operation": "upload", "objects": [{"oid": "d" * 64, "size": 1}]},
                          content_type=f"{LFS_MEDIA_TYPE}; charset=utf-8",
                          HTTP_ACCEPT=f"{LFS_MEDIA_TYPE}; charset=utf-8")
        self.assertEqual(r.status_code, 200)

    def test_malformed_json(self):
        self.assertMessage(self.lfs_post("batch", "{not json"), 422, "リクエストボディのパースに失敗しました")

    def test_null_body(self):
        self.assertMessage(self.lfs_post("batch", None), 422, "リクエストボディのパースに失敗しました")

    def test_invalid_operation(self):
        self.assertMessage(self.batch("delete", [{"oid": "a" * 64, "size": 1}]), 422, "不正なオペレーションです")

    def test_empty_objects(self):
        self.assertMessage(self.batch("upload", []), 422, "オブジェクトが指定されていません")

    def test_missing_objects(self):
        self.assertMessage(self.lfs_post("batch", {"operation": "upload"}), 422, "オブジェクトが指定されていません")

    def test_invalid_oid(self):
        for oid in ("A" * 64, "a" * 63, "g" * 64, ""):
            self.assertMessage(self.batch("upload", [{"oid": oid, "size": 1}]), 422, "不正なOIDです")

    def test_invalid_oid_after_a_valid_one(self):
        r = self.batch("upload", [{"oid": "a" * 64, "size": 1}, {"oid": "nope", "size": 1}])
        self.assertMessage(r, 422, "不正なOIDです")
        self.assertFalse(LFSObject.objects.exists())

    def test_negative_size(self):
        self.assertMessage(self.batch("upload", [{"oid": "a" * 64, "size": -1}]), 422, "不正なサイズです")

    def test_unsupported_hash_algo(self):
        r = self.lfs_post("batch", {"operation": "upload", "objects": [{"oid": "a" * 64, "size": 1}],
                                    "hash_algo": "md5"})
        self.assertMessage(r, 422, "不正なハッシュアルゴリズムです")

    def test_explicit_sha256_hash_algo(self):
        r = self.lfs_post("batch", {"operation": "upload", "objects": [{"oid": "a" * 64, "size": 1}],
                                    "hash_algo": "sha256", "transfers": ["basic"], "ref": {"name": "refs/heads/main"}})
        self.assertEqual(r.status_code, 200)

    def test_unrecognised_transfers_are_ignored(self):
        for transfers in ([1, {"name": "tus"}], ["lfs-standalone-file"], "basic"):
            r = self.lfs_post("batch", {"operation": "upload", "objects": [{"oid": "a" * 64, "size": 1}],
                                        "transfers": transfers})
            self.assertEqual(r.status_code, 200)
            self.assertEqual(json.loads(r.content)["transfer"], "basic")

    @override_settings(LFS_MAX_BATCH_BODY_SIZE=64)
    def test_body_too_large(self):
        objects = [{"oid": "a" * 64, "size": 1}] * 4
        self.assertMessage(self.batch("upload", objects), 413, "リクエストボディが大きすぎます")


class BatchAuthenticationTests(LFSTestCase):

    def setUp(self):
        super().setUp()
        self.allow()

    def assertUnauthorized(self, response):
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response['LFS-Authenticate'], 'Basic realm="Git LFS"')

    def test_missing_token(self):
        r = self.batch("upload", [{"oid": "a" * 64, "size": 1}], token=False)
        self.assertUnauthorized(r)
        self.assertEqual(json.loads(r.content), {"message": "認証が必要です"})

    def test_expired_token(self):
        token = self.token(exp=1, iat=0, nbf=0)
        self.assertUnauthorized(self.batch("upload", [{"oid": "a" * 64, "size": 1}], token=token))

    def test_wrong_audience(self):
        token = self.token(aud="https://github.com/someone-else")
        self.assertUnauthorized(self.batch("upload", [{"oid": "a" * 64, "size": 1}], token=token))

    def test_unknown_session_id(self):
        r = self.batch("upload", [{"oid": "a" * 64, "size": 1}], token="0b6f1c53-4c2e-4c0e-9f0a-3f6e2b1d9a77")
        self.assertUnauthorized(r)

    def test_repository_not_allowlisted(self):
        r = self.batch("upload", [{"oid": "a" * 64, "size": 1}], repository="baz/qux")
        self.assertUnauthorized(r)
        self.assertEqual(json.loads(r.content), {"message": "このリポジトリへのアクセスは許可されていません"})

    def test_token_for_another_repository(self):
        self.allow("baz/qux")
        r = self.batch("upload", [{"oid": "a" * 64, "size": 1}], token=self.token("foo/bar"), repository="baz/qux")
        self.assertUnauthorized(r)
        self.assertEqual(json.loads(r.content),
                         {"message": "トークンのリポジトリとリクエストのリポジトリが一致しません"})
        self.assertFalse(LFSObject.objects.exists())

    def test_repository_claim_matches_case_insensitively(self):
        r = self.batch("upload", [{"oid": "a" * 64, "size": 1}], token=self.token("Octo/Repo"))
        self.assertEqual(r.status_code, 200)
