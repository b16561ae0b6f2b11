import json
import time

from cargohold.test_utils import TEST_BASE_URL, LFSTestCase, oid_for, relative_url
from lfs.action_urls import DOWNLOAD, UPLOAD, ProxyActionURLs, sign
from lfs.domain import RepositoryIdentifier
from lfs.models import LFSObject


class ProxyTransferTests(LFSTestCase):

    def setUp(self):
        super().setUp()
        self.allow()
        self.repo = RepositoryIdentifier.parse(self.repository)
        self.urls = ProxyActionURLs(TEST_BASE_URL)

    def announce(self, content, repository=None):
        oid = oid_for(content)
        r = self.batch("upload", [{"oid": oid, "size": len(content)}], repository=repository)
        self.assertEqual(r.status_code, 200)
        return oid

    def put(self, url, content, token=None, **extra):
        return self.client.put(url, data=content, content_type='application/octet-stream',
                               HTTP_AUTHORIZATION=f"Bearer {token or self.token()}", **extra)

    def get(self, url, token=None):
        return self.client.get(url, HTTP_AUTHORIZATION=f"Bearer {token or self.token()}")

    def upload_url(self, oid, repository=None):
        return relative_url(self.urls.upload_action(repository or self.repo, oid)["href"])

    def download_url(self, oid, repository=None):
        return relative_url(self.urls.download_action(repository or self.repo, oid)["href"])

    def test_put_stores_the_body(self):
        content = b"hello proxy"
        oid = self.announce(content)
        r = self.put(self.upload_url(oid), content)
        self.assertEqual(r.status_code, 200)
        obj = LFSObject.objects.get(oid=oid)
        self.assertEqual(self.object_store.objects[obj.storage_key], content)

    def test_put_of_empty_object(self):
        oid = self.announce(b"")
        r = self.put(self.upload_url(oid), b"", CONTENT_LENGTH='0')
        self.assertEqual(r.status_code, 200)
        self.assertEqual(self.object_store.objects[LFSObject.objects.get(oid=oid).storage_key], b"")

    def test_put_with_wrong_content(self):
        content = b"the real bytes"
        oid = self.announce(content)
        r = self.put(self.upload_url(oid), b"the fake bytes")
        self.assertEqual(r.status_code, 422)
        self.assertEqual(self.object_store.objects, {})

    def test_put_with_wrong_length(self):
        content = b"four"
        oid = self.announce(content)
        r = self.put(self.upload_url(oid), b"fourteen")
        self.assertEqual(r.status_code, 422)
        self.assertEqual(self.object_store.objects, {})

    def test_put_without_content_length(self):
        oid = self.announce(b"")
        r = self.put(self.upload_url(oid), b"")
        self.assertEqual(r.status_code, 411)

    def test_put_of_unannounced_object(self):
        oid = oid_for(b"never announced")
        r = self.put(self.upload_url(oid), b"never announced")
        self.assertEqual(r.status_code, 404)
        self.assertEqual(json.loads(r.content), {"message": "オブジェクトが存在しません"})

    def test_put_to_object_owned_by_another_repository(self):
        self.allow("other/repo")
        content = b"owned elsewhere"
        oid = self.announce(content, repository="other/repo")
        r = self.put(self.upload_url(oid), content)
        self.assertEqual(r.status_code, 403)
        self.assertEqual(self.object_store.objects, {})

    def test_put_of_uploaded_object_is_a_no_op(self):
        content = b"stored once"
        oid = self.upload_object(content)
        self.lfs_post("verify", {"oid": oid, "size": len(content)})
        self.object_store.fail = True

        r = self.put(self.upload_url(oid), content)
        self.assertEqual(r.status_code, 200)

    def test_put_when_store_is_down(self):
        content = b"unlucky"
        oid = self.announce(content)
        self.object_store.fail = True
        r = self.put(self.upload_url(oid), content)
        self.assertEqual(r.status_code, 502)
        self.assertEqual(json.loads(r.content), {"message": "ストレージサーバーでエラーが発生しました"})

    def test_expired_url(self):
        content = b"too late"
        oid = self.announce(content)
        expires = int(time.time()) - 10
        url = f"{self.lfs_url(oid)}?expires={expires}&signature={sign(UPLOAD, self.repo, oid, expires)}"
        r = self.put(url, content)
        self.assertEqual(r.status_code, 401)
        self.assertEqual(r['LFS-Authenticate'], 'Basic realm="Git LFS"')
        self.assertEqual(json.loads(r.content), {"message": "URLの有効期限が切れています"})

    def test_missing_signature(self):
        content = b"unsigned"
        oid = self.announce(content)
        r = self.put(self.lfs_url(oid), content)
        self.assertEqual(r.status_code, 401)
        self.assertEqual(json.loads(r.content), {"message": "URLの署名が不正です"})

    def test_tampered_expiry(self):
        content = b"extended"
        oid = self.announce(content)
        expires = int(time.time()) + 60
        url = f"{self.lfs_url(oid)}?expires={expires + 3600}&signature={sign(UPLOAD, self.repo, oid, expires)}"
        self.assertEqual(self.put(url, content).status_code, 401)

    def test_download_url_cannot_upload(self):
        content = b"wrong direction"
        oid = self.announce(content)
        self.assertEqual(self.put(self.download_url(oid), content).status_code, 401)

    def test_url_signed_for_another_repository(self):
        self.allow("other/repo")
        content = b"borrowed url"
        oid = self.announce(content)
        other = RepositoryIdentifier.parse("other/repo")
        url = self.upload_url(oid, repository=other).replace("/other/repo/", "/octo/repo/")
        self.assertEqual(self.put(url, content).status_code, 401)

    def test_proxy_url_still_needs_a_token(self):
        content = b"no token"
        oid = self.announce(content)
        r = self.client.put(self.upload_url(oid), data=content, content_type='application/octet-stream')
        self.assertEqual(r.status_code, 401)

    def test_invalid_oid_in_path(self):
        r = self.put(f"{self.lfs_url('not-an-oid')}?expires=1&signature=x", b"x")
        self.assertEqual(r.status_code, 404)

    def test_get_streams_the_object(self):
        content = b"0123456789" * 1000
        oid = self.upload_object(content)
        self.lfs_post("verify", {"oid": oid, "size": len(content)})

        r = self.get(self.download_url(oid))
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r['Content-Type'], 'application/octet-stream')
        self.assertEqual(r['Content-Length'], str(len(content)))
        self.assertEqual(b"".join(r.streaming_content), content)

    def test_get_before_verify(self):
        content = b"not verified yet"
        oid = self.upload_object(content)
        r = self.get(self.download_url(oid))
        self.assertEqual(r.status_code, 404)
        self.assertEqual(json.loads(r.content), {"message": "オブジェクトがまだアップロードされていません"})

    def test_get_without_policy(self):
        r = self.get(self.download_url("e" * 64))
        self.assertEqual(r.status_code, 403)

    def test_get_of_object_owned_by_another_repository(self):
        self.allow("other/repo")
        content = b"private"
        oid = self.upload_object(content, repository="other/repo")
        self.lfs_post("verify", {"oid": oid, "size": len(content)}, repository="other/repo")
        r = self.get(self.download_url(oid))
        self.assertEqual(r.status_code, 403)

    def test_get_when_object_vanished_from_store(self):
        content = b"lost"
        oid = self.upload_object(content)
        self.lfs_post("verify", {"oid": oid, "size": len(content)})
        self.object_store.objects.clear()
        self.assertEqual(self.get(self.download_url(oid)).status_code, 404)

    def test_get_with_expired_url(self):
        expires = int(time.time()) - 1
        oid = "f" * 64
        url = f"{self.lfs_url(oid)}?expires={expires}&signature={sign(DOWNLOAD, self.repo, oid, expires)}"
        self.assertEqual(self.get(url).status_code, 401)
