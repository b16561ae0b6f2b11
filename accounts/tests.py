import base64
import json
import uuid
from unittest import mock
from urllib.parse import parse_qs, urlsplit

import httpx
from django.test import override_settings

from accounts.sessions import InvalidOAuthState, InvalidSessionData, OAuthStateStore, SessionNotFound, SessionStore
from cargohold.test_utils import LFSTestCase
from lfs.domain import OAuthState, UserInfo
from lfs_internals import cache_keys
from lfs_internals.clients import GitHubOAuthProvider

CALLBACK = "http://testserver/auth/github/callback"


def fake_github(repo_status=200, token_body=None):
    def handler(request):
        if request.url.path == "/login/oauth/access_token":
            return httpx.Response(200, json=token_body or {"access_token": "gho_abc", "token_type": "bearer"})
        if request.url.path == "/user":
            return httpx.Response(200, json={"id": 583231, "login": "octocat", "name": "The Octocat"})
        if request.url.path.startswith("/repos/"):
            return httpx.Response(repo_status, json={"permissions": {"pull": True, "push": True}})
        return httpx.Response(404)
    return GitHubOAuthProvider(client_id="test-client-id", client_secret="test-client-secret",
                               transport=httpx.MockTransport(handler))


class SessionStoreTests(LFSTestCase):

    def test_round_trip(self):
        store = SessionStore()
        info = UserInfo(sub="42", name="Mona", repository="octo/repo")
        session_id = store.create_session(info)
        self.assertEqual(store.get_session(session_id), info)
        self.assertEqual(self.redis.ttls[cache_keys.session_key(session_id)], 24 * 60 * 60)

        store.delete_session(session_id)
        with self.assertRaises(SessionNotFound):
            store.get_session(session_id)

    def test_session_ids_are_opaque(self):
        session_id = SessionStore().create_session(UserInfo(sub="42", name="Mona"))
        self.assertEqual(uuid.UUID(session_id).version, 4)
        self.assertNotEqual(session_id, SessionStore().create_session(UserInfo(sub="42", name="Mona")))

    def test_corrupt_session(self):
        self.redis.set(cache_keys.session_key("s"), "{")
        with self.assertRaises(InvalidSessionData):
            SessionStore().get_session("s")
        self.redis.set(cache_keys.session_key("s"), json.dumps({"sub": "1", "provider": "gitlab"}))
        with self.assertRaises(InvalidSessionData):
            SessionStore().get_session("s")

    def test_oauth_state_is_single_use(self):
        states = OAuthStateStore()
        states.save_state("st", OAuthState(repository="octo/repo", redirect_uri=CALLBACK, shell="zsh"))
        self.assertEqual(self.redis.ttls[cache_keys.oauth_state_key("st")], 10 * 60)
        self.assertEqual(states.get_and_delete_state("st").shell, "zsh")
        with self.assertRaises(InvalidOAuthState):
            states.get_and_delete_state("st")


class GitHubLoginTests(LFSTestCase):

    def test_redirects_to_github(self):
        r = self.client.get("/auth/github/login", {"repository": "octo/repo", "shell": "powershell"})
        self.assertEqual(r.status_code, 302)

        location = urlsplit(r["Location"])
        self.assertEqual(f"{location.scheme}://{location.netloc}{location.path}",
                         "https://github.com/login/oauth/authorize")
        params = parse_qs(location.query)
        self.assertEqual(params["client_id"], ["test-client-id"])
        self.assertEqual(params["redirect_uri"], [CALLBACK])
        self.assertEqual(params["scope"], ["repo"])

        state = params["state"][0]
        stored = json.loads(self.redis.store[cache_keys.oauth_state_key(state)])
        self.assertEqual(stored, {"repository": "octo/repo", "redirect_uri": CALLBACK, "shell": "powershell"})

    def test_missing_repository(self):
        r = self.client.get("/auth/github/login")
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json(), {"error": "repositoryパラメータが指定されていません"})

    def test_malformed_repository(self):
        r = self.client.get("/auth/github/login", {"repository": "octo"})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json(), {"error": "repositoryパラメータの形式が不正です"})

    @override_settings(OAUTH_GITHUB_ALLOWED_HOSTS=['lfs.example.com'])
    def test_host_not_allowed(self):
        r = self.client.get("/auth/github/login", {"repository": "octo/repo"})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json(), {"error": "許可されていないホストからのリクエストです"})

    @override_settings(OAUTH_GITHUB_ALLOWED_REDIRECT_URIS=['https://lfs.example.com/auth/github/callback'])
    def test_redirect_uri_not_allowed(self):
        r = self.client.get("/auth/github/login", {"repository": "octo/repo"})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json(), {"error": "許可されていないリダイレクトURIです"})
        self.assertEqual(self.redis.store, {cache_keys.jwks_key("github"): mock.ANY})

    @override_settings(OAUTH_GITHUB_ENABLED=False)
    def test_disabled(self):
        r = self.client.get("/auth/github/login", {"repository": "octo/repo"})
        self.assertEqual(r.status_code, 404)


class GitHubCallbackTests(LFSTestCase):

    def setUp(self):
        super().setUp()
        self.allow()
        OAuthStateStore().save_state("state-123", OAuthState(repository="octo/repo", redirect_uri=CALLBACK,
                                                             shell="zsh"))

    def callback(self, provider=None, **params):
        with mock.patch("accounts.services.get_github_oauth_provider", return_value=provider or fake_github()):
            return self.client.get("/auth/github/callback", params)

    def test_creates_a_session(self):
        r = self.callback(code="the-code", state="state-123")
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertEqual(body["token_type"], "Bearer")
        self.assertEqual(body["expires_in"], 24 * 60 * 60)
        self.assertEqual(body["repository"], "octo/repo")
        self.assertEqual(body["shell"], "zsh")

        user_info = SessionStore().get_session(body["session_id"])
        self.assertEqual(user_info.sub, "583231")
        self.assertEqual(user_info.name, "The Octocat")
        self.assertEqual(user_info.repository, "octo/repo")
        self.assertNotIn(cache_keys.oauth_state_key("state-123"), self.redis.store)

    def test_session_authenticates_lfs_requests(self):
        session_id = self.callback(code="the-code", state="state-123").json()["session_id"]

        r = self.batch("upload", [{"oid": "a" * 64, "size": 1}], token=session_id)
        self.assertEqual(r.status_code, 200)

        self.allow("octo/other")
        r = self.batch("upload", [{"oid": "a" * 64, "size": 1}], token=session_id, repository="octo/other")
        self.assertEqual(r.status_code, 401)

    def test_session_as_basic_credentials(self):
        session_id = self.callback(code="the-code", state="state-123").json()["session_id"]
        objects = [{"oid": "a" * 64, "size": 1}]

        credentials = base64.b64encode(f"x-session:{session_id}".encode()).decode()
        r = self.batch("upload", objects, token=False, HTTP_AUTHORIZATION=f"Basic {credentials}")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["objects"][0]["actions"]["upload"]["header"],
                         {"Authorization": f"Basic {credentials}"})

        unknown = base64.b64encode(f"x-session:{uuid.uuid4()}".encode()).decode()
        empty = base64.b64encode(b"x-session:").decode()
        for credentials in (unknown, empty, "not-base64!"):
            r = self.batch("upload", objects, token=False, HTTP_AUTHORIZATION=f"Basic {credentials}")
            self.assertEqual(r.status_code, 401)
            self.assertEqual(r["LFS-Authenticate"], 'Basic realm="Git LFS"')

        credentials = base64.b64encode(f"someone:{session_id}".encode()).decode()
        r = self.batch("upload", objects, token=False, HTTP_AUTHORIZATION=f"Basic {credentials}")
        self.assertEqual(r.status_code, 401)

    def test_state_cannot_be_replayed(self):
        self.assertEqual(self.callback(code="the-code", state="state-123").status_code, 200)
        r = self.callback(code="the-code", state="state-123")
        self.assertEqual(r.status_code, 401)
        self.assertEqual(r.json(), {"error": "認証セッションが無効または期限切れです"})

    def test_missing_code(self):
        r = self.callback(state="state-123")
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json(), {"error": "codeパラメータが指定されていません"})
        self.assertIn(cache_keys.oauth_state_key("state-123"), self.redis.store)

    def test_missing_state(self):
        r = self.callback(code="the-code")
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json(), {"error": "stateパラメータが指定されていません"})

    def test_rejected_code(self):
        provider = fake_github(token_body={"error": "bad_verification_code"})
        r = self.callback(provider, code="stale", state="state-123")
        self.assertEqual(r.status_code, 401)
        self.assertNotIn(cache_keys.oauth_state_key("state-123"), self.redis.store)

    def test_repository_not_visible_to_user(self):
        r = self.callback(fake_github(repo_status=404), code="the-code", state="state-123")
        self.assertEqual(r.status_code, 403)
        self.assertEqual(r.json(), {"error": "リポジトリへのアクセス権がありません"})
        self.assertFalse([key for key in self.redis.store if key.startswith(cache_keys.LFS_SESSION_PREFIX)])

    def test_repository_probe_failure(self):
        r = self.callback(fake_github(repo_status=500), code="the-code", state="state-123")
        self.assertEqual(r.status_code, 500)
        self.assertEqual(r.json(), {"error": "認証処理に失敗しました"})
