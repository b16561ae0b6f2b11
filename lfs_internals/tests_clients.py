import json
from urllib.parse import parse_qs, urlsplit

import httpx
from django.test import SimpleTestCase

from lfs_internals.clients import (
    MAX_RESPONSE_BODY,
    GitHubAPIClient,
    GitHubOAuthProvider,
    GitHubTokenExchanger,
    GitHubUserInfo,
    OAuthToken,
    RepositoryPermissions,
)
from lfs_internals.exceptions import RepositoryCheckFailed, TokenExchangeFailed, UserInfoFailed


class FakeGitHub:
    """Routes httpx requests to canned GitHub responses and records them."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        status_code, body = route
        if isinstance(body, bytes):
            return httpx.Response(status_code, content=body)
        return httpx.Response(status_code, json=body)

    @property
    def transport(self):
        return httpx.MockTransport(self)


TOKEN = OAuthToken(access_token="gho_test")


class TokenExchangeTests(SimpleTestCase):

    def exchanger(self, status_code, body):
        github = FakeGitHub({("POST", "/login/oauth/access_token"): (status_code, body)})
        return github, GitHubTokenExchanger("client-id", "client-secret", transport=github.transport)

    def test_exchange(self):
        github, exchanger = self.exchanger(200, {"access_token": "gho_abc", "token_type": "bearer", "scope": "repo"})
        token = exchanger.exchange("the-code", "https://lfs.example.com/auth/github/callback")
        self.assertEqual(token, OAuthToken(access_token="gho_abc", token_type="bearer", scope="repo"))

        request = github.requests[0]
        self.assertEqual(request.headers["Accept"], "application/json")
        form = parse_qs(request.content.decode())
        self.assertEqual(form["code"], ["the-code"])
        self.assertEqual(form["client_id"], ["client-id"])
        self.assertEqual(form["client_secret"], ["client-secret"])
        self.assertEqual(form["redirect_uri"], ["https://lfs.example.com/auth/github/callback"])

    def test_error_payload(self):
        _, exchanger = self.exchanger(200, {"error": "bad_verification_code", "error_description": "expired"})
        with self.assertRaisesMessage(TokenExchangeFailed, "expired"):
            exchanger.exchange("stale", "https://lfs.example.com/auth/github/callback")

    def test_error_description_without_error_code(self):
        _, exchanger = self.exchanger(200, {"access_token": "gho_abc", "error_description": "scope revoked"})
        with self.assertRaisesMessage(TokenExchangeFailed, "scope revoked"):
            exchanger.exchange("code", "https://lfs.example.com/auth/github/callback")

    def test_http_error(self):
        _, exchanger = self.exchanger(502, {"message": "bad gateway"})
        with self.assertRaises(TokenExchangeFailed):
            exchanger.exchange("code", "https://lfs.example.com/auth/github/callback")

    def test_missing_access_token(self):
        _, exchanger = self.exchanger(200, {"token_type": "bearer"})
        with self.assertRaises(TokenExchangeFailed):
            exchanger.exchange("code", "https://lfs.example.com/auth/github/callback")

    def test_oversized_response(self):
        _, exchanger = self.exchanger(200, b"x" * (MAX_RESPONSE_BODY + 1))
        with self.assertRaises(TokenExchangeFailed):
            exchanger.exchange("code", "https://lfs.example.com/auth/github/callback")

    def test_non_json_response(self):
        _, exchanger = self.exchanger(200, b"access_token=gho_abc&scope=repo")
        with self.assertRaises(TokenExchangeFailed):
            exchanger.exchange("code", "https://lfs.example.com/auth/github/callback")


class GitHubAPIClientTests(SimpleTestCase):

    def client_for(self, routes):
        github = FakeGitHub(routes)
        return github, GitHubAPIClient(transport=github.transport)

    def test_user_info(self):
        github, client = self.client_for({("GET", "/user"): (200, {"id": 583231, "login": "octocat", "name": None})})
        user = client.get_user_info(TOKEN)
        self.assertEqual((user.id, user.login, user.name), (583231, "octocat", None))
        self.assertEqual(github.requests[0].headers["Authorization"], "Bearer gho_test")

    def test_user_info_round_trip(self):
        for body in (b'{"id": 583231, "login": "octocat", "name": "The Octocat"}',
                     b'{"id": 583231, "login": "octocat", "name": null}'):
            user = GitHubUserInfo.from_dict(json.loads(body))
            self.assertEqual(json.dumps(user.to_dict()).encode(), body)

    def test_user_info_without_token_makes_no_request(self):
        github, client = self.client_for({})
        with self.assertRaises(UserInfoFailed):
            client.get_user_info(None)
        with self.assertRaises(UserInfoFailed):
            client.get_user_info(OAuthToken(access_token=""))
        self.assertEqual(github.requests, [])

    def test_user_info_errors(self):
        _, client = self.client_for({("GET", "/user"): (401, {"message": "Bad credentials"})})
        with self.assertRaises(UserInfoFailed):
            client.get_user_info(TOKEN)
        _, client = self.client_for({("GET", "/user"): (200, {"login": "no-id"})})
        with self.assertRaises(UserInfoFailed):
            client.get_user_info(TOKEN)

    def test_repository_access(self):
        _, client = self.client_for({("GET", "/repos/octo/repo"): (200, {"full_name": "octo/repo"})})
        self.assertTrue(client.can_access_repository(TOKEN, "octo", "repo"))
        self.assertFalse(client.can_access_repository(TOKEN, "octo", "hidden"))

    def test_repository_forbidden(self):
        _, client = self.client_for({("GET", "/repos/octo/repo"): (403, {"message": "Forbidden"})})
        self.assertFalse(client.can_access_repository(TOKEN, "octo", "repo"))

    def test_repository_probe_failure(self):
        _, client = self.client_for({("GET", "/repos/octo/repo"): (500, {"message": "oops"})})
        with self.assertRaises(RepositoryCheckFailed):
            client.can_access_repository(TOKEN, "octo", "repo")
        with self.assertRaises(RepositoryCheckFailed):
            client.can_access_repository(None, "octo", "repo")

    def test_repository_permissions(self):
        _, client = self.client_for({
            ("GET", "/repos/octo/repo"): (200, {"permissions": {"admin": False, "push": True, "pull": True}}),
        })
        permissions = client.get_repository_permissions(TOKEN, "octo", "repo")
        self.assertTrue(permissions.can_upload)
        self.assertTrue(permissions.can_download)
        self.assertEqual(client.get_repository_permissions(TOKEN, "octo", "hidden"), RepositoryPermissions())

    def test_read_only_permissions(self):
        permissions = RepositoryPermissions.from_dict({"pull": True})
        self.assertFalse(permissions.can_upload)
        self.assertTrue(permissions.can_download)
        self.assertFalse(RepositoryPermissions.from_dict(None).can_download)


class GitHubOAuthProviderTests(SimpleTestCase):

    def test_authorization_url(self):
        provider = GitHubOAuthProvider(client_id="client-id", client_secret="client-secret")
        provider.set_redirect_uri("https://lfs.example.com/auth/github/callback")
        url = provider.get_authorization_url("state-123", ["repo", "read:user"])

        parts = urlsplit(url)
        self.assertEqual(f"{parts.scheme}://{parts.netloc}{parts.path}", "https://github.com/login/oauth/authorize")
        self.assertEqual(parse_qs(parts.query), {
            "client_id": ["client-id"],
            "redirect_uri": ["https://lfs.example.com/auth/github/callback"],
            "state": ["state-123"],
            "scope": ["repo read:user"],
        })

    def test_secret_is_not_in_repr(self):
        provider = GitHubOAuthProvider(client_id="client-id", client_secret="client-secret")
        self.assertNotIn("client-secret", repr(provider))

    def test_full_exchange(self):
        github = FakeGitHub({
            ("POST", "/login/oauth/access_token"): (200, {"access_token": "gho_abc"}),
            ("GET", "/user"): (200, {"id": 1, "login": "octocat"}),
            ("GET", "/repos/octo/repo"): (200, {"permissions": {"pull": True}}),
        })
        provider = GitHubOAuthProvider(client_id="client-id", client_secret="client-secret",
                                       redirect_uri="https://lfs.example.com/auth/github/callback",
                                       transport=github.transport)
        token = provider.exchange_code("code")
        self.assertEqual(provider.get_user_info(token).login, "octocat")
        self.assertTrue(provider.can_access_repository(token, "octo", "repo"))
        self.assertFalse(provider.get_repository_permissions(token, "octo", "repo").can_upload)
        self.assertEqual([request.url.path for request in github.requests],
                         ["/login/oauth/access_token", "/user", "/repos/octo/repo", "/repos/octo/repo"])
