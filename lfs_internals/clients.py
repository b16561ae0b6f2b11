# lfs_internals/clients.py
import json
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional
from urllib.parse import urlencode

import httpx
from django.conf import settings

from .exceptions import RepositoryCheckFailed, TokenExchangeFailed, UserInfoFailed

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
MAX_RESPONSE_BODY = 1 << 20

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_API_URL = "https://api.github.com"


class ResponseTooLarge(Exception):
    pass


def read_limited(response: httpx.Response, limit: int = MAX_RESPONSE_BODY) -> bytes:
    """Reads a streamed response body, refusing anything larger than `limit` bytes."""
    body = bytearray()
    for chunk in response.iter_bytes():
        body.extend(chunk)
        if len(body) > limit:
            raise ResponseTooLarge(f"response from {response.url} exceeds {limit} bytes")
    return bytes(body)


def build_http_client(transport: Optional[httpx.BaseTransport] = None, timeout: float = DEFAULT_TIMEOUT) -> httpx.Client:
    return httpx.Client(timeout=timeout, transport=transport, follow_redirects=True)


@dataclass(frozen=True)
class OAuthToken:
    access_token: str
    token_type: str = ""
    scope: str = ""


@dataclass(frozen=True)
class GitHubUserInfo:
    id: int
    login: str
    # null when the GitHub account has no display name.
    name: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.id, "login": self.login, "name": self.name}

    @classmethod
    def from_dict(cls, data) -> "GitHubUserInfo":
        if not isinstance(data, dict) or not isinstance(data.get("id"), int) or not data.get("login"):
            raise UserInfoFailed("GitHub user response is missing 'id' or 'login'")
        return cls(id=data["id"], login=data["login"], name=data.get("name"))


@dataclass(frozen=True)
class RepositoryPermissions:
    admin: bool = False
    maintain: bool = False
    push: bool = False
    triage: bool = False
    pull: bool = False

    @property
    def can_upload(self) -> bool:
        return self.push or self.maintain or self.admin

    @property
    def can_download(self) -> bool:
        return self.pull or self.triage or self.can_upload

    @classmethod
    def from_dict(cls, data) -> "RepositoryPermissions":
        data = data if isinstance(data, dict) else {}
        return cls(**{name: bool(data.get(name)) for name in ("admin", "maintain", "push", "triage", "pull")})


class GitHubTokenExchanger:
    """Trades an OAuth authorization code for an access token."""

    def __init__(self, client_id: str, client_secret: str, token_url: str = GITHUB_TOKEN_URL,
                 transport: Optional[httpx.BaseTransport] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.transport = transport

    def exchange(self, code: str, redirect_uri: str) -> OAuthToken:
        form = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        try:
            with build_http_client(self.transport) as client:
                with client.stream("POST", self.token_url, data=form, headers={"Accept": "application/json"}) as response:
                    body = read_limited(response)
                    if response.status_code != 200:
                        raise TokenExchangeFailed(f"token endpoint returned {response.status_code}")
                    payload = json.loads(body)
        except (httpx.HTTPError, ResponseTooLarge, ValueError) as e:
            raise TokenExchangeFailed(f"token exchange failed: {e}") from e

        if not isinstance(payload, dict):
            raise TokenExchangeFailed("token endpoint returned a non-object body")
        if payload.get("error") or payload.get("error_description"):
            description = payload.get("error_description") or payload["error"]
            raise TokenExchangeFailed(f"token exchange rejected: {description}")
        if not payload.get("access_token"):
            raise TokenExchangeFailed("token endpoint returned no access_token")
        return OAuthToken(
            access_token=payload["access_token"],
            token_type=payload.get("token_type", ""),
            scope=payload.get("scope", ""),
        )


class GitHubAPIClient:
    """User info and repository probes against the GitHub REST API."""

    def __init__(self, api_url: str = GITHUB_API_URL, transport: Optional[httpx.BaseTransport] = None):
        self.api_url = api_url.rstrip("/")
        self.transport = transport

    def _headers(self, token: OAuthToken) -> dict:
        return {
            "Authorization": f"Bearer {token.access_token}",
            "Accept": "application/vnd.github+json",
        }

    def get_user_info(self, token: Optional[OAuthToken]) -> GitHubUserInfo:
        if token is None or not token.access_token:
            raise UserInfoFailed("no access token")
        try:
            with build_http_client(self.transport) as client:
                response = client.get(f"{self.api_url}/user", headers=self._headers(token))
        except httpx.HTTPError as e:
            raise UserInfoFailed(f"GitHub user request failed: {e}") from e
        if response.status_code != 200:
            raise UserInfoFailed(f"GitHub user request returned {response.status_code}")
        try:
            return GitHubUserInfo.from_dict(response.json())
        except ValueError as e:
            raise UserInfoFailed(f"GitHub user response is not JSON: {e}") from e

    def _get_repository(self, token: Optional[OAuthToken], owner: str, name: str) -> Optional[dict]:
        """Returns the repository document, or None when GitHub says 403/404."""
        if token is None or not token.access_token:
            raise RepositoryCheckFailed("no access token")
        try:
            with build_http_client(self.transport) as client:
                response = client.get(f"{self.api_url}/repos/{owner}/{name}", headers=self._headers(token))
        except httpx.HTTPError as e:
            raise RepositoryCheckFailed(f"GitHub repository request failed: {e}") from e
        if response.status_code in (403, 404):
            return None
        if response.status_code != 200:
            raise RepositoryCheckFailed(f"GitHub repository request returned {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise RepositoryCheckFailed(f"GitHub repository response is not JSON: {e}") from e

    def can_access_repository(self, token: Optional[OAuthToken], owner: str, name: str) -> bool:
        return self._get_repository(token, owner, name) is not None

    def get_repository_permissions(self, token: Optional[OAuthToken], owner: str, name: str) -> RepositoryPermissions:
        document = self._get_repository(token, owner, name)
        if document is None:
            return RepositoryPermissions()
        return RepositoryPermissions.from_dict(document.get("permissions"))


@dataclass
class GitHubOAuthProvider:
    """Facade over the authorize URL, code exchange and API probes for one OAuth app."""
    client_id: str
    client_secret: str = field(repr=False)
    redirect_uri: str = ""
    authorize_url: str = GITHUB_AUTHORIZE_URL
    token_url: str = GITHUB_TOKEN_URL
    api_url: str = GITHUB_API_URL
    transport: Optional[httpx.BaseTransport] = field(default=None, repr=False)

    def __post_init__(self):
        self.exchanger = GitHubTokenExchanger(self.client_id, self.client_secret, self.token_url, self.transport)
        self.api = GitHubAPIClient(self.api_url, self.transport)

    def set_redirect_uri(self, redirect_uri: str) -> None:
        self.redirect_uri = redirect_uri

    def get_authorization_url(self, state: str, scopes: Iterable[str] = ()) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": state,
        }
        scopes = list(scopes)
        if scopes:
            params["scope"] = " ".join(scopes)
        return f"{self.authorize_url}?{urlencode(params)}"

    def exchange_code(self, code: str) -> OAuthToken:
        return self.exchanger.exchange(code, self.redirect_uri)

    def get_user_info(self, token: Optional[OAuthToken]) -> GitHubUserInfo:
        return self.api.get_user_info(token)

    def can_access_repository(self, token: Optional[OAuthToken], owner: str, name: str) -> bool:
        return self.api.can_access_repository(token, owner, name)

    def get_repository_permissions(self, token: Optional[OAuthToken], owner: str, name: str) -> RepositoryPermissions:
        return self.api.get_repository_permissions(token, owner, name)


def get_github_oauth_provider() -> GitHubOAuthProvider:
    return GitHubOAuthProvider(
        client_id=settings.GITHUB_OAUTH_CLIENT_ID,
        client_secret=settings.GITHUB_OAUTH_CLIENT_SECRET,
    )
