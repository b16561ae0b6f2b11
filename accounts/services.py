# accounts/services.py
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from django.conf import settings
from rest_framework import status
from rest_framework.exceptions import APIException

from lfs.domain import InvalidRepositoryIdentifier, OAuthState, ProviderType, RepositoryIdentifier, ShellType, UserInfo
from lfs_internals import cache_keys
from lfs_internals.clients import GitHubOAuthProvider, get_github_oauth_provider
from lfs_internals.exceptions import OAuthError, TokenExchangeFailed, UserInfoFailed

from .sessions import InvalidOAuthState, OAuthStateStore, SessionStore

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/auth/github/callback"


class OAuthFlowError(APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "認証処理に失敗しました"
    default_code = 'oauth_failed'


class MissingRepositoryParameter(OAuthFlowError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "repositoryパラメータが指定されていません"


class InvalidRepositoryParameter(OAuthFlowError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "repositoryパラメータの形式が不正です"


class HostNotAllowed(OAuthFlowError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "許可されていないホストからのリクエストです"


class RedirectURINotAllowed(OAuthFlowError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "許可されていないリダイレクトURIです"


class MissingCodeParameter(OAuthFlowError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "codeパラメータが指定されていません"


class MissingStateParameter(OAuthFlowError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "stateパラメータが指定されていません"


class InvalidStateError(OAuthFlowError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "認証セッションが無効または期限切れです"


class RepositoryAccessDenied(OAuthFlowError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "リポジトリへのアクセス権がありません"


class CodeExchangeFailed(OAuthFlowError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "認証に失敗しました"


class UserInfoUnavailable(OAuthFlowError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "ユーザー情報の取得に失敗しました"


class OAuthDisabled(OAuthFlowError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "GitHub OAuth認証は無効です"


@dataclass(frozen=True)
class AuthenticationResult:
    session_id: str
    repository: str
    shell: str
    user_info: UserInfo


class GitHubOAuthService:
    """
    Browser half of the GitHub OAuth flow for human users.

    `start` stores a single-use state and returns GitHub's authorize URL;
    `complete` consumes that state, checks the user can see the repository
    and opens a server-side session whose ID is the user's LFS token.
    """

    def __init__(self, provider: Optional[GitHubOAuthProvider] = None, sessions: Optional[SessionStore] = None,
                 states: Optional[OAuthStateStore] = None, allowed_redirect_uris: Optional[List[str]] = None,
                 scopes: Optional[List[str]] = None):
        if not settings.OAUTH_GITHUB_ENABLED:
            raise OAuthDisabled()
        self.provider = provider or get_github_oauth_provider()
        self.sessions = sessions or SessionStore()
        self.states = states or OAuthStateStore()
        self.allowed_redirect_uris = (
            allowed_redirect_uris if allowed_redirect_uris is not None else settings.OAUTH_GITHUB_ALLOWED_REDIRECT_URIS
        )
        self.scopes = scopes if scopes is not None else settings.OAUTH_GITHUB_SCOPES

    def start(self, *, repository: str, redirect_uri: str, shell: Optional[str] = None) -> str:
        repo = parse_repository_parameter(repository)
        if redirect_uri not in self.allowed_redirect_uris:
            logger.warning(f"Refused OAuth redirect URI {redirect_uri}")
            raise RedirectURINotAllowed()

        state = str(uuid.uuid4())
        self.states.save_state(
            state,
            OAuthState(repository=repo.full_name, redirect_uri=redirect_uri, shell=ShellType.parse(shell).value),
            cache_keys.OAUTH_STATE_TTL,
        )
        self.provider.set_redirect_uri(redirect_uri)
        logger.info(f"Starting GitHub OAuth for {repo}")
        return self.provider.get_authorization_url(state, self.scopes)

    def complete(self, *, code: str, state: str) -> AuthenticationResult:
        # 1. The state is single use, whatever happens next.
        try:
            oauth_state = self.states.get_and_delete_state(state)
        except InvalidOAuthState as e:
            logger.warning(f"OAuth callback with unusable state: {e}")
            raise InvalidStateError()

        try:
            repo = RepositoryIdentifier.parse(oauth_state.repository)
        except InvalidRepositoryIdentifier:
            raise InvalidStateError()

        # 2. Code for token, token for user.
        self.provider.set_redirect_uri(oauth_state.redirect_uri)
        try:
            token = self.provider.exchange_code(code)
        except TokenExchangeFailed as e:
            logger.warning(f"GitHub code exchange failed: {e}")
            raise CodeExchangeFailed()
        try:
            user = self.provider.get_user_info(token)
        except UserInfoFailed as e:
            logger.warning(f"GitHub user lookup failed: {e}")
            raise UserInfoUnavailable()

        # 3. The user must be able to see the repository they asked for.
        try:
            accessible = self.provider.can_access_repository(token, repo.owner, repo.name)
        except OAuthError as e:
            logger.error(f"GitHub repository check for {repo} failed: {e}")
            raise OAuthFlowError()
        if not accessible:
            logger.warning(f"GitHub user {user.login} has no access to {repo}")
            raise RepositoryAccessDenied()

        # 4. Session.
        user_info = UserInfo(
            sub=str(user.id),
            email="",
            name=user.name or user.login,
            provider=ProviderType.GITHUB.value,
            repository=repo.full_name,
        )
        session_id = self.sessions.create_session(user_info, cache_keys.SESSION_TTL)
        logger.info(f"GitHub user {user.login} signed in for {repo}")
        return AuthenticationResult(
            session_id=session_id,
            repository=repo.full_name,
            shell=ShellType.parse(oauth_state.shell).value,
            user_info=user_info,
        )


def parse_repository_parameter(value: Optional[str]) -> RepositoryIdentifier:
    if not value:
        raise MissingRepositoryParameter()
    try:
        return RepositoryIdentifier.parse(value)
    except InvalidRepositoryIdentifier:
        raise InvalidRepositoryParameter()


def callback_redirect_uri(request) -> str:
    """<scheme>://<host>/auth/github/callback; the scheme honours X-Forwarded-Proto only behind a trusted proxy."""
    return f"{request.scheme}://{request.get_host()}{CALLBACK_PATH}"


def check_request_host(request) -> None:
    allowed_hosts = settings.OAUTH_GITHUB_ALLOWED_HOSTS
    if allowed_hosts and request.get_host() not in allowed_hosts:
        logger.warning(f"OAuth login attempted from host {request.get_host()}")
        raise HostNotAllowed()
