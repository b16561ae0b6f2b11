# lfs/custom_auth.py
import base64
import binascii
import logging

from rest_framework import authentication

from accounts.sessions import InvalidSessionData, SessionNotFound, SessionStore
from lfs_internals.cache import CacheError
from lfs_internals.exceptions import InvalidIssuer, MalformedToken, OIDCError
from lfs_internals.oidc import get_github_actions_provider

from .domain import UserIdentity
from .exceptions import LFS_AUTHENTICATE, LFSAuthenticationFailed

logger = logging.getLogger(__name__)


class LFSTokenAuthentication(authentication.BaseAuthentication):
    """
    Bearer authentication for the LFS endpoints.

    The token is first tried as a GitHub Actions OIDC JWT. Only when it is
    clearly not one of those (not a JWT, or issued by someone else) is it
    looked up as an OAuth session ID. Any other verification failure is final.

    git-lfs credential helpers can only send Basic credentials, so a session
    is also accepted as `Basic base64("x-session:<session id>")`.
    """
    keyword = 'Bearer'
    session_username = 'x-session'

    def authenticate(self, request):
        auth = authentication.get_authorization_header(request).split()
        if not auth:
            return None
        if auth[0].lower() == b'basic':
            return self.authenticate_basic(auth)
        if auth[0].lower() != self.keyword.lower().encode():
            return None
        if len(auth) != 2:
            raise LFSAuthenticationFailed()
        try:
            token = auth[1].decode()
        except UnicodeError:
            raise LFSAuthenticationFailed()
        return self.resolve_identity(token), token

    def authenticate_basic(self, auth):
        if len(auth) != 2:
            raise LFSAuthenticationFailed()
        try:
            username, _, session_id = base64.b64decode(auth[1], validate=True).decode().partition(':')
        except (binascii.Error, UnicodeError):
            raise LFSAuthenticationFailed()
        if username != self.session_username:
            return None
        if not session_id:
            raise LFSAuthenticationFailed()
        return self.resolve_session(session_id), session_id

    def resolve_identity(self, token):
        provider = get_github_actions_provider()
        if provider is not None:
            try:
                identity = provider.verify_id_token(token)
                logger.info(f"Authenticated workload {identity.sub} for {identity.repository}")
                return identity
            except (MalformedToken, InvalidIssuer):
                pass
            except OIDCError as e:
                logger.warning(f"OIDC token rejected: {e}")
                raise LFSAuthenticationFailed()

        return self.resolve_session(token)

    def resolve_session(self, session_id):
        try:
            user_info = SessionStore().get_session(session_id)
        except (SessionNotFound, InvalidSessionData) as e:
            logger.warning(f"Session lookup failed: {e}")
            raise LFSAuthenticationFailed()
        except CacheError as e:
            logger.error(f"Session store unavailable: {e}")
            raise LFSAuthenticationFailed()
        return UserIdentity(user_info=user_info, session_id=session_id)

    def authenticate_header(self, request):
        return LFS_AUTHENTICATE
