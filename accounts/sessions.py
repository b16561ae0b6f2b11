# accounts/sessions.py
import logging
import uuid
from typing import Optional

from lfs.domain import InvalidUserInfo, OAuthState, UserInfo
from lfs_internals import cache_keys
from lfs_internals.cache import CacheMiss, RedisCache

logger = logging.getLogger(__name__)


class SessionNotFound(Exception):
    pass


class InvalidSessionData(Exception):
    pass


class InvalidOAuthState(Exception):
    pass


class SessionStore:
    """
    Server-side sessions in Redis, keyed by an opaque UUIDv4.
    Nothing about the user is encoded in the session ID itself.
    """

    def __init__(self, cache: Optional[RedisCache] = None, default_ttl=cache_keys.SESSION_TTL):
        self.cache = cache or RedisCache()
        self.default_ttl = default_ttl

    def create_session(self, user_info: UserInfo, ttl=None) -> str:
        session_id = str(uuid.uuid4())
        self.cache.set_json(cache_keys.session_key(session_id), user_info.to_dict(), ttl or self.default_ttl)
        logger.info(f"Created session for {user_info.provider} user {user_info.sub}")
        return session_id

    def get_session(self, session_id: str) -> UserInfo:
        """Raises SessionNotFound, InvalidSessionData, or CacheError."""
        try:
            data = self.cache.get_json(cache_keys.session_key(session_id))
        except CacheMiss:
            raise SessionNotFound("session not found or expired")
        except ValueError as e:
            raise InvalidSessionData(f"stored session is not JSON: {e}") from e
        try:
            return UserInfo.from_dict(data)
        except InvalidUserInfo as e:
            raise InvalidSessionData(str(e)) from e

    def delete_session(self, session_id: str) -> None:
        self.cache.delete(cache_keys.session_key(session_id))


class OAuthStateStore:
    """Single-use OAuth `state` records; reading one consumes it."""

    def __init__(self, cache: Optional[RedisCache] = None, default_ttl=cache_keys.OAUTH_STATE_TTL):
        self.cache = cache or RedisCache()
        self.default_ttl = default_ttl

    def save_state(self, state: str, oauth_state: OAuthState, ttl=None) -> None:
        self.cache.set_json(cache_keys.oauth_state_key(state), oauth_state.to_dict(), ttl or self.default_ttl)

    def get_and_delete_state(self, state: str) -> OAuthState:
        try:
            data = self.cache.getdel_json(cache_keys.oauth_state_key(state))
        except CacheMiss:
            raise InvalidOAuthState("OAuth state not found or expired")
        except ValueError as e:
            raise InvalidOAuthState(f"stored OAuth state is not JSON: {e}") from e
        try:
            return OAuthState.from_dict(data)
        except ValueError as e:
            raise InvalidOAuthState(str(e)) from e
