# lfs_internals/exceptions.py


class OIDCError(Exception):
    """Base class for every token verification failure."""


class InvalidToken(OIDCError):
    pass


class MalformedToken(InvalidToken):
    """The credential is not a JWT at all; it may still be a session ID."""


class ExpiredToken(InvalidToken):
    pass


class InvalidIssuer(InvalidToken):
    pass


class InvalidAudience(InvalidToken):
    pass


class MissingKeyID(InvalidToken):
    pass


class JWKSFetchFailed(OIDCError):
    pass


class KeyIDNotFound(OIDCError):
    pass


class ExponentOutOfRange(OIDCError):
    pass


class OAuthError(Exception):
    """Base class for GitHub OAuth failures."""


class TokenExchangeFailed(OAuthError):
    pass


class UserInfoFailed(OAuthError):
    pass


class RepositoryCheckFailed(OAuthError):
    pass
