# lfs_internals/oidc.py
import logging
import time
from typing import Optional

import jwt
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from lfs.domain import WorkloadIdentity

from .exceptions import (
    ExpiredToken,
    InvalidAudience,
    InvalidIssuer,
    InvalidToken,
    MalformedToken,
    MissingKeyID,
)
from .jwks import JWKSFetcher

logger = logging.getLogger(__name__)

GITHUB_ACTIONS_ISSUER = "https://token.actions.githubusercontent.com"
GITHUB_ACTIONS_JWKS_URL = f"{GITHUB_ACTIONS_ISSUER}/.well-known/jwks"
GITHUB_PROVIDER = "github"

ALGORITHM = "RS256"
DEFAULT_LEEWAY = 60


class JWTVerifier:
    """
    RS256 verification against keys resolved through a JWKSFetcher.

    Issuer and audience are passed per call so one verifier can serve any
    number of OIDC providers.
    """

    def __init__(self, fetcher: Optional[JWKSFetcher] = None, leeway: int = DEFAULT_LEEWAY):
        self.fetcher = fetcher or JWKSFetcher()
        self.leeway = leeway

    def verify(self, token: str, *, jwks_url: str, issuer: str, audience: str, provider: str) -> dict:
        # 1. Header: only RS256 with a key ID.
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as e:
            raise MalformedToken(f"not a JWT: {e}") from e
        if header.get("alg") != ALGORITHM:
            raise InvalidToken(f"unexpected signing algorithm: {header.get('alg')!r}")
        key_id = header.get("kid")
        if not key_id:
            raise MissingKeyID("token header has no 'kid'")

        # 2. Key lookup.
        public_key = self.fetcher.get_public_key(jwks_url, key_id, provider)

        # 3. Signature and expiry. exp is strict; nbf/iat get the leeway below.
        try:
            claims = jwt.decode(
                token,
                key=public_key,
                algorithms=[ALGORITHM],
                options={
                    "require": ["exp"],
                    "verify_aud": False,
                    "verify_iss": False,
                    "verify_nbf": False,
                    "verify_iat": False,
                },
            )
        except jwt.ExpiredSignatureError as e:
            raise ExpiredToken("token has expired") from e
        except jwt.PyJWTError as e:
            raise InvalidToken(f"token verification failed: {e}") from e

        self._check_not_before(claims)

        # 4. Issuer, exactly.
        if claims.get("iss") != issuer:
            raise InvalidIssuer(f"unexpected issuer: {claims.get('iss')!r}")

        # 5. Audience: a string, or an array that contains ours.
        aud = claims.get("aud")
        if isinstance(aud, str):
            if aud != audience:
                raise InvalidAudience(f"unexpected audience: {aud!r}")
        elif isinstance(aud, list):
            if audience not in [item for item in aud if isinstance(item, str)]:
                raise InvalidAudience("expected audience not in token audience list")
        else:
            raise InvalidAudience("token has no usable 'aud' claim")

        return claims

    def _check_not_before(self, claims: dict) -> None:
        now = time.time()
        for claim in ("nbf", "iat"):
            if claim not in claims:
                continue
            value = claims[claim]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidToken(f"'{claim}' claim is not a number")
            if value > now + self.leeway:
                raise InvalidToken(f"token '{claim}' is in the future")


class GitHubActionsOIDCProvider:
    """Turns a GitHub Actions ID token into a WorkloadIdentity."""

    provider = GITHUB_PROVIDER
    issuer = GITHUB_ACTIONS_ISSUER
    required_claims = ("sub", "repository", "ref", "actor")

    def __init__(self, audience: str, jwks_url: Optional[str] = None, verifier: Optional[JWTVerifier] = None):
        if not audience:
            raise ImproperlyConfigured("GitHub Actions OIDC requires an audience (OIDC_GITHUB_AUDIENCE)")
        self.audience = audience
        self.jwks_url = jwks_url or GITHUB_ACTIONS_JWKS_URL
        self.verifier = verifier or JWTVerifier()

    def verify_id_token(self, token: str) -> WorkloadIdentity:
        claims = self.verifier.verify(
            token,
            jwks_url=self.jwks_url,
            issuer=self.issuer,
            audience=self.audience,
            provider=self.provider,
        )
        values = {}
        for name in self.required_claims:
            value = claims.get(name)
            if not isinstance(value, str) or not value:
                raise InvalidToken(f"token is missing the '{name}' claim")
            values[name] = value
        return WorkloadIdentity(claims=claims, **values)


def get_github_actions_provider() -> Optional[GitHubActionsOIDCProvider]:
    """Returns the configured provider, or None when OIDC is switched off."""
    if not settings.OIDC_GITHUB_ENABLED:
        return None
    return GitHubActionsOIDCProvider(
        audience=settings.OIDC_GITHUB_AUDIENCE,
        jwks_url=settings.OIDC_GITHUB_JWKS_URL or None,
    )
