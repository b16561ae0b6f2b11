# lfs_internals/jwks.py
import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx
from cryptography.hazmat.primitives.asymmetric import rsa

from . import cache_keys
from .cache import CacheError, CacheMiss, RedisCache
from .clients import DEFAULT_TIMEOUT, MAX_RESPONSE_BODY, ResponseTooLarge, build_http_client, read_limited
from .exceptions import ExponentOutOfRange, InvalidToken, JWKSFetchFailed, KeyIDNotFound

logger = logging.getLogger(__name__)

# Largest exponent a signed 64-bit integer holds.
MAX_EXPONENT = (1 << 63) - 1


@dataclass(frozen=True)
class JWK:
    kid: str
    kty: str
    n: str
    e: str
    use: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"kid": self.kid, "kty": self.kty, "n": self.n, "e": self.e}
        # `use` is optional in RFC 7517; keep it absent when the issuer left it out.
        if self.use is not None:
            data["use"] = self.use
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "JWK":
        return cls(
            kid=data.get("kid", ""),
            kty=data.get("kty", ""),
            n=data.get("n", ""),
            e=data.get("e", ""),
            use=data.get("use"),
        )


@dataclass(frozen=True)
class JWKSet:
    keys: List[JWK]

    def to_dict(self) -> dict:
        return {"keys": [key.to_dict() for key in self.keys]}

    @classmethod
    def from_dict(cls, data) -> "JWKSet":
        if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
            raise ValueError("JWKS document has no 'keys' array")
        return cls(keys=[JWK.from_dict(key) for key in data["keys"] if isinstance(key, dict)])

    def find(self, key_id: str) -> Optional[JWK]:
        for key in self.keys:
            if key.kid == key_id and key.kty == "RSA":
                return key
        return None


def _b64url_uint(value: str) -> int:
    padded = value + "=" * (-len(value) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError, UnicodeEncodeError) as e:
        raise InvalidToken(f"JWK component is not base64url: {e}") from e
    if not raw:
        raise InvalidToken("JWK component is empty")
    return int.from_bytes(raw, "big")


def rsa_public_key_from_jwk(jwk: JWK) -> rsa.RSAPublicKey:
    n = _b64url_uint(jwk.n)
    e = _b64url_uint(jwk.e)
    if e > MAX_EXPONENT:
        raise ExponentOutOfRange(f"RSA exponent of key '{jwk.kid}' does not fit in 64 bits")
    try:
        return rsa.RSAPublicNumbers(e, n).public_key()
    except ValueError as err:
        raise InvalidToken(f"JWK '{jwk.kid}' is not a usable RSA key: {err}") from err


class JWKSFetcher:
    """
    Resolves signing keys for an OIDC provider.

    The whole key set is cached per provider for 24 hours. A key ID missing from
    the cached set triggers one refetch, which is how provider key rotation is
    picked up.
    """

    def __init__(self, cache: Optional[RedisCache] = None, timeout: float = DEFAULT_TIMEOUT,
                 transport: Optional[httpx.BaseTransport] = None, ttl=cache_keys.JWKS_TTL):
        self.cache = cache or RedisCache()
        self.timeout = timeout
        self.transport = transport
        self.ttl = ttl

    def get_public_key(self, jwks_url: str, key_id: str, provider: str) -> rsa.RSAPublicKey:
        cached = self._load_cached(provider)
        if cached is not None:
            jwk = cached.find(key_id)
            if jwk is not None:
                return rsa_public_key_from_jwk(jwk)
            logger.info(f"Key '{key_id}' not in cached JWKS for {provider}; refetching")

        jwk_set = self.fetch(jwks_url)
        try:
            self.cache.set_json(cache_keys.jwks_key(provider), jwk_set.to_dict(), self.ttl)
        except CacheError as e:
            logger.warning(f"Could not cache JWKS for {provider}: {e}")

        jwk = jwk_set.find(key_id)
        if jwk is None:
            raise KeyIDNotFound(f"key '{key_id}' not found in JWKS for {provider}")
        return rsa_public_key_from_jwk(jwk)

    def fetch(self, jwks_url: str) -> JWKSet:
        try:
            with build_http_client(self.transport, self.timeout) as client:
                with client.stream("GET", jwks_url, headers={"Accept": "application/json"}) as response:
                    if response.status_code >= 400:
                        raise JWKSFetchFailed(f"JWKS endpoint {jwks_url} returned {response.status_code}")
                    body = read_limited(response, MAX_RESPONSE_BODY)
        except (httpx.HTTPError, ResponseTooLarge) as e:
            raise JWKSFetchFailed(f"could not fetch JWKS from {jwks_url}: {e}") from e
        try:
            return JWKSet.from_dict(json.loads(body))
        except ValueError as e:
            raise JWKSFetchFailed(f"JWKS from {jwks_url} is not valid: {e}") from e

    def _load_cached(self, provider: str) -> Optional[JWKSet]:
        try:
            return JWKSet.from_dict(self.cache.get_json(cache_keys.jwks_key(provider)))
        except CacheMiss:
            return None
        except CacheError as e:
            logger.warning(f"JWKS cache unavailable for {provider}: {e}")
            return None
        except ValueError as e:
            logger.warning(f"Discarding unreadable cached JWKS for {provider}: {e}")
            return None
