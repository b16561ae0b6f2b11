import json
import time

import httpx
import jwt
from django.core.exceptions import ImproperlyConfigured
from django.test import SimpleTestCase, override_settings

from cargohold.test_utils import TEST_AUDIENCE, FakeRedis, b64url_uint, get_test_key, github_claims
from lfs.domain import WorkloadIdentity
from lfs_internals import cache_keys
from lfs_internals.cache import RedisCache
from lfs_internals.exceptions import (
    ExpiredToken,
    ExponentOutOfRange,
    InvalidAudience,
    InvalidIssuer,
    InvalidToken,
    JWKSFetchFailed,
    KeyIDNotFound,
    MalformedToken,
    MissingKeyID,
)
from lfs_internals.jwks import JWK, JWKSet, JWKSFetcher, rsa_public_key_from_jwk
from lfs_internals.oidc import (
    GITHUB_ACTIONS_ISSUER,
    GITHUB_ACTIONS_JWKS_URL,
    GitHubActionsOIDCProvider,
    JWTVerifier,
    get_github_actions_provider,
)


class JWKSEndpoint:
    """httpx transport handler serving a JWKS document and counting hits."""

    def __init__(self, document=None, status_code=200):
        self.document = document
        self.status_code = status_code
        self.calls = 0

    def __call__(self, request):
        self.calls += 1
        return httpx.Response(self.status_code, json=self.document)


class OIDCTestMixin:

    def setUp(self):
        super().setUp()
        self.key = get_test_key()
        self.redis = FakeRedis()
        self.endpoint = JWKSEndpoint(self.key.jwks())
        self.fetcher = JWKSFetcher(cache=RedisCache(self.redis), transport=httpx.MockTransport(self.endpoint))
        self.verifier = JWTVerifier(self.fetcher)

    def verify(self, token, audience=TEST_AUDIENCE):
        return self.verifier.verify(
            token,
            jwks_url=GITHUB_ACTIONS_JWKS_URL,
            issuer=GITHUB_ACTIONS_ISSUER,
            audience=audience,
            provider="github",
        )


class JWKSFetcherTests(OIDCTestMixin, SimpleTestCase):

    def test_fetch_then_cache(self):
        self.fetcher.get_public_key(GITHUB_ACTIONS_JWKS_URL, self.key.kid, "github")
        self.fetcher.get_public_key(GITHUB_ACTIONS_JWKS_URL, self.key.kid, "github")
        self.assertEqual(self.endpoint.calls, 1)
        cached = json.loads(self.redis.store[cache_keys.jwks_key("github")])
        self.assertEqual(cached["keys"][0]["kid"], self.key.kid)
        self.assertEqual(self.redis.ttls[cache_keys.jwks_key("github")], 24 * 60 * 60)

    def test_unknown_kid_triggers_refetch(self):
        self.redis.set(cache_keys.jwks_key("github"), json.dumps({"keys": []}))
        self.fetcher.get_public_key(GITHUB_ACTIONS_JWKS_URL, self.key.kid, "github")
        self.assertEqual(self.endpoint.calls, 1)

    def test_kid_missing_everywhere(self):
        with self.assertRaises(KeyIDNotFound):
            self.fetcher.get_public_key(GITHUB_ACTIONS_JWKS_URL, "rotated-away", "github")

    def test_endpoint_error(self):
        self.endpoint.status_code = 500
        with self.assertRaises(JWKSFetchFailed):
            self.fetcher.get_public_key(GITHUB_ACTIONS_JWKS_URL, self.key.kid, "github")

    def test_endpoint_unreachable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = JWKSFetcher(cache=RedisCache(FakeRedis()), transport=httpx.MockTransport(refuse))
        with self.assertRaises(JWKSFetchFailed):
            fetcher.fetch(GITHUB_ACTIONS_JWKS_URL)

    def test_document_without_keys(self):
        self.endpoint.document = {"nope": []}
        with self.assertRaises(JWKSFetchFailed):
            self.fetcher.fetch(GITHUB_ACTIONS_JWKS_URL)

    def test_cache_down_still_fetches(self):
        self.redis.fail = True
        self.fetcher.get_public_key(GITHUB_ACTIONS_JWKS_URL, self.key.kid, "github")
        self.assertEqual(self.endpoint.calls, 1)

    def test_only_rsa_keys_match(self):
        jwk_set = JWKSet.from_dict({"keys": [{"kid": "k", "kty": "EC", "n": "", "e": ""}]})
        self.assertIsNone(jwk_set.find("k"))

    def test_key_set_round_trip(self):
        body = (b'{"keys": [{"kid": "a", "kty": "RSA", "n": "sXch", "e": "AQAB", "use": "sig"}, '
                b'{"kid": "b", "kty": "RSA", "n": "ofgW", "e": "AQAB"}]}')
        jwk_set = JWKSet.from_dict(json.loads(body))
        self.assertIsNone(jwk_set.find("b").use)
        self.assertEqual(json.dumps(jwk_set.to_dict()).encode(), body)

    def test_exponent_out_of_range(self):
        jwk = JWK(kid="big", kty="RSA", n=self.key.jwk()["n"], e=b64url_uint((1 << 64) + 1))
        with self.assertRaises(ExponentOutOfRange):
            rsa_public_key_from_jwk(jwk)

    def test_public_key_matches_private_key(self):
        public_key = rsa_public_key_from_jwk(JWK.from_dict(self.key.jwk()))
        self.assertEqual(public_key.public_numbers(), self.key.private_key.public_key().public_numbers())


class JWTVerifierTests(OIDCTestMixin, SimpleTestCase):

    def test_valid_token(self):
        claims = self.verify(self.key.sign(github_claims()))
        self.assertEqual(claims["repository"], "octo/repo")

    def test_audience_list(self):
        self.verify(self.key.sign(github_claims(aud=["https://other.example", TEST_AUDIENCE])))
        with self.assertRaises(InvalidAudience):
            self.verify(self.key.sign(github_claims(aud=["https://other.example"])))

    def test_audience_mismatch(self):
        with self.assertRaises(InvalidAudience):
            self.verify(self.key.sign(github_claims(aud="https://other.example")))

    def test_missing_audience(self):
        claims = github_claims()
        del claims["aud"]
        with self.assertRaises(InvalidAudience):
            self.verify(self.key.sign(claims))

    def test_issuer_mismatch(self):
        with self.assertRaises(InvalidIssuer):
            self.verify(self.key.sign(github_claims(iss="https://accounts.example.com")))

    def test_expired(self):
        now = int(time.time())
        with self.assertRaises(ExpiredToken):
            self.verify(self.key.sign(github_claims(iat=now - 600, nbf=now - 600, exp=now - 1)))

    def test_missing_exp(self):
        claims = github_claims()
        del claims["exp"]
        with self.assertRaises(InvalidToken):
            self.verify(self.key.sign(claims))

    def test_not_before_leeway(self):
        now = int(time.time())
        self.verify(self.key.sign(github_claims(nbf=now + 30, iat=now + 30)))
        with self.assertRaises(InvalidToken):
            self.verify(self.key.sign(github_claims(nbf=now + 120)))
        with self.assertRaises(InvalidToken):
            self.verify(self.key.sign(github_claims(iat=now + 120)))

    def test_not_a_jwt(self):
        with self.assertRaises(MalformedToken):
            self.verify("0b6f1c53-4c2e-4c0e-9f0a-3f6e2b1d9a77")

    def test_wrong_algorithm(self):
        token = jwt.encode(github_claims(), "a-shared-secret-that-is-long-enough-for-hs256", algorithm="HS256",
                           headers={"kid": self.key.kid})
        with self.assertRaises(InvalidToken):
            self.verify(token)
        self.assertEqual(self.endpoint.calls, 0)

    def test_missing_kid(self):
        token = jwt.encode(github_claims(), self.key.private_key, algorithm="RS256")
        with self.assertRaises(MissingKeyID):
            self.verify(token)

    def test_signature_from_another_key(self):
        impostor = get_test_key("impostor")
        token = impostor.sign(github_claims(), headers={"kid": self.key.kid})
        with self.assertRaises(InvalidToken):
            self.verify(token)


class GitHubActionsProviderTests(OIDCTestMixin, SimpleTestCase):

    def setUp(self):
        super().setUp()
        self.provider = GitHubActionsOIDCProvider(audience=TEST_AUDIENCE, verifier=self.verifier)

    def test_identity(self):
        identity = self.provider.verify_id_token(self.key.sign(github_claims("acme/assets", actor="mona")))
        self.assertIsInstance(identity, WorkloadIdentity)
        self.assertEqual(identity.repository, "acme/assets")
        self.assertEqual(identity.actor, "mona")
        self.assertEqual(identity.ref, "refs/heads/main")
        self.assertEqual(identity.sub, "repo:acme/assets:ref:refs/heads/main")

    def test_required_claims(self):
        for name in ("sub", "repository", "ref", "actor"):
            claims = github_claims()
            del claims[name]
            with self.assertRaises(InvalidToken):
                self.provider.verify_id_token(self.key.sign(claims))

    def test_audience_is_required(self):
        with self.assertRaises(ImproperlyConfigured):
            GitHubActionsOIDCProvider(audience="")

    @override_settings(OIDC_GITHUB_ENABLED=False)
    def test_disabled(self):
        self.assertIsNone(get_github_actions_provider())

    def test_configured_provider(self):
        provider = get_github_actions_provider()
        self.assertEqual(provider.audience, TEST_AUDIENCE)
        self.assertEqual(provider.jwks_url, GITHUB_ACTIONS_JWKS_URL)
