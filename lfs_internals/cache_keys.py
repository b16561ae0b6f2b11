# lfs_internals/cache_keys.py
"""
Key layout shared with every other deployment that reads the same Redis.
Keep these prefixes stable: replicas of different versions coexist during rollouts.
"""
from datetime import timedelta

LFS_META_PREFIX = "lfs:meta:"
LFS_SESSION_PREFIX = "lfs:session:"
LFS_BATCH_UPLOAD_PREFIX = "lfs:batch:upload:"
OIDC_GITHUB_REPO_PREFIX = "lfs:oidc:github:repo:"
OIDC_STATE_PREFIX = "lfs:oidc:state:"
OIDC_JWKS_PREFIX = "lfs:oidc:jwks:"

METADATA_TTL = timedelta(minutes=30)
SESSION_TTL = timedelta(hours=24)
ALLOWLIST_TTL = timedelta(minutes=5)
OAUTH_STATE_TTL = timedelta(minutes=10)
JWKS_TTL = timedelta(hours=24)


def lfs_meta_key(oid: str) -> str:
    return f"{LFS_META_PREFIX}{oid}"


def session_key(session_id: str) -> str:
    return f"{LFS_SESSION_PREFIX}{session_id}"


def batch_upload_key(oid: str) -> str:
    return f"{LFS_BATCH_UPLOAD_PREFIX}{oid}"


def oidc_github_repo_key(repository: str) -> str:
    return f"{OIDC_GITHUB_REPO_PREFIX}{repository}"


def oauth_state_key(state: str) -> str:
    return f"{OIDC_STATE_PREFIX}{state}"


def jwks_key(provider: str) -> str:
    return f"{OIDC_JWKS_PREFIX}{provider}"
