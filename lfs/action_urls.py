# lfs/action_urls.py
import time
from typing import Optional
from urllib.parse import urlencode

from django.conf import settings
from django.utils.crypto import constant_time_compare, salted_hmac

from .domain import RepositoryIdentifier
from .exceptions import ProxyURLExpired, ProxyURLInvalid

SIGNING_SALT = "cargohold.lfs.proxy-url"

UPLOAD = "upload"
DOWNLOAD = "download"


class ProxyActionURLs:
    """
    Mints the hrefs handed back in Batch responses.

    Every href is rooted at this server. Transfer URLs carry an expiry and an
    HMAC over (operation, repository, oid, expiry) so a URL minted for one
    object, repository or direction cannot be reused for another.
    """

    def __init__(self, base_url: str, ttl: Optional[int] = None):
        self.base_url = base_url.rstrip("/")
        self.ttl = int(ttl if ttl is not None else settings.LFS_PROXY_URL_TTL)

    def object_url(self, repository: RepositoryIdentifier, oid: str) -> str:
        return f"{self.base_url}/{repository.owner}/{repository.name}/info/lfs/objects/{oid}"

    def verify_url(self, repository: RepositoryIdentifier) -> str:
        return f"{self.base_url}/{repository.owner}/{repository.name}/info/lfs/objects/verify"

    def upload_action(self, repository, oid, authorization=None) -> dict:
        return self._transfer_action(UPLOAD, repository, oid, authorization)

    def download_action(self, repository, oid, authorization=None) -> dict:
        return self._transfer_action(DOWNLOAD, repository, oid, authorization)

    def verify_action(self, repository, authorization=None) -> dict:
        return self._action(self.verify_url(repository), authorization)

    def _transfer_action(self, operation, repository, oid, authorization):
        expires = int(time.time()) + self.ttl
        query = urlencode({
            "expires": expires,
            "signature": sign(operation, repository, oid, expires),
        })
        return self._action(f"{self.object_url(repository, oid)}?{query}", authorization)

    def _action(self, href, authorization):
        action = {"href": href, "expires_in": self.ttl}
        if authorization:
            action["header"] = {"Authorization": authorization}
        return action


def sign(operation: str, repository: RepositoryIdentifier, oid: str, expires: int) -> str:
    value = f"{operation}:{repository.full_name}:{oid}:{expires}"
    return salted_hmac(SIGNING_SALT, value, algorithm="sha256").hexdigest()


def validate_signature(operation: str, repository: RepositoryIdentifier, oid: str, expires, signature) -> None:
    """Raises ProxyURLInvalid or ProxyURLExpired unless the URL parameters are genuine and current."""
    if not expires or not signature:
        raise ProxyURLInvalid()
    try:
        expires = int(expires)
    except (TypeError, ValueError):
        raise ProxyURLInvalid()
    if not constant_time_compare(sign(operation, repository, oid, expires), signature):
        raise ProxyURLInvalid()
    if expires < int(time.time()):
        raise ProxyURLExpired()
