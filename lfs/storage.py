# lfs/storage.py
import hashlib
import logging
from typing import Iterator, Optional, Tuple

from boto3.exceptions import S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError, ConnectTimeoutError, ReadTimeoutError
from django.core.files.storage import storages

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


class ObjectStoreError(Exception):
    pass


class ObjectNotInStore(ObjectStoreError):
    pass


class ObjectStoreTimeout(ObjectStoreError):
    pass


class ContentMismatch(ValueError):
    """The bytes a client sent do not match what it declared."""


class SizeMismatch(ContentMismatch):
    pass


class OIDMismatch(ContentMismatch):
    pass


class SizeLimitedReader:
    """
    Passes exactly `size` bytes through from `stream`.
    A body that ends early or keeps going past `size` raises SizeMismatch.
    """

    def __init__(self, stream, size: int):
        self.stream = stream
        self.size = size
        self.consumed = 0
        self._eof_checked = False

    def read(self, amount=-1) -> bytes:
        remaining = self.size - self.consumed
        if remaining <= 0:
            self._ensure_eof()
            return b""
        if amount is None or amount < 0 or amount > remaining:
            amount = remaining
        data = self.stream.read(amount)
        if not data:
            raise SizeMismatch(f"body ended after {self.consumed} of {self.size} bytes")
        self.consumed += len(data)
        if self.consumed == self.size:
            self._ensure_eof()
        return data

    def _ensure_eof(self):
        if self._eof_checked:
            return
        self._eof_checked = True
        if self.stream.read(1):
            raise SizeMismatch(f"body is longer than the declared {self.size} bytes")


class HashingReader:
    """Hashes everything read through it and checks the digest against the OID at EOF."""

    def __init__(self, stream, expected_oid: str):
        self.stream = stream
        self.expected_oid = expected_oid
        self._digest = hashlib.sha256()
        self._verified = False

    def read(self, amount=-1) -> bytes:
        data = self.stream.read(amount)
        if data:
            self._digest.update(data)
        elif not self._verified:
            actual = self._digest.hexdigest()
            if actual != self.expected_oid:
                raise OIDMismatch(f"content hashes to {actual}, expected {self.expected_oid}")
            self._verified = True
        return data


def _translate(error: Exception, key: str) -> ObjectStoreError:
    if isinstance(error, ClientError):
        code = str(error.response.get("Error", {}).get("Code", ""))
        if code in NOT_FOUND_CODES:
            return ObjectNotInStore(f"object '{key}' does not exist in the store")
    if isinstance(error, (ReadTimeoutError, ConnectTimeoutError)):
        return ObjectStoreTimeout(f"object store timed out on '{key}': {error}")
    return ObjectStoreError(f"object store request for '{key}' failed: {error}")


class S3ObjectStore:
    """
    Gateway to the S3-compatible bucket configured for django-storages.

    Presigned URLs are for internal use; clients only ever see proxy URLs
    minted by this server.
    """

    def __init__(self, storage=None, transfer_config: Optional[TransferConfig] = None):
        self.storage = storage if storage is not None else storages["lfs"]
        self.transfer_config = transfer_config or TransferConfig(
            multipart_threshold=8 * 1024 * 1024,
            multipart_chunksize=8 * 1024 * 1024,
            max_concurrency=4,
        )

    @property
    def client(self):
        return self.storage.connection.meta.client

    @property
    def bucket_name(self) -> str:
        return self.storage.bucket_name

    def presign_put(self, storage_key: str, ttl: int) -> str:
        try:
            return self.client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket_name, "Key": storage_key},
                ExpiresIn=int(ttl),
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, storage_key) from e

    def presign_get(self, storage_key: str, ttl: int) -> str:
        try:
            return self.storage.url(storage_key, expire=int(ttl))
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, storage_key) from e

    def stream_put(self, storage_key: str, reader, size: int) -> None:
        """
        Streams exactly `size` bytes from `reader` into the bucket.
        Raises ContentMismatch when the body diverges from `size`; nothing is
        committed in the store in that case.
        """
        body = SizeLimitedReader(reader, size)
        try:
            self.client.upload_fileobj(body, self.bucket_name, storage_key, Config=self.transfer_config)
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise _translate(e, storage_key) from e
        logger.info(f"Stored {size} bytes at '{storage_key}'")

    def stream_get(self, storage_key: str) -> Tuple[Iterator[bytes], int]:
        try:
            response = self.client.get_object(Bucket=self.bucket_name, Key=storage_key)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, storage_key) from e
        body = response["Body"]
        return self._iter_body(body, storage_key), int(response["ContentLength"])

    def head(self, storage_key: str) -> int:
        try:
            response = self.client.head_object(Bucket=self.bucket_name, Key=storage_key)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, storage_key) from e
        return int(response["ContentLength"])

    def ping(self) -> None:
        try:
            self.client.head_bucket(Bucket=self.bucket_name)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, self.bucket_name) from e

    @staticmethod
    def _iter_body(body, storage_key: str) -> Iterator[bytes]:
        try:
            for chunk in body.iter_chunks(CHUNK_SIZE):
                yield chunk
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Download of '{storage_key}' aborted mid-stream: {e}")
            raise
        finally:
            body.close()


def get_object_store() -> S3ObjectStore:
    return S3ObjectStore()
