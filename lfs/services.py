# lfs/services.py
import logging
from typing import Iterator, List, Optional, Tuple

from .action_urls import ProxyActionURLs
from .db import IsolationLevel, with_transaction
from .domain import HashAlgo, InvalidRepositoryIdentifier, RepositoryIdentifier
from .exceptions import (
    OBJECT_NOT_FOUND_ENTRY_MESSAGE,
    OBJECT_SIZE_CONFLICT_MESSAGE,
    AccessDenied,
    LengthRequired,
    ObjectNotFound,
    ObjectNotUploaded,
    ProxyObjectNotFound,
    SizeMismatchError,
    StorageTimeout,
    StorageUnavailable,
    UploadContentMismatch,
)
from .models import AccessPolicy, LFSObject
from .repository import AccessPolicyRepository, CachingLFSObjectRepository
from .storage import (
    ContentMismatch,
    HashingReader,
    ObjectNotInStore,
    ObjectStoreError,
    ObjectStoreTimeout,
    get_object_store,
)

logger = logging.getLogger(__name__)

TRANSFER_BASIC = "basic"


def policy_allows(policy: Optional[AccessPolicy], repository: RepositoryIdentifier) -> bool:
    if policy is None:
        return False
    try:
        return RepositoryIdentifier.parse(policy.repository).matches(repository)
    except InvalidRepositoryIdentifier:
        logger.error(f"Access policy for {policy.lfs_object_oid} names a malformed repository {policy.repository!r}")
        return False


def _store_error(error: ObjectStoreError):
    if isinstance(error, ObjectStoreTimeout):
        return StorageTimeout()
    return StorageUnavailable()


class BatchService:
    """
    Answers Git LFS Batch requests.

    Uploads are idempotent: each object gets a metadata row and an access
    policy for the requesting repository in one transaction, plus upload and
    verify actions unless it is already stored. Downloads are gated on every
    requested object being owned by the requesting repository.
    """

    def __init__(self, objects: Optional[CachingLFSObjectRepository] = None,
                 policies: Optional[AccessPolicyRepository] = None):
        self.objects = objects or CachingLFSObjectRepository()
        self.policies = policies or AccessPolicyRepository()

    def process_batch(self, *, repository: RepositoryIdentifier, operation: str, objects: List[dict],
                      hash_algo: HashAlgo, urls: ProxyActionURLs, authorization: Optional[str]) -> dict:
        if operation == "upload":
            entries = [
                self.process_upload(repository, item["oid"], item["size"], hash_algo, urls, authorization)
                for item in objects
            ]
        else:
            entries = self.process_download(repository, objects, urls, authorization)

        logger.info(f"Batch {operation} for {repository}: {len(entries)} object(s)")
        return {
            "transfer": TRANSFER_BASIC,
            "objects": entries,
            "hash_algo": hash_algo.value,
        }

    def process_upload(self, repository, oid, size, hash_algo, urls, authorization) -> dict:
        return with_transaction(
            lambda: self._upload_one(repository, oid, size, hash_algo, urls, authorization),
            IsolationLevel.READ_COMMITTED,
        )

    def _upload_one(self, repository, oid, size, hash_algo, urls, authorization) -> dict:
        obj = self.objects.find_by_oid(oid)

        if obj is not None and obj.uploaded:
            if obj.size != size:
                return {
                    "oid": oid,
                    "size": size,
                    "authenticated": True,
                    "error": {"code": 409, "message": OBJECT_SIZE_CONFLICT_MESSAGE},
                }
            self._bind(oid, repository)
            # Already stored: no actions, so the client does not upload again.
            return {"oid": oid, "size": size, "authenticated": True}

        if obj is None:
            obj = LFSObject.new(oid=oid, size=size, hash_algo=hash_algo)
            self.objects.save(obj)
        elif obj.size != size:
            obj.size = size
            self.objects.update(obj)

        self._bind(oid, repository)
        self.objects.record_batch_upload(oid, repository.full_name, size, urls.ttl)
        return {
            "oid": oid,
            "size": size,
            "authenticated": True,
            "actions": {
                "upload": urls.upload_action(repository, oid, authorization),
                "verify": urls.verify_action(repository, authorization),
            },
        }

    def process_download(self, repository, objects, urls, authorization) -> List[dict]:
        # Provenance first: a single object not owned by this repository denies the whole batch.
        for item in objects:
            if not policy_allows(self.policies.find_by_oid(item["oid"]), repository):
                logger.warning(f"Download of {item['oid']} denied for {repository}")
                raise AccessDenied()

        entries = []
        for item in objects:
            oid = item["oid"]
            obj = self.objects.find_by_oid(oid)
            if obj is None or not obj.uploaded:
                entries.append({
                    "oid": oid,
                    "size": item["size"],
                    "authenticated": True,
                    "error": {"code": 404, "message": OBJECT_NOT_FOUND_ENTRY_MESSAGE},
                })
                continue
            entries.append({
                "oid": oid,
                "size": obj.size,
                "authenticated": True,
                "actions": {"download": urls.download_action(repository, oid, authorization)},
            })
        return entries

    def _bind(self, oid: str, repository: RepositoryIdentifier) -> None:
        self.policies.save(AccessPolicy(lfs_object_oid=oid, repository=repository.full_name))


class ProxyTransferService:
    """Streams object bytes between git-lfs clients and the object store."""

    def __init__(self, objects: Optional[CachingLFSObjectRepository] = None,
                 policies: Optional[AccessPolicyRepository] = None, store=None):
        self.objects = objects or CachingLFSObjectRepository()
        self.policies = policies or AccessPolicyRepository()
        self.store = store or get_object_store()

    def upload(self, *, repository: RepositoryIdentifier, oid: str, stream, content_length: Optional[int]) -> LFSObject:
        obj = self.objects.find_by_oid(oid)
        if obj is None:
            raise ProxyObjectNotFound()

        policy = self.policies.find_by_oid(oid)
        if policy is not None and not policy_allows(policy, repository):
            logger.warning(f"Upload of {oid} denied for {repository}: owned by {policy.repository}")
            raise AccessDenied()

        if content_length is None:
            raise LengthRequired()
        if content_length != obj.size:
            raise UploadContentMismatch()

        if obj.uploaded:
            logger.info(f"Object {oid} is already stored; ignoring upload from {repository}")
            return obj

        try:
            self.store.stream_put(obj.storage_key, HashingReader(stream, oid), obj.size)
        except ContentMismatch as e:
            logger.warning(f"Rejected upload of {oid} for {repository}: {e}")
            raise UploadContentMismatch()
        except ObjectStoreError as e:
            logger.error(f"Upload of {oid} to the object store failed: {e}")
            raise _store_error(e)

        logger.info(f"Received {obj.size} bytes for {oid} from {repository}")
        return obj

    def download(self, *, repository: RepositoryIdentifier, oid: str) -> Tuple[Iterator[bytes], int]:
        if not policy_allows(self.policies.find_by_oid(oid), repository):
            logger.warning(f"Download of {oid} denied for {repository}")
            raise AccessDenied()

        obj = self.objects.find_by_oid(oid)
        if obj is None:
            raise ProxyObjectNotFound()
        if not obj.uploaded:
            raise ObjectNotUploaded()

        try:
            return self.store.stream_get(obj.storage_key)
        except ObjectNotInStore:
            logger.error(f"Object {oid} is marked uploaded but missing from the store")
            raise ProxyObjectNotFound()
        except ObjectStoreError as e:
            logger.error(f"Download of {oid} from the object store failed: {e}")
            raise _store_error(e)


class VerifyService:
    """Confirms a finished upload and flips the object to uploaded."""

    def __init__(self, objects: Optional[CachingLFSObjectRepository] = None, store=None):
        self.objects = objects or CachingLFSObjectRepository()
        self.store = store or get_object_store()

    def verify(self, *, oid: str, size: int) -> LFSObject:
        # 1. The object must have been announced through Batch.
        obj = self.objects.find_by_oid(oid)
        if obj is None:
            raise ObjectNotFound()

        # 2. The client and the metadata must agree on the size.
        if obj.size != size:
            raise SizeMismatchError()

        if obj.uploaded:
            return obj

        # 3. ... and so must the store.
        try:
            stored_size = self.store.head(obj.storage_key)
        except ObjectNotInStore:
            raise ObjectNotFound()
        except ObjectStoreError as e:
            logger.error(f"HEAD of {oid} failed during verify: {e}")
            raise _store_error(e)
        if stored_size != obj.size:
            logger.warning(f"Verify of {oid}: store holds {stored_size} bytes, expected {obj.size}")
            raise SizeMismatchError()

        # 4. pending -> uploaded.
        obj.mark_as_uploaded()
        self.objects.update(obj)
        self.objects.delete_batch_upload_marker(oid)
        logger.info(f"Verified {oid} ({obj.size} bytes)")
        return obj
