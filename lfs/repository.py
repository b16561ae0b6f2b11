# lfs/repository.py

import logging
from typing import List, Optional

from django.db import transaction
from django.utils import timezone

from lfs_internals import cache_keys
from lfs_internals.cache import CacheError, CacheMiss, RedisCache

from .domain import AllowedRepository, RepositoryIdentifier
from .models import AccessPolicy, LFSObject, RepositoryAllowlistEntry

logger = logging.getLogger(__name__)


class LFSObjectRepository:
    """
    Acts as the data access layer for LFSObject rows.
    The SQL row is the source of truth; see CachingLFSObjectRepository for the cached view.
    """

    def find_by_oid(self, oid: str) -> Optional[LFSObject]:
        try:
            return LFSObject.objects.get(oid=oid)
        except LFSObject.DoesNotExist:
            return None

    def exists_by_oid(self, oid: str) -> bool:
        return LFSObject.objects.filter(oid=oid).exists()

    def save(self, obj: LFSObject) -> LFSObject:
        """
        Inserts a new row. A concurrent insert of the same OID wins silently;
        both callers describe the same content.
        """
        LFSObject.objects.bulk_create([obj], ignore_conflicts=True)
        return obj

    def update(self, obj: LFSObject) -> int:
        """
        Persists changes to an existing row with a single-row UPDATE.

        An uploaded object only carries the pending -> uploaded transition;
        a pending object may only have its declared size corrected. Rows that
        are already uploaded are never touched, so the transition cannot be
        reversed. Returns the number of rows changed.
        """
        pending = LFSObject.objects.filter(oid=obj.oid, uploaded=False)
        if obj.uploaded:
            return pending.update(uploaded=True, updated_at=obj.updated_at)
        return pending.update(size=obj.size, updated_at=timezone.now())


class CachingLFSObjectRepository:
    """
    Write-through cache in front of LFSObjectRepository.

    Reads prefer the cache; writes go to SQL first and then refresh the cache
    best-effort. A cache failure never fails the caller.
    """

    def __init__(self, repository: Optional[LFSObjectRepository] = None, cache: Optional[RedisCache] = None,
                 ttl=cache_keys.METADATA_TTL):
        self.repository = repository or LFSObjectRepository()
        self.cache = cache or RedisCache()
        self.ttl = ttl

    def find_by_oid(self, oid: str) -> Optional[LFSObject]:
        key = cache_keys.lfs_meta_key(oid)
        try:
            return LFSObject.from_cache(self.cache.get_json(key))
        except CacheMiss:
            pass
        except CacheError as e:
            logger.warning(f"Metadata cache unavailable for {oid}, reading from database: {e}")
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cached metadata for {oid}: {e}")

        obj = self.repository.find_by_oid(oid)
        if obj is not None:
            self._store(obj)
        return obj

    def exists_by_oid(self, oid: str) -> bool:
        try:
            if self.cache.exists(cache_keys.lfs_meta_key(oid)):
                return True
        except CacheError as e:
            logger.warning(f"Metadata cache unavailable for {oid}: {e}")
        return self.repository.exists_by_oid(oid)

    def save(self, obj: LFSObject) -> LFSObject:
        self.repository.save(obj)
        self._refresh_after_write(obj.oid)
        return obj

    def update(self, obj: LFSObject) -> int:
        changed = self.repository.update(obj)
        self._refresh_after_write(obj.oid)
        return changed

    def record_batch_upload(self, oid: str, repository: str, size: int, ttl) -> None:
        try:
            self.cache.set_json(cache_keys.batch_upload_key(oid), {"repository": repository, "size": size}, ttl)
        except CacheError as e:
            logger.warning(f"Could not record pending upload for {oid}: {e}")

    def delete_batch_upload_marker(self, oid: str) -> None:
        try:
            self.cache.delete(cache_keys.batch_upload_key(oid))
        except CacheError as e:
            logger.warning(f"Could not clear batch upload marker for {oid}: {e}")

    def _refresh_after_write(self, oid: str) -> None:
        # Drop the stale projection now; repopulate from SQL once the row is committed.
        self._invalidate(oid)
        transaction.on_commit(lambda: self._reload(oid))

    def _reload(self, oid: str) -> None:
        obj = self.repository.find_by_oid(oid)
        if obj is not None:
            self._store(obj)

    def _store(self, obj: LFSObject) -> None:
        try:
            self.cache.set_json(cache_keys.lfs_meta_key(obj.oid), obj.to_cache(), self.ttl)
        except CacheError as e:
            logger.warning(f"Could not cache metadata for {obj.oid}: {e}")

    def _invalidate(self, oid: str) -> None:
        try:
            self.cache.delete(cache_keys.lfs_meta_key(oid))
        except CacheError as e:
            logger.warning(f"Could not invalidate cached metadata for {oid}: {e}")


class AccessPolicyRepository:
    """Data access for the OID -> uploading repository binding."""

    def find_by_oid(self, oid: str) -> Optional[AccessPolicy]:
        try:
            return AccessPolicy.objects.get(lfs_object_oid=oid)
        except AccessPolicy.DoesNotExist:
            return None

    def save(self, policy: AccessPolicy) -> AccessPolicy:
        """
        Upserts by OID. An existing binding is re-pointed at the new repository,
        which transfers download rights to the most recent uploader.
        """
        AccessPolicy.objects.bulk_create(
            [policy],
            update_conflicts=True,
            unique_fields=['lfs_object_oid'],
            update_fields=['repository'],
        )
        return policy

    def delete(self, oid: str) -> None:
        deleted, _ = AccessPolicy.objects.filter(lfs_object_oid=oid).delete()
        if not deleted:
            raise AccessPolicy.DoesNotExist(f"no access policy for {oid}")


class RepositoryAllowlistRepository:
    """SQL side of the allowlist."""

    def is_allowed(self, repository: RepositoryIdentifier) -> bool:
        return RepositoryAllowlistEntry.objects.filter(repository=repository.full_name).exists()

    def add(self, repository: RepositoryIdentifier) -> None:
        RepositoryAllowlistEntry.objects.bulk_create(
            [RepositoryAllowlistEntry(repository=repository.full_name)],
            ignore_conflicts=True,
        )

    def remove(self, repository: RepositoryIdentifier) -> int:
        deleted, _ = RepositoryAllowlistEntry.objects.filter(repository=repository.full_name).delete()
        return deleted

    def list(self) -> List[AllowedRepository]:
        entries = RepositoryAllowlistEntry.objects.order_by('repository').values_list('repository', flat=True)
        return [AllowedRepository.parse(entry) for entry in entries]


class CachingRepositoryAllowlist:
    """
    Two-tier membership check: Redis first, SQL on a miss.
    Redis being down only costs latency; the answer always falls back to SQL.
    """

    def __init__(self, repository: Optional[RepositoryAllowlistRepository] = None,
                 cache: Optional[RedisCache] = None, ttl=cache_keys.ALLOWLIST_TTL):
        self.repository = repository or RepositoryAllowlistRepository()
        self.cache = cache or RedisCache()
        self.ttl = ttl

    def is_allowed(self, repository: RepositoryIdentifier) -> bool:
        key = cache_keys.oidc_github_repo_key(repository.full_name)
        try:
            cached = self.cache.get(key)
            if cached in ("true", "false"):
                return cached == "true"
            logger.warning(f"Ignoring unexpected allowlist cache value for {repository}: {cached!r}")
        except CacheMiss:
            pass
        except CacheError as e:
            logger.warning(f"Allowlist cache unavailable, checking database for {repository}: {e}")

        allowed = self.repository.is_allowed(repository)
        try:
            self.cache.set(key, "true" if allowed else "false", self.ttl)
        except CacheError as e:
            logger.warning(f"Could not cache allowlist result for {repository}: {e}")
        return allowed

    def add(self, repository: RepositoryIdentifier) -> None:
        self.repository.add(repository)
        try:
            self.cache.set(cache_keys.oidc_github_repo_key(repository.full_name), "true", self.ttl)
        except CacheError as e:
            logger.warning(f"Could not cache allowlist entry for {repository}: {e}")

    def remove(self, repository: RepositoryIdentifier) -> int:
        deleted = self.repository.remove(repository)
        try:
            self.cache.delete(cache_keys.oidc_github_repo_key(repository.full_name))
        except CacheError as e:
            logger.warning(f"Could not evict allowlist entry for {repository}: {e}")
        return deleted

    def list(self) -> List[AllowedRepository]:
        return self.repository.list()
