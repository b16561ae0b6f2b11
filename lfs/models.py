from django.db import models
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .domain import HashAlgo, storage_key_for, validate_oid, validate_size


class LFSObject(models.Model):
    """
    Canonical record of one content-addressed LFS object.

    `uploaded` only ever moves from False to True, and only through verify.
    """
    oid = models.CharField(primary_key=True, max_length=64)
    size = models.BigIntegerField()
    hash_algo = models.CharField(max_length=16, default=HashAlgo.SHA256.value)
    storage_key = models.CharField(max_length=255)
    uploaded = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'lfs_objects'

    def __str__(self):
        state = "uploaded" if self.uploaded else "pending"
        return f"{self.oid} ({self.size} bytes, {state})"

    @classmethod
    def new(cls, *, oid: str, size: int, hash_algo: HashAlgo = HashAlgo.SHA256) -> "LFSObject":
        validate_oid(oid)
        validate_size(size)
        hash_algo = HashAlgo(hash_algo)
        now = timezone.now()
        return cls(
            oid=oid,
            size=size,
            hash_algo=hash_algo.value,
            storage_key=storage_key_for(hash_algo, oid),
            uploaded=False,
            created_at=now,
            updated_at=now,
        )

    def mark_as_uploaded(self):
        self.uploaded = True
        self.updated_at = timezone.now()

    def to_cache(self) -> dict:
        return {
            "oid": self.oid,
            "size": self.size,
            "hash_algo": self.hash_algo,
            "storage_key": self.storage_key,
            "uploaded": self.uploaded,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_cache(cls, data: dict) -> "LFSObject":
        """Rebuilds a row from its cached projection; rejects projections that break invariants."""
        oid = validate_oid(data["oid"])
        size = validate_size(data["size"])
        hash_algo = HashAlgo(data["hash_algo"])
        storage_key = data["storage_key"]
        if storage_key != storage_key_for(hash_algo, oid):
            raise ValueError(f"cached storage key does not match OID {oid}")
        if not isinstance(data["uploaded"], bool):
            raise ValueError("cached 'uploaded' flag is not a boolean")
        values = {
            "oid": oid,
            "size": size,
            "hash_algo": hash_algo.value,
            "storage_key": storage_key,
            "uploaded": data["uploaded"],
            "created_at": _parse_datetime(data["created_at"]),
            "updated_at": _parse_datetime(data["updated_at"]),
        }
        field_names = [f.attname for f in cls._meta.concrete_fields]
        return cls.from_db('default', field_names, [values[name] for name in field_names])


class AccessPolicy(models.Model):
    """Which repository uploaded an OID. Downloads are only served to that repository."""
    id = models.AutoField(primary_key=True)
    lfs_object_oid = models.CharField(max_length=64, unique=True)
    repository = models.CharField(max_length=255)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'lfs_object_access_policies'

    def __str__(self):
        return f"{self.lfs_object_oid} -> {self.repository}"


class RepositoryAllowlistEntry(models.Model):
    id = models.AutoField(primary_key=True)
    repository = models.CharField(max_length=255, unique=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'repository_allowlist'
        ordering = ['repository']

    def __str__(self):
        return self.repository


def _parse_datetime(value):
    parsed = parse_datetime(value) if isinstance(value, str) else None
    if parsed is None:
        raise ValueError(f"invalid timestamp in cache: {value!r}")
    return parsed
