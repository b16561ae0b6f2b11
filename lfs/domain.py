# lfs/domain.py
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

OID_PATTERN = r"^[0-9a-f]{64}$"
OID_RE = re.compile(OID_PATTERN)

MAX_SIZE = (1 << 63) - 1


class InvalidOID(ValueError):
    pass


class InvalidSize(ValueError):
    pass


class InvalidHashAlgorithm(ValueError):
    pass


class InvalidRepositoryIdentifier(ValueError):
    pass


class InvalidUserInfo(ValueError):
    pass


class HashAlgo(str, Enum):
    SHA256 = "sha256"

    @classmethod
    def parse(cls, value: Optional[str]) -> "HashAlgo":
        # An absent algorithm means the only one git-lfs has ever used.
        if not value:
            return cls.SHA256
        try:
            return cls(value)
        except ValueError:
            raise InvalidHashAlgorithm(f"unsupported hash algorithm: {value!r}")


class ProviderType(str, Enum):
    GITHUB = "github"


class ShellType(str, Enum):
    BASH = "bash"
    ZSH = "zsh"
    POWERSHELL = "powershell"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ShellType":
        if not value:
            return cls.BASH
        try:
            return cls(value.lower())
        except ValueError:
            return cls.BASH


def validate_oid(oid) -> str:
    if not isinstance(oid, str) or not OID_RE.match(oid):
        raise InvalidOID(f"invalid OID: {oid!r}")
    return oid


def validate_size(size) -> int:
    if isinstance(size, bool) or not isinstance(size, int):
        raise InvalidSize(f"size must be an integer, got {size!r}")
    if size < 0 or size > MAX_SIZE:
        raise InvalidSize(f"size out of range: {size}")
    return size


def storage_key_for(hash_algo: HashAlgo, oid: str) -> str:
    """objects/<algo>/<oid[0:2]>/<oid[2:4]>/<oid>"""
    algo = HashAlgo(hash_algo).value
    validate_oid(oid)
    return f"objects/{algo}/{oid[0:2]}/{oid[2:4]}/{oid}"


@dataclass(frozen=True)
class RepositoryIdentifier:
    """An `owner/name` pair. Used both for allowlist rows and for credential claims."""
    owner: str
    name: str

    def __post_init__(self):
        for part in (self.owner, self.name):
            if not isinstance(part, str) or not part or "/" in part:
                raise InvalidRepositoryIdentifier(f"invalid repository identifier: {self.owner!r}/{self.name!r}")

    @classmethod
    def parse(cls, full_name) -> "RepositoryIdentifier":
        if not isinstance(full_name, str):
            raise InvalidRepositoryIdentifier(f"invalid repository identifier: {full_name!r}")
        parts = full_name.split("/")
        if len(parts) != 2:
            raise InvalidRepositoryIdentifier(f"invalid repository identifier: {full_name!r}")
        return cls(parts[0], parts[1])

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def matches(self, other: "RepositoryIdentifier") -> bool:
        # GitHub treats owner and repository names case-insensitively.
        return self.full_name.casefold() == other.full_name.casefold()

    def __str__(self):
        return self.full_name


# Allowlist rows and credential claims share one shape.
AllowedRepository = RepositoryIdentifier


@dataclass(frozen=True)
class UserInfo:
    sub: str
    email: str = ""
    name: str = ""
    provider: str = ProviderType.GITHUB.value
    repository: Optional[str] = None
    ref: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "sub": self.sub,
            "email": self.email,
            "name": self.name,
            "provider": self.provider,
        }
        if self.repository:
            data["repository"] = self.repository
        if self.ref:
            data["ref"] = self.ref
        return data

    @classmethod
    def from_dict(cls, data) -> "UserInfo":
        if not isinstance(data, dict):
            raise InvalidUserInfo("user info must be a JSON object")
        sub = data.get("sub")
        if not isinstance(sub, str) or not sub:
            raise InvalidUserInfo("user info is missing 'sub'")
        provider = data.get("provider")
        if provider != ProviderType.GITHUB.value:
            raise InvalidUserInfo(f"unsupported provider: {provider!r}")
        return cls(
            sub=sub,
            email=data.get("email") or "",
            name=data.get("name") or "",
            provider=provider,
            repository=data.get("repository") or None,
            ref=data.get("ref") or None,
        )


@dataclass(frozen=True)
class OAuthState:
    repository: str
    redirect_uri: str
    shell: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"repository": self.repository, "redirect_uri": self.redirect_uri}
        if self.shell:
            data["shell"] = self.shell
        return data

    @classmethod
    def from_dict(cls, data) -> "OAuthState":
        if not isinstance(data, dict) or not data.get("repository") or not data.get("redirect_uri"):
            raise ValueError("malformed OAuth state")
        return cls(
            repository=data["repository"],
            redirect_uri=data["redirect_uri"],
            shell=data.get("shell") or None,
        )


# --- Caller identities attached to request.user by LFSTokenAuthentication ---

@dataclass(frozen=True)
class WorkloadIdentity:
    """A CI workload, proven by a verified GitHub Actions OIDC token."""
    sub: str
    repository: str
    ref: str
    actor: str
    claims: dict = field(default_factory=dict, compare=False, repr=False)

    is_authenticated = True
    is_anonymous = False

    @property
    def pk(self):
        return self.sub


@dataclass(frozen=True)
class UserIdentity:
    """A human user, proven by a server-side session created after GitHub OAuth."""
    user_info: UserInfo
    session_id: str = field(repr=False)

    is_authenticated = True
    is_anonymous = False

    @property
    def sub(self):
        return self.user_info.sub

    @property
    def pk(self):
        return self.user_info.sub
