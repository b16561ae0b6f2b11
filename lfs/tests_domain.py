from django.test import SimpleTestCase

from lfs.domain import (
    MAX_SIZE,
    HashAlgo,
    InvalidHashAlgorithm,
    InvalidOID,
    InvalidRepositoryIdentifier,
    InvalidSize,
    InvalidUserInfo,
    OAuthState,
    RepositoryIdentifier,
    ShellType,
    UserIdentity,
    UserInfo,
    WorkloadIdentity,
    storage_key_for,
    validate_oid,
    validate_size,
)
from lfs.models import LFSObject

OID = "0123456789abcdef" * 4


class ValidationTests(SimpleTestCase):

    def test_validate_oid(self):
        self.assertEqual(validate_oid(OID), OID)
        for bad in ("", OID[:-1], OID + "0", OID.upper(), "z" * 64, None, 12):
            with self.assertRaises(InvalidOID):
                validate_oid(bad)

    def test_validate_size(self):
        self.assertEqual(validate_size(0), 0)
        self.assertEqual(validate_size(MAX_SIZE), MAX_SIZE)
        for bad in (-1, MAX_SIZE + 1, 1.5, "1", True, None):
            with self.assertRaises(InvalidSize):
                validate_size(bad)

    def test_storage_key(self):
        self.assertEqual(storage_key_for(HashAlgo.SHA256, OID), f"objects/sha256/01/23/{OID}")
        with self.assertRaises(InvalidOID):
            storage_key_for(HashAlgo.SHA256, "nope")

    def test_hash_algo_parse(self):
        self.assertIs(HashAlgo.parse(None), HashAlgo.SHA256)
        self.assertIs(HashAlgo.parse(""), HashAlgo.SHA256)
        self.assertIs(HashAlgo.parse("sha256"), HashAlgo.SHA256)
        with self.assertRaises(InvalidHashAlgorithm):
            HashAlgo.parse("sha1")

    def test_shell_type_parse(self):
        self.assertIs(ShellType.parse("ZSH"), ShellType.ZSH)
        self.assertIs(ShellType.parse("powershell"), ShellType.POWERSHELL)
        self.assertIs(ShellType.parse(None), ShellType.BASH)
        self.assertIs(ShellType.parse("fish"), ShellType.BASH)


class RepositoryIdentifierTests(SimpleTestCase):

    def test_parse(self):
        repo = RepositoryIdentifier.parse("octo/repo")
        self.assertEqual((repo.owner, repo.name), ("octo", "repo"))
        self.assertEqual(repo.full_name, "octo/repo")
        self.assertEqual(str(repo), "octo/repo")

    def test_parse_rejects_malformed(self):
        for bad in ("", "octo", "octo/", "/repo", "a/b/c", None):
            with self.assertRaises(InvalidRepositoryIdentifier):
                RepositoryIdentifier.parse(bad)

    def test_matches_ignores_case(self):
        self.assertTrue(RepositoryIdentifier("Octo", "Repo").matches(RepositoryIdentifier("octo", "repo")))
        self.assertFalse(RepositoryIdentifier("octo", "repo").matches(RepositoryIdentifier("octo", "other")))


class UserInfoTests(SimpleTestCase):

    def test_round_trip(self):
        info = UserInfo(sub="42", email="", name="Mona", repository="octo/repo")
        self.assertEqual(UserInfo.from_dict(info.to_dict()), info)
        self.assertNotIn("ref", info.to_dict())

    def test_rejects_missing_sub(self):
        with self.assertRaises(InvalidUserInfo):
            UserInfo.from_dict({"provider": "github"})

    def test_rejects_other_providers(self):
        with self.assertRaises(InvalidUserInfo):
            UserInfo.from_dict({"sub": "1", "provider": "gitlab"})

    def test_rejects_non_objects(self):
        with self.assertRaises(InvalidUserInfo):
            UserInfo.from_dict(["sub"])

    def test_oauth_state(self):
        state = OAuthState(repository="octo/repo", redirect_uri="https://lfs.example.com/auth/github/callback")
        self.assertEqual(OAuthState.from_dict(state.to_dict()), state)
        with self.assertRaises(ValueError):
            OAuthState.from_dict({"repository": "octo/repo"})

    def test_identities_are_authenticated(self):
        workload = WorkloadIdentity(sub="repo:octo/repo", repository="octo/repo", ref="refs/heads/main", actor="mona")
        user = UserIdentity(user_info=UserInfo(sub="42"), session_id="secret-session")
        self.assertTrue(workload.is_authenticated)
        self.assertTrue(user.is_authenticated)
        self.assertEqual(user.pk, "42")
        self.assertNotIn("secret-session", repr(user))


class LFSObjectTests(SimpleTestCase):

    def test_new(self):
        obj = LFSObject.new(oid=OID, size=5)
        self.assertFalse(obj.uploaded)
        self.assertEqual(obj.hash_algo, "sha256")
        self.assertEqual(obj.storage_key, storage_key_for(HashAlgo.SHA256, OID))
        self.assertEqual(obj.created_at, obj.updated_at)

    def test_new_validates(self):
        with self.assertRaises(InvalidOID):
            LFSObject.new(oid="bad", size=1)
        with self.assertRaises(InvalidSize):
            LFSObject.new(oid=OID, size=-1)

    def test_mark_as_uploaded(self):
        obj = LFSObject.new(oid=OID, size=5)
        before = obj.updated_at
        obj.mark_as_uploaded()
        self.assertTrue(obj.uploaded)
        self.assertGreaterEqual(obj.updated_at, before)

    def test_cache_projection(self):
        obj = LFSObject.new(oid=OID, size=5)
        restored = LFSObject.from_cache(obj.to_cache())
        self.assertEqual(restored.oid, OID)
        self.assertEqual(restored.size, 5)
        self.assertEqual(restored.created_at, obj.created_at)
        self.assertFalse(restored._state.adding)

    def test_cache_projection_rejects_bad_flags(self):
        data = LFSObject.new(oid=OID, size=5).to_cache()
        data["uploaded"] = "yes"
        with self.assertRaises(ValueError):
            LFSObject.from_cache(data)
