from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase, override_settings

from cargohold.test_utils import LFSTestCase
from lfs.checks import check_oauth_configuration, check_oidc_configuration
from lfs.models import RepositoryAllowlistEntry


class AllowlistCommandTests(LFSTestCase):

    def run_command(self, *args):
        out = StringIO()
        call_command('allowlist', *args, stdout=out)
        return out.getvalue()

    def test_add_list_remove(self):
        self.assertIn("Added octo/repo", self.run_command('add', 'octo/repo'))
        self.run_command('add', 'acme/assets')
        self.assertEqual(self.run_command('list').split(), ["acme/assets", "octo/repo"])

        self.assertIn("Removed octo/repo", self.run_command('remove', 'octo/repo'))
        self.assertIn("was not allowlisted", self.run_command('remove', 'octo/repo'))
        self.assertEqual(list(RepositoryAllowlistEntry.objects.values_list('repository', flat=True)), ["acme/assets"])

    def test_add_makes_repository_usable(self):
        self.run_command('add', 'octo/repo')
        r = self.batch("upload", [{"oid": "a" * 64, "size": 1}])
        self.assertEqual(r.status_code, 200)

    def test_repository_is_required(self):
        with self.assertRaises(CommandError):
            self.run_command('add')

    def test_malformed_repository(self):
        with self.assertRaises(CommandError):
            self.run_command('add', 'not-a-repo')


class SystemCheckTests(SimpleTestCase):

    def test_configured(self):
        self.assertEqual(check_oidc_configuration(None), [])
        self.assertEqual(check_oauth_configuration(None), [])

    @override_settings(OIDC_GITHUB_AUDIENCE='')
    def test_oidc_without_audience(self):
        self.assertEqual([e.id for e in check_oidc_configuration(None)], ["lfs.E001"])

    @override_settings(OIDC_GITHUB_ENABLED=False, OIDC_GITHUB_AUDIENCE='')
    def test_oidc_disabled(self):
        self.assertEqual(check_oidc_configuration(None), [])

    @override_settings(GITHUB_OAUTH_CLIENT_SECRET='')
    def test_oauth_without_secret(self):
        errors = check_oauth_configuration(None)
        self.assertEqual([e.id for e in errors], ["lfs.E002"])
        self.assertIn("GITHUB_OAUTH_CLIENT_SECRET", errors[0].msg)
