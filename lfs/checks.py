# lfs/checks.py
from django.conf import settings
from django.core import checks


@checks.register(checks.Tags.security)
def check_oidc_configuration(app_configs, **kwargs):
    errors = []
    if getattr(settings, 'OIDC_GITHUB_ENABLED', False) and not getattr(settings, 'OIDC_GITHUB_AUDIENCE', ''):
        errors.append(checks.Error(
            "GitHub Actions OIDC is enabled but no audience is configured.",
            hint="Set OIDC_GITHUB_AUDIENCE, or disable OIDC with OIDC_GITHUB_ENABLED=false.",
            id="lfs.E001",
        ))
    return errors


@checks.register(checks.Tags.security)
def check_oauth_configuration(app_configs, **kwargs):
    errors = []
    if not getattr(settings, 'OAUTH_GITHUB_ENABLED', False):
        return errors
    missing = [
        name for name in ('GITHUB_OAUTH_CLIENT_ID', 'GITHUB_OAUTH_CLIENT_SECRET', 'OAUTH_GITHUB_ALLOWED_REDIRECT_URIS')
        if not getattr(settings, name, None)
    ]
    if missing:
        errors.append(checks.Error(
            "GitHub OAuth is enabled but incompletely configured: missing %s." % ", ".join(missing),
            hint="Set the listed environment variables, or disable OAuth with OAUTH_GITHUB_ENABLED=false.",
            id="lfs.E002",
        ))
    return errors
