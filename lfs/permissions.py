import logging

from rest_framework import permissions

from .domain import InvalidRepositoryIdentifier, RepositoryIdentifier, UserIdentity, WorkloadIdentity
from .exceptions import InvalidRepositoryPath, RepositoryMismatch, RepositoryNotAllowed
from .repository import CachingRepositoryAllowlist

logger = logging.getLogger(__name__)


def repository_from_view(view) -> RepositoryIdentifier:
    try:
        return RepositoryIdentifier(view.kwargs.get('owner', ''), view.kwargs.get('name', ''))
    except InvalidRepositoryIdentifier:
        raise InvalidRepositoryPath()


class HasRepositoryAccess(permissions.BasePermission):
    """
    The URL repository must be allowlisted, and a credential that is scoped to
    a repository must be scoped to this one. Failures are 401: the caller has
    not proven access to a repository this server serves.
    """

    def has_permission(self, request, view):
        identity = request.user
        if not (identity and identity.is_authenticated):
            return False

        repository = repository_from_view(view)
        if not CachingRepositoryAllowlist().is_allowed(repository):
            logger.warning(f"Rejected request for non-allowlisted repository {repository}")
            raise RepositoryNotAllowed()

        if isinstance(identity, WorkloadIdentity):
            scope = identity.repository
        elif isinstance(identity, UserIdentity):
            # Sessions are bound to the repository checked during OAuth login, if any.
            scope = identity.user_info.repository
        else:
            scope = None

        if scope is not None and not self._scope_matches(scope, repository):
            logger.warning(f"Credential scoped to {scope} used against {repository}")
            raise RepositoryMismatch()
        return True

    @staticmethod
    def _scope_matches(scope, repository):
        try:
            return RepositoryIdentifier.parse(scope).matches(repository)
        except InvalidRepositoryIdentifier:
            return False
