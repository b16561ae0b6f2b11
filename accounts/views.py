# accounts/views.py
from django.http import HttpResponseRedirect
from rest_framework import permissions, status
from rest_framework.renderers import JSONRenderer
from rest_framework.response import Response
from rest_framework.views import APIView

from lfs_internals import cache_keys

from .services import (
    GitHubOAuthService,
    MissingCodeParameter,
    MissingStateParameter,
    OAuthFlowError,
    callback_redirect_uri,
    check_request_host,
    parse_repository_parameter,
)


def oauth_error_response(exc: OAuthFlowError) -> Response:
    return Response({"error": str(exc.detail)}, status=exc.status_code)


class OAuthAPIView(APIView):
    authentication_classes = []
    permission_classes = [permissions.AllowAny]
    renderer_classes = [JSONRenderer]


class GitHubLoginAPIView(OAuthAPIView):
    """GET /auth/github/login?repository=owner/name[&shell=bash|zsh|powershell]"""

    def get(self, request):
        repository = request.query_params.get('repository')
        try:
            check_request_host(request)
            parse_repository_parameter(repository)
            service = GitHubOAuthService()
            authorization_url = service.start(
                repository=repository,
                redirect_uri=callback_redirect_uri(request),
                shell=request.query_params.get('shell'),
            )
        except OAuthFlowError as e:
            return oauth_error_response(e)
        return HttpResponseRedirect(authorization_url)


class GitHubCallbackAPIView(OAuthAPIView):
    """GET /auth/github/callback?code=...&state=..."""

    def get(self, request):
        code = request.query_params.get('code')
        state = request.query_params.get('state')
        try:
            if not code:
                raise MissingCodeParameter()
            if not state:
                raise MissingStateParameter()
            service = GitHubOAuthService()
            result = service.complete(code=code, state=state)
        except OAuthFlowError as e:
            return oauth_error_response(e)

        return Response({
            "session_id": result.session_id,
            "token_type": "Bearer",
            "expires_in": int(cache_keys.SESSION_TTL.total_seconds()),
            "repository": result.repository,
            "shell": result.shell,
        }, status=status.HTTP_200_OK)
