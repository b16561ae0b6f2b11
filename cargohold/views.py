# cargohold/views.py
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes, renderer_classes
from rest_framework.permissions import AllowAny
from rest_framework.renderers import JSONRenderer
from rest_framework.response import Response

from .health import ReadinessService


@api_view(['GET'])
@authentication_classes([])
@permission_classes([AllowAny])
@renderer_classes([JSONRenderer])
def healthz(request):
    return Response({"status": "healthy"})


@api_view(['GET'])
@authentication_classes([])
@permission_classes([AllowAny])
@renderer_classes([JSONRenderer])
def readyz(request):
    results = ReadinessService().run()
    ready = all(result.healthy for result in results)
    return Response(
        {
            "status": "ready" if ready else "not ready",
            "details": [result.to_dict() for result in results],
        },
        status=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
    )
