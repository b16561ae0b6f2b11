# lfs/views.py
from io import BytesIO

from django.conf import settings
from django.http import StreamingHttpResponse
from rest_framework import permissions, status
from rest_framework.exceptions import ParseError
from rest_framework.response import Response
from rest_framework.views import APIView

from .action_urls import DOWNLOAD, UPLOAD, ProxyActionURLs, validate_signature
from .custom_auth import LFSTokenAuthentication
from .domain import HashAlgo, InvalidOID, validate_oid
from .exceptions import (
    BatchValidationError,
    InvalidAcceptHeader,
    InvalidContentTypeHeader,
    LengthRequired,
    LFSError,
    ProxyObjectNotFound,
    RequestBodyTooLarge,
    VerifyValidationError,
    first_error_message,
    lfs_error_response,
)
from .permissions import HasRepositoryAccess, repository_from_view
from .renderers import LFS_MEDIA_TYPE, IgnoreClientContentNegotiation, LFSJSONParser, LFSJSONRenderer
from .serializers import BatchRequestSerializer, VerifyRequestSerializer
from .services import BatchService, ProxyTransferService, VerifyService


def _media_type(value: str) -> str:
    return value.split(';', 1)[0].strip().lower()


def validate_lfs_headers(request):
    if _media_type(request.META.get('HTTP_ACCEPT', '')) != LFS_MEDIA_TYPE:
        raise InvalidAcceptHeader()
    if _media_type(request.META.get('CONTENT_TYPE', '')) != LFS_MEDIA_TYPE:
        raise InvalidContentTypeHeader()


def get_base_url(request) -> str:
    return settings.LFS_PUBLIC_BASE_URL or request.build_absolute_uri('/')


def get_content_length(request):
    value = request.META.get('CONTENT_LENGTH')
    if value in (None, ''):
        return None
    try:
        length = int(value)
    except ValueError:
        return None
    return length if length >= 0 else None


class LFSAPIView(APIView):
    """Common wiring for every endpoint under /<owner>/<name>/info/lfs/."""
    authentication_classes = [LFSTokenAuthentication]
    permission_classes = [permissions.IsAuthenticated, HasRepositoryAccess]
    renderer_classes = [LFSJSONRenderer]
    parser_classes = [LFSJSONParser]
    enforce_lfs_media_types = True

    def initial(self, request, *args, **kwargs):
        # Header checks come before authentication, so a wrong client gets a 400, not a 401.
        if self.enforce_lfs_media_types:
            validate_lfs_headers(request)
        super().initial(request, *args, **kwargs)

    def get_repository(self):
        return repository_from_view(self)


class BatchAPIView(LFSAPIView):

    def post(self, request, owner, name):
        content_length = get_content_length(request)
        if content_length is not None and content_length > settings.LFS_MAX_BATCH_BODY_SIZE:
            return lfs_error_response(RequestBodyTooLarge())

        try:
            payload = request.data
        except ParseError:
            return lfs_error_response(BatchValidationError())
        if payload is None:
            return lfs_error_response(BatchValidationError())

        serializer = BatchRequestSerializer(data=payload)
        if not serializer.is_valid():
            return lfs_error_response(BatchValidationError(first_error_message(serializer.errors)))
        data = serializer.validated_data

        service = BatchService()
        try:
            result = service.process_batch(
                repository=self.get_repository(),
                operation=data['operation'],
                objects=data['objects'],
                hash_algo=data.get('hash_algo') or HashAlgo.SHA256,
                urls=ProxyActionURLs(get_base_url(request)),
                authorization=request.META.get('HTTP_AUTHORIZATION'),
            )
        except LFSError as e:
            return lfs_error_response(e)
        return Response(result, status=status.HTTP_200_OK)


class VerifyAPIView(LFSAPIView):

    def post(self, request, owner, name):
        try:
            payload = request.data
        except ParseError:
            return lfs_error_response(VerifyValidationError())
        if payload is None:
            return lfs_error_response(VerifyValidationError())

        serializer = VerifyRequestSerializer(data=payload)
        if not serializer.is_valid():
            return lfs_error_response(VerifyValidationError(first_error_message(serializer.errors)))

        service = VerifyService()
        try:
            service.verify(oid=serializer.validated_data['oid'], size=serializer.validated_data['size'])
        except LFSError as e:
            return lfs_error_response(e)
        return Response(status=status.HTTP_200_OK)


class ProxyTransferAPIView(LFSAPIView):
    """
    The URLs handed out in Batch responses. Bytes flow through this view in
    both directions; the object store itself is never exposed to clients.
    """
    enforce_lfs_media_types = False
    parser_classes = []
    content_negotiation_class = IgnoreClientContentNegotiation

    def check_proxy_url(self, request, operation, oid):
        try:
            validate_oid(oid)
        except InvalidOID:
            raise ProxyObjectNotFound()
        validate_signature(
            operation,
            self.get_repository(),
            oid,
            request.query_params.get('expires'),
            request.query_params.get('signature'),
        )

    def put(self, request, owner, name, oid):
        service = ProxyTransferService()
        try:
            self.check_proxy_url(request, UPLOAD, oid)
            content_length = get_content_length(request)
            if content_length is None:
                raise LengthRequired()
            service.upload(
                repository=self.get_repository(),
                oid=oid,
                stream=request.stream or BytesIO(b""),
                content_length=content_length,
            )
        except LFSError as e:
            return lfs_error_response(e)
        return Response(status=status.HTTP_200_OK)

    def get(self, request, owner, name, oid):
        service = ProxyTransferService()
        try:
            self.check_proxy_url(request, DOWNLOAD, oid)
            chunks, size = service.download(repository=self.get_repository(), oid=oid)
        except LFSError as e:
            return lfs_error_response(e)

        response = StreamingHttpResponse(chunks, content_type='application/octet-stream')
        response['Content-Length'] = str(size)
        return response
