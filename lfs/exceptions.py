# lfs/exceptions.py
import logging

from rest_framework import status
from rest_framework.exceptions import APIException, AuthenticationFailed, NotAuthenticated
from rest_framework.response import Response

logger = logging.getLogger(__name__)

LFS_AUTHENTICATE = 'Basic realm="Git LFS"'

UNAUTHENTICATED_MESSAGE = "認証が必要です"
INTERNAL_ERROR_MESSAGE = "サーバー内部エラーが発生しました"

# Validation messages used by the serializers as well as the exceptions below.
INVALID_OPERATION_MESSAGE = "不正なオペレーションです"
NO_OBJECTS_MESSAGE = "オブジェクトが指定されていません"
INVALID_OID_MESSAGE = "不正なOIDです"
INVALID_SIZE_MESSAGE = "不正なサイズです"
INVALID_HASH_ALGO_MESSAGE = "不正なハッシュアルゴリズムです"
BATCH_PARSE_MESSAGE = "リクエストボディのパースに失敗しました"
VERIFY_PARSE_MESSAGE = "リクエストボディの解析に失敗しました"
VERIFY_OID_REQUIRED_MESSAGE = "oidフィールドは必須です"
VERIFY_SIZE_MESSAGE = "sizeフィールドは正の整数である必要があります"
OBJECT_SIZE_CONFLICT_MESSAGE = "オブジェクトサイズが一致しません"
OBJECT_NOT_FOUND_ENTRY_MESSAGE = "object not found"


class LFSError(APIException):
    """Base for every error this service turns into an LFS `{"message": ...}` response."""


class InvalidAcceptHeader(LFSError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "accept ヘッダーは application/vnd.git-lfs+json である必要があります"
    default_code = 'invalid_accept'


class InvalidContentTypeHeader(LFSError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Content-Typeは application/vnd.git-lfs+json である必要があります"
    default_code = 'invalid_content_type'


class InvalidRepositoryPath(LFSError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "リポジトリ識別子の形式が不正です"
    default_code = 'invalid_repository'


class BatchValidationError(LFSError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = BATCH_PARSE_MESSAGE
    default_code = 'invalid_batch'


class RequestBodyTooLarge(LFSError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    default_detail = "リクエストボディが大きすぎます"
    default_code = 'body_too_large'


class VerifyValidationError(LFSError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = VERIFY_PARSE_MESSAGE
    default_code = 'invalid_verify'


class LFSAuthenticationFailed(AuthenticationFailed, LFSError):
    default_detail = "認証に失敗しました"


class RepositoryNotAllowed(LFSAuthenticationFailed):
    default_detail = "このリポジトリへのアクセスは許可されていません"
    default_code = 'repository_not_allowed'


class RepositoryMismatch(LFSAuthenticationFailed):
    default_detail = "トークンのリポジトリとリクエストのリポジトリが一致しません"
    default_code = 'repository_mismatch'


class ProxyURLExpired(LFSAuthenticationFailed):
    default_detail = "URLの有効期限が切れています"
    default_code = 'url_expired'


class ProxyURLInvalid(LFSAuthenticationFailed):
    default_detail = "URLの署名が不正です"
    default_code = 'url_invalid'


class AccessDenied(LFSError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "アクセスが拒否されました"
    default_code = 'access_denied'


class ObjectNotFound(LFSError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "オブジェクトが見つかりません"
    default_code = 'object_not_found'


class ProxyObjectNotFound(ObjectNotFound):
    default_detail = "オブジェクトが存在しません"


class ObjectNotUploaded(ObjectNotFound):
    default_detail = "オブジェクトがまだアップロードされていません"
    default_code = 'object_not_uploaded'


class SizeMismatchError(LFSError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "サイズが一致しません"
    default_code = 'size_mismatch'


class UploadContentMismatch(LFSError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "アップロードされた内容がOIDまたはサイズと一致しません"
    default_code = 'content_mismatch'


class LengthRequired(LFSError):
    status_code = status.HTTP_411_LENGTH_REQUIRED
    default_detail = "Content-Lengthヘッダーが必要です"
    default_code = 'length_required'


class StorageUnavailable(LFSError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = "ストレージサーバーでエラーが発生しました"
    default_code = 'storage_error'


class StorageTimeout(LFSError):
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    default_detail = "リクエストがタイムアウトしました"
    default_code = 'storage_timeout'


def first_error_message(detail) -> str:
    """Flattens DRF's nested error structures down to the first message."""
    if isinstance(detail, dict):
        values = detail.values()
    elif isinstance(detail, (list, tuple)):
        values = detail
    else:
        return str(detail)
    for value in values:
        message = first_error_message(value)
        if message:
            return message
    return ""


def lfs_error_response(exc: APIException, key: str = "message") -> Response:
    response = Response({key: first_error_message(exc.detail)}, status=exc.status_code)
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        response['LFS-Authenticate'] = LFS_AUTHENTICATE
    return response


def lfs_exception_handler(exc, context):
    """
    Renders every error as `{"message": ...}` (`{"error": ...}` under /auth/),
    adds LFS-Authenticate to 401s and hides unexpected errors behind a 500.
    """
    # Imported here: rest_framework.views loads the authentication classes, which import this module.
    from rest_framework import views as drf_views

    request = context.get('request')
    path = getattr(request, 'path', '') or ''
    key = "error" if path.startswith('/auth/') else "message"

    response = drf_views.exception_handler(exc, context)
    if response is None:
        logger.error(f"Unhandled error on {path}: {exc}", exc_info=exc)
        drf_views.set_rollback()
        return Response({key: INTERNAL_ERROR_MESSAGE}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if isinstance(exc, NotAuthenticated):
        message = UNAUTHENTICATED_MESSAGE
    else:
        message = first_error_message(response.data if not isinstance(exc, APIException) else exc.detail)
    response.data = {key: message}

    if response.status_code == status.HTTP_401_UNAUTHORIZED:
        response['LFS-Authenticate'] = LFS_AUTHENTICATE
    if response.status_code >= 500:
        logger.error(f"{response.status_code} on {path}: {message}")
    else:
        logger.warning(f"{response.status_code} on {path}: {message}")
    return response
