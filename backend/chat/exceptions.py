import enum
import logging

from django.db import DatabaseError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    VALIDATION = 'validation'
    AUTHORIZATION = 'authorization'
    NOT_FOUND = 'not_found'
    TRANSIENT = 'transient'


class ChatError(Exception):
    """
    Base for every rejected chat operation.

    `kind` tells the client what to do next: fix the request (validation),
    give up (authorization), refresh local state (not_found) or resubmit
    the same payload (transient, the only retryable kind).
    """
    kind = ErrorKind.VALIDATION
    default_code = 'INVALID_REQUEST'

    def __init__(self, message, code=None, details=None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    @property
    def retryable(self):
        return self.kind is ErrorKind.TRANSIENT

    def to_dict(self):
        data = {
            'error': self.message,
            'code': self.code,
            'kind': self.kind.value,
            'retryable': self.retryable,
        }
        if self.details:
            data['details'] = self.details
        return data


class ValidationFailed(ChatError):
    kind = ErrorKind.VALIDATION
    default_code = 'INVALID_REQUEST'


class NotAuthorized(ChatError):
    kind = ErrorKind.AUTHORIZATION
    default_code = 'NOT_AUTHORIZED'


class NotFound(ChatError):
    kind = ErrorKind.NOT_FOUND
    default_code = 'NOT_FOUND'


class TransientFailure(ChatError):
    kind = ErrorKind.TRANSIENT
    default_code = 'TEMPORARILY_UNAVAILABLE'


def store_unavailable(exc):
    logger.warning(f'Durable store error: {exc}')
    return TransientFailure(
        'The message store is temporarily unavailable. Please retry.',
        code='STORE_UNAVAILABLE',
    )


HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.AUTHORIZATION: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.TRANSIENT: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def api_exception_handler(exc, context):
    """DRF exception handler: ChatError (and DatabaseError) -> kind-specific status."""
    if isinstance(exc, DatabaseError):
        exc = store_unavailable(exc)
    if isinstance(exc, ChatError):
        return Response(exc.to_dict(), status=HTTP_STATUS_BY_KIND[exc.kind])
    return exception_handler(exc, context)
