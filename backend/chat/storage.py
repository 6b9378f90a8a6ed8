import logging
import math
import posixpath
import uuid
from urllib.parse import unquote, urlparse

from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError, ClientError, ConnectTimeoutError, EndpointConnectionError, ReadTimeoutError,
)
from django.conf import settings
from django.core.files.base import ContentFile
from storages.backends.s3 import S3Storage

from .exceptions import TransientFailure

logger = logging.getLogger(__name__)

MB = 1024 * 1024

NETWORK_ERRORS = (ConnectTimeoutError, ReadTimeoutError, EndpointConnectionError)


def upload_timeout(size):
    """Seconds allowed for transferring `size` bytes: 10s per MB, clamped to [60s, 20min]."""
    megabytes = max(1, math.ceil(size / MB))
    seconds = megabytes * settings.UPLOAD_TIMEOUT_PER_MB
    return max(settings.UPLOAD_TIMEOUT_MIN, min(settings.UPLOAD_TIMEOUT_MAX, seconds))


def s3_storage(timeout):
    return S3Storage(
        client_config=Config(
            connect_timeout=min(timeout, settings.UPLOAD_TIMEOUT_MIN),
            read_timeout=timeout,
            retries={'max_attempts': 1},
        ),
    )


class ObjectStore:
    """
    Upload / delete for attachment bytes in an S3-compatible bucket
    (DigitalOcean Spaces in production).

    Failures are never retried here: network, timeout and size-limit
    failures surface as retryable TransientFailure so the client can resubmit.
    """

    def __init__(self, storage_factory=None, enabled=None):
        self._storage_factory = storage_factory or s3_storage
        self._enabled = enabled

    @property
    def enabled(self):
        if self._enabled is not None:
            return self._enabled
        return settings.USE_SPACES

    def upload(self, content, folder, name, mime_type=None):
        extension = posixpath.splitext(name)[1].lower()
        key = posixpath.join(folder, f'{uuid.uuid4().hex}{extension}')
        timeout = upload_timeout(len(content))
        storage = self._storage_factory(timeout)

        file = ContentFile(content, name=name)
        if mime_type:
            file.content_type = mime_type
        try:
            saved_name = storage.save(key, file)
        except NETWORK_ERRORS as exc:
            logger.warning(f'Upload of {name} ({len(content)} bytes) timed out after {timeout}s: {exc}')
            raise TransientFailure(
                'Upload timed out. Please try again.', code='UPLOAD_TIMEOUT',
                details={'timeout': timeout},
            )
        except ClientError as exc:
            error = exc.response.get('Error', {})
            http_status = exc.response.get('ResponseMetadata', {}).get('HTTPStatusCode')
            if error.get('Code') == 'EntityTooLarge' or http_status == 413:
                logger.warning(f'Object store rejected {name}: too large ({len(content)} bytes)')
                raise TransientFailure(
                    'The file store rejected the file as too large.', code='UPLOAD_TOO_LARGE',
                    details={'size': len(content)},
                )
            logger.warning(f'Object store error uploading {name}: {error.get("Code")} {error.get("Message")}')
            raise TransientFailure('Upload failed. Please try again.', code='UPLOAD_ERROR')
        except BotoCoreError as exc:
            logger.warning(f'Object store error uploading {name}: {exc}')
            raise TransientFailure('Upload failed. Please try again.', code='UPLOAD_ERROR')

        url = storage.url(saved_name)
        logger.info(f'Uploaded {name} to {saved_name} ({len(content)} bytes)')
        return url

    def name_from_url(self, url, storage):
        path = unquote(urlparse(url).path)
        location = (getattr(storage, 'location', '') or '').strip('/')
        if location:
            marker = f'/{location}/'
            if marker not in path:
                return None
            return path.split(marker, 1)[1]
        bucket = getattr(storage, 'bucket_name', '') or ''
        path = path.lstrip('/')
        if bucket and path.startswith(f'{bucket}/'):
            path = path[len(bucket) + 1:]
        return path or None

    def delete(self, url):
        """Delete the object behind `url`. False if the URL is not one of ours."""
        storage = self._storage_factory(settings.UPLOAD_TIMEOUT_MIN)
        name = self.name_from_url(url, storage)
        if not name:
            logger.warning(f'Not deleting {url}: not inside the attachment bucket')
            return False
        try:
            storage.delete(name)
        except (ClientError, BotoCoreError) as exc:
            logger.warning(f'Object store error deleting {name}: {exc}')
            raise TransientFailure('Could not delete the file. Please retry.', code='DELETE_ERROR')
        logger.info(f'Deleted {name} from object store')
        return True
