"""
Attachment validation and the two storage variants of an attachment.

A client sends an attachment as
    {"name": "report.pdf", "mime_type": "application/pdf", "size": 1234, "data": "<base64 or data: URL>"}

It is checked against ALLOWED_FILE_TYPES before anything is decoded,
uploaded or persisted. Once stored it is either a HostedAttachment (object
store URL) or an InlineAttachment (raw bytes kept in the database, used when
no object store is configured).
"""
import base64
import binascii
from collections import namedtuple
from dataclasses import dataclass

from django.conf import settings

from .exceptions import ValidationFailed

MB = 1024 * 1024

FileType = namedtuple('FileType', ['category', 'extension', 'max_size'])

ALLOWED_FILE_TYPES = {
    # Images
    'image/jpeg': FileType('image', 'jpg', 10 * MB),
    'image/png': FileType('image', 'png', 10 * MB),
    'image/gif': FileType('image', 'gif', 10 * MB),
    'image/webp': FileType('image', 'webp', 10 * MB),
    # Documents
    'application/pdf': FileType('document', 'pdf', 10 * MB),
    'application/msword': FileType('document', 'doc', 10 * MB),
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document': FileType('document', 'docx', 10 * MB),
    'application/vnd.ms-excel': FileType('document', 'xls', 10 * MB),
    'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet': FileType('document', 'xlsx', 10 * MB),
    'application/vnd.ms-powerpoint': FileType('document', 'ppt', 10 * MB),
    'application/vnd.openxmlformats-officedocument.presentationml.presentation': FileType('document', 'pptx', 10 * MB),
    'text/plain': FileType('document', 'txt', 5 * MB),
    # Archives
    'application/zip': FileType('archive', 'zip', 50 * MB),
    'application/x-rar-compressed': FileType('archive', 'rar', 50 * MB),
    'application/x-7z-compressed': FileType('archive', '7z', 50 * MB),
    # Video
    'video/mp4': FileType('video', 'mp4', 100 * MB),
    'video/mpeg': FileType('video', 'mpeg', 100 * MB),
    'video/quicktime': FileType('video', 'mov', 100 * MB),
    'video/x-msvideo': FileType('video', 'avi', 100 * MB),
    'video/webm': FileType('video', 'webm', 100 * MB),
    # Audio
    'audio/mpeg': FileType('audio', 'mp3', 20 * MB),
    'audio/wav': FileType('audio', 'wav', 20 * MB),
    'audio/ogg': FileType('audio', 'ogg', 20 * MB),
    'audio/webm': FileType('audio', 'webm', 20 * MB),
    'audio/x-m4a': FileType('audio', 'm4a', 20 * MB),
}


@dataclass(frozen=True)
class HostedAttachment:
    url: str
    name: str
    mime_type: str
    size: int
    category: str


@dataclass(frozen=True)
class InlineAttachment:
    data: bytes
    name: str
    mime_type: str
    size: int
    category: str


@dataclass(frozen=True)
class AttachmentUpload:
    """A validated, decoded attachment that has not been stored yet."""
    content: bytes
    name: str
    mime_type: str
    category: str

    @property
    def size(self):
        return len(self.content)


def get_file_info(mime_type):
    return ALLOWED_FILE_TYPES.get(mime_type)


def format_file_size(size):
    for unit in ('Bytes', 'KB', 'MB'):
        if size < 1024:
            return f'{round(size, 2)} {unit}'
        size /= 1024
    return f'{round(size, 2)} GB'


def validate_attachment(mime_type, size, inline_only=False):
    """Check type and size; returns the FileType entry or raises ValidationFailed."""
    info = get_file_info(mime_type)
    if info is None:
        raise ValidationFailed(
            f'File type {mime_type or "unknown"} is not allowed.',
            code='UNSUPPORTED_FILE_TYPE',
            details={'mime_type': mime_type},
        )
    limit = info.max_size
    if inline_only:
        limit = min(limit, settings.INLINE_ATTACHMENT_MAX_SIZE)
    if size > limit:
        raise ValidationFailed(
            f'File is too large ({format_file_size(size)}). '
            f'Maximum for {info.category} is {format_file_size(limit)}.',
            code='FILE_TOO_LARGE',
            details={'size': size, 'max_size': limit, 'category': info.category},
        )
    return info


def _split_data_url(data):
    # "data:image/png;base64,AAAA" -> ("image/png", "AAAA")
    if data.startswith('data:') and ',' in data:
        header, encoded = data.split(',', 1)
        return header[5:].split(';', 1)[0], encoded
    return None, data


def parse_attachment(payload, inline_only=False):
    """Validate and decode an attachment payload sent by a client."""
    if not isinstance(payload, dict):
        raise ValidationFailed('Attachment must be an object.', code='INVALID_ATTACHMENT')
    data = payload.get('data')
    if not isinstance(data, str) or not data:
        raise ValidationFailed('Attachment data is required.', code='INVALID_ATTACHMENT')

    url_mime_type, encoded = _split_data_url(data)
    mime_type = payload.get('mime_type') or url_mime_type or ''
    name = str(payload.get('name') or 'file')[:255]

    # Validate on the declared (or estimated) size before decoding anything
    estimated = len(encoded) * 3 // 4 - encoded[-2:].count('=')
    declared = payload.get('size')
    if isinstance(declared, int) and not isinstance(declared, bool) and declared > estimated:
        estimated = declared
    info = validate_attachment(mime_type, estimated, inline_only=inline_only)

    try:
        content = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationFailed('Attachment data is not valid base64.', code='INVALID_ATTACHMENT')
    validate_attachment(mime_type, len(content), inline_only=inline_only)

    return AttachmentUpload(content=content, name=name, mime_type=mime_type, category=info.category)


def store_attachment(upload, store):
    """Upload to the object store when configured, otherwise keep the bytes inline."""
    if store.enabled:
        url = store.upload(upload.content, folder=upload.category, name=upload.name, mime_type=upload.mime_type)
        return HostedAttachment(
            url=url, name=upload.name, mime_type=upload.mime_type,
            size=upload.size, category=upload.category,
        )
    return InlineAttachment(
        data=upload.content, name=upload.name, mime_type=upload.mime_type,
        size=upload.size, category=upload.category,
    )


PICTURE_INLINE_MAX_SIZE = 2 * MB


def store_picture(data, store, folder='pictures'):
    """
    Store a profile or group picture sent as a `data:image/...` URL.

    Returns the object store URL, or the data URL itself when no store is
    configured (capped at PICTURE_INLINE_MAX_SIZE).
    """
    mime_type = _split_data_url(data)[0] if isinstance(data, str) else None
    info = get_file_info(mime_type)
    if info is None or info.category != 'image':
        raise ValidationFailed(
            'Picture must be a data:image/ URL of a supported image type.',
            code='INVALID_PICTURE', details={'mime_type': mime_type},
        )
    upload = parse_attachment({'data': data, 'name': f'picture.{info.extension}'})
    if store.enabled:
        return store.upload(upload.content, folder=folder, name=upload.name, mime_type=upload.mime_type)

    if upload.size > PICTURE_INLINE_MAX_SIZE:
        raise ValidationFailed(
            f'Picture is too large ({format_file_size(upload.size)}). '
            f'Maximum is {format_file_size(PICTURE_INLINE_MAX_SIZE)}.',
            code='FILE_TOO_LARGE',
            details={'size': upload.size, 'max_size': PICTURE_INLINE_MAX_SIZE, 'category': 'image'},
        )
    return data


def attachment_to_dict(attachment):
    if isinstance(attachment, HostedAttachment):
        return {
            'kind': 'hosted',
            'url': attachment.url,
            'name': attachment.name,
            'mime_type': attachment.mime_type,
            'size': attachment.size,
            'category': attachment.category,
        }
    if isinstance(attachment, InlineAttachment):
        encoded = base64.b64encode(attachment.data).decode('ascii')
        return {
            'kind': 'inline',
            'url': f'data:{attachment.mime_type};base64,{encoded}',
            'name': attachment.name,
            'mime_type': attachment.mime_type,
            'size': attachment.size,
            'category': attachment.category,
        }
    return None
