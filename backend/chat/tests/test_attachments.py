import base64
from unittest.mock import MagicMock

from django.test import SimpleTestCase, override_settings

from chat.attachments import (
    ALLOWED_FILE_TYPES, HostedAttachment, InlineAttachment, MB,
    PICTURE_INLINE_MAX_SIZE, attachment_to_dict, format_file_size, parse_attachment, store_picture,
    validate_attachment,
)
from chat.exceptions import ValidationFailed


class ValidateAttachmentTests(SimpleTestCase):

    def test_category_limits(self):
        expected = {
            'image/png': ('image', 10 * MB),
            'application/pdf': ('document', 10 * MB),
            'text/plain': ('document', 5 * MB),
            'application/zip': ('archive', 50 * MB),
            'video/mp4': ('video', 100 * MB),
            'audio/mpeg': ('audio', 20 * MB),
        }
        for mime_type, (category, limit) in expected.items():
            info = ALLOWED_FILE_TYPES[mime_type]
            self.assertEqual((info.category, info.max_size), (category, limit), mime_type)

    def test_exact_limit_is_accepted(self):
        info = validate_attachment('audio/mpeg', 20 * MB)
        self.assertEqual(info.category, 'audio')

    def test_one_byte_over_limit(self):
        with self.assertRaises(ValidationFailed) as ctx:
            validate_attachment('audio/mpeg', 20 * MB + 1)
        self.assertEqual(ctx.exception.code, 'FILE_TOO_LARGE')
        self.assertEqual(ctx.exception.details['max_size'], 20 * MB)

    def test_unknown_type(self):
        with self.assertRaises(ValidationFailed) as ctx:
            validate_attachment('application/x-msdownload', 10)
        self.assertEqual(ctx.exception.code, 'UNSUPPORTED_FILE_TYPE')

    @override_settings(INLINE_ATTACHMENT_MAX_SIZE=1 * MB)
    def test_inline_only_caps_size(self):
        validate_attachment('video/mp4', 2 * MB)
        with self.assertRaises(ValidationFailed):
            validate_attachment('video/mp4', 2 * MB, inline_only=True)

    def test_format_file_size(self):
        self.assertEqual(format_file_size(512), '512 Bytes')
        self.assertEqual(format_file_size(1536), '1.5 KB')
        self.assertEqual(format_file_size(10 * MB), '10.0 MB')


class ParseAttachmentTests(SimpleTestCase):

    def test_plain_base64(self):
        upload = parse_attachment({'name': 'a.txt', 'mime_type': 'text/plain', 'data': base64.b64encode(b'hello').decode()})
        self.assertEqual(upload.content, b'hello')
        self.assertEqual(upload.size, 5)
        self.assertEqual(upload.category, 'document')

    def test_data_url_supplies_mime_type(self):
        data = 'data:image/png;base64,' + base64.b64encode(b'\x89PNG').decode()
        upload = parse_attachment({'name': 'p.png', 'data': data})
        self.assertEqual(upload.mime_type, 'image/png')
        self.assertEqual(upload.content, b'\x89PNG')

    def test_declared_size_checked_before_decoding(self):
        payload = {'name': 'big.png', 'mime_type': 'image/png', 'size': 11 * MB, 'data': '!!not base64!!'}
        with self.assertRaises(ValidationFailed) as ctx:
            parse_attachment(payload)
        self.assertEqual(ctx.exception.code, 'FILE_TOO_LARGE')

    def test_invalid_base64(self):
        with self.assertRaises(ValidationFailed) as ctx:
            parse_attachment({'name': 'a.txt', 'mime_type': 'text/plain', 'data': '!!not base64!!'})
        self.assertEqual(ctx.exception.code, 'INVALID_ATTACHMENT')

    def test_missing_data(self):
        for payload in ('nope', {'name': 'a.txt'}, {'name': 'a.txt', 'data': ''}):
            with self.assertRaises(ValidationFailed):
                parse_attachment(payload)


class AttachmentToDictTests(SimpleTestCase):

    def test_hosted(self):
        attachment = HostedAttachment(url='https://cdn/x.pdf', name='x.pdf', mime_type='application/pdf', size=3, category='document')
        self.assertEqual(attachment_to_dict(attachment)['kind'], 'hosted')
        self.assertEqual(attachment_to_dict(attachment)['url'], 'https://cdn/x.pdf')

    def test_inline_becomes_data_url(self):
        attachment = InlineAttachment(data=b'hi', name='a.txt', mime_type='text/plain', size=2, category='document')
        data = attachment_to_dict(attachment)
        self.assertEqual(data['kind'], 'inline')
        self.assertEqual(data['url'], 'data:text/plain;base64,aGk=')

    def test_none(self):
        self.assertIsNone(attachment_to_dict(None))


def data_url(mime_type, size):
    return f'data:{mime_type};base64,' + base64.b64encode(b'\x00' * size).decode()


class StorePictureTests(SimpleTestCase):

    def test_inline_without_object_store(self):
        picture = data_url('image/png', 100)
        store = MagicMock(enabled=False)
        self.assertEqual(store_picture(picture, store), picture)
        store.upload.assert_not_called()

    def test_inline_picture_capped(self):
        with self.assertRaises(ValidationFailed) as ctx:
            store_picture(data_url('image/jpeg', PICTURE_INLINE_MAX_SIZE + 1), MagicMock(enabled=False))
        self.assertEqual(ctx.exception.code, 'FILE_TOO_LARGE')

    def test_uploaded_when_object_store_configured(self):
        store = MagicMock(enabled=True)
        store.upload.return_value = 'https://bucket.example.com/chatify/profile-pics/a.png'
        url = store_picture(data_url('image/png', 100), store, folder='profile-pics')
        self.assertEqual(url, 'https://bucket.example.com/chatify/profile-pics/a.png')
        args, kwargs = store.upload.call_args
        self.assertEqual(len(args[0]), 100)
        self.assertEqual(kwargs['folder'], 'profile-pics')
        self.assertEqual(kwargs['mime_type'], 'image/png')

    def test_only_images(self):
        store = MagicMock(enabled=True)
        for picture in (data_url('application/pdf', 10), 'https://example.com/a.png', '', None):
            with self.assertRaises(ValidationFailed) as ctx:
                store_picture(picture, store)
            self.assertEqual(ctx.exception.code, 'INVALID_PICTURE')
        store.upload.assert_not_called()
