import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.db import DatabaseError
from django.utils import timezone
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import AccessToken

from calls.consumers import CallSignalingMixin
from . import read_cursor
from .exceptions import ChatError, ValidationFailed, store_unavailable
from .realtime import get_realtime
from .services import GroupService, MessageService

logger = logging.getLogger(__name__)


class ChatConsumer(CallSignalingMixin, AsyncJsonWebsocketConsumer):
    """
    The one realtime socket of a client: chat, presence, typing and calls.

    Connection: ws://host/ws/chat/?token=<jwt_access_token>

    Client sends (every payload may carry a "request_id" echoed in the ack):
        {"action": "send-direct-message", "receiver_id": 2, "text": "hi", "attachment": {...}, "reply_to": "uuid"}
        {"action": "send-group-message", "group_id": "uuid", "text": "hi", ...}
        {"action": "delete-message", "message_id": "uuid", "for_everyone": true}
        {"action": "react" | "unreact", "message_id": "uuid", "emoji": "👍"}
        {"action": "pin-toggle" | "star-toggle", "message_id": "uuid"}
        {"action": "mark-read", "peer_id": 2} or {"action": "mark-read", "group_id": "uuid"}
        {"action": "typing-start" | "typing-stop", "peer_id": 2} or {..., "group_id": "uuid"}
        plus the call actions of CallSignalingMixin

    Server sends {"type": <event>, ...}:
        presence-update, new-direct-message, new-group-message, message-deleted,
        message-reaction-changed, message-pinned, peer-typing, peer-stopped-typing,
        new-group, added-to-group, group-updated, removed-from-group,
        the call events, "ack" for accepted actions and "error" for rejected ones.
    """
    realtime = None

    def __init__(self, *args, realtime=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.realtime = realtime or get_realtime()
        self.message_service = MessageService()
        self.group_service = GroupService()
        self.user = None
        self.profile = None

    async def connect(self):
        """Authenticate, then take over the user's presence entry"""
        self.user, self.profile = await self._authenticate()
        if not self.user:
            await self.close(code=4001)
            return

        await self.accept()
        await self.realtime.registry.register(self.user.id, self.channel_name)
        await self._touch_last_seen()
        logger.info(f'WebSocket connected: {self.user.email}')

    async def disconnect(self, close_code):
        if not self.user:
            return
        removed = await self.realtime.registry.unregister(self.user.id, self.channel_name)
        if removed:
            await self.end_calls_on_disconnect()
            await self._touch_last_seen()
        logger.info(f'WebSocket disconnected: {self.user.email} (code {close_code})')

    def handlers(self):
        return {
            'send-direct-message': self._handle_send_direct,
            'send-group-message': self._handle_send_group,
            'delete-message': self._handle_delete,
            'react': self._handle_react,
            'unreact': self._handle_unreact,
            'pin-toggle': self._handle_pin_toggle,
            'star-toggle': self._handle_star_toggle,
            'mark-read': self._handle_mark_read,
            'typing-start': self._handle_typing_start,
            'typing-stop': self._handle_typing_stop,
            **self.call_handlers(),
        }

    async def receive(self, text_data=None, bytes_data=None, **kwargs):
        """Decode the frame; a malformed one is answered with an error and the socket stays open"""
        if text_data is None:
            await self._send_error(None, ValidationFailed('Expected a JSON text frame.', code='INVALID_PAYLOAD'), None)
            return
        try:
            content = await self.decode_json(text_data)
        except ValueError:
            await self._send_error(None, ValidationFailed('Malformed JSON.', code='INVALID_PAYLOAD'), text_data)
            return
        await self.receive_json(content, **kwargs)

    async def receive_json(self, content, **kwargs):
        """Route incoming actions; failures go back to this socket only"""
        if not isinstance(content, dict):
            await self._send_error(None, ValidationFailed('Expected a JSON object.', code='INVALID_PAYLOAD'), content)
            return

        action = content.get('action')
        if not isinstance(action, str):
            await self._send_error(None, ValidationFailed('action must be a string.', code='INVALID_PAYLOAD'), content)
            return
        handler = self.handlers().get(action)
        if handler is None:
            await self._send_error(action, ValidationFailed(f'Unknown action: {action}', code='UNKNOWN_ACTION'), content)
            return

        try:
            await handler(content)
        except ChatError as exc:
            await self._send_error(action, exc, content)
        except DatabaseError as exc:
            await self._send_error(action, store_unavailable(exc), content)
        except Exception:
            logger.exception(f'Error handling {action} from {self.user.email}')
            await self.send_json({
                'type': 'error',
                'action': action,
                'error': 'Internal server error.',
                'code': 'INTERNAL_ERROR',
                'kind': 'internal',
                'retryable': False,
                'request': content,
            })

    # ── MESSAGE HANDLERS ──

    async def _handle_send_direct(self, data):
        data = {**data, 'receiver_id': self._int_or_none(data.get('receiver_id'))}
        result = await database_sync_to_async(self.message_service.send_direct)(self.user, data)
        # Persisted; push is best effort from here on
        await self.realtime.fanout.deliver_direct(result.message, result.recipient_ids[0])
        await self._ack(data, message=result.message)

    async def _handle_send_group(self, data):
        result = await database_sync_to_async(self.message_service.send_group)(self.user, data)
        await self.realtime.fanout.deliver_to_group(result.message, result.recipient_ids, exclude_id=self.user.id)
        await self._ack(data, message=result.message)

    async def _handle_delete(self, data):
        for_everyone = data.get('for_everyone', True) is not False
        delta = await database_sync_to_async(self.message_service.delete)(
            self.user, data.get('message_id'), for_everyone=for_everyone,
        )
        await self._push_delta(delta)
        await self._ack(data, **delta.payload)

    async def _handle_react(self, data):
        delta = await database_sync_to_async(self.message_service.react)(
            self.user, data.get('message_id'), data.get('emoji'),
        )
        await self._push_delta(delta)
        await self._ack(data, **delta.payload)

    async def _handle_unreact(self, data):
        delta = await database_sync_to_async(self.message_service.react)(
            self.user, data.get('message_id'), data.get('emoji'), remove=True,
        )
        await self._push_delta(delta)
        await self._ack(data, **delta.payload)

    async def _handle_pin_toggle(self, data):
        delta = await database_sync_to_async(self.message_service.toggle_pin)(self.user, data.get('message_id'))
        await self._push_delta(delta)
        await self._ack(data, **delta.payload)

    async def _handle_star_toggle(self, data):
        delta = await database_sync_to_async(self.message_service.toggle_star)(self.user, data.get('message_id'))
        await self._ack(data, **delta.payload)

    async def _handle_mark_read(self, data):
        cursor = await database_sync_to_async(read_cursor.mark_read)(
            self.user,
            peer_id=self._int_or_none(data.get('peer_id')),
            group_id=data.get('group_id'),
        )
        await self._ack(
            data,
            peer_id=cursor.peer_id,
            group_id=str(cursor.group_id) if cursor.group_id else None,
            last_read_at=cursor.last_read_at.isoformat(),
        )

    async def _handle_typing_start(self, data):
        peer_id, group_id = self._typing_target(data)
        await self.realtime.typing.typing(
            self.user.id, peer_id=peer_id, group_id=group_id, sender_handle=self.channel_name,
        )

    async def _handle_typing_stop(self, data):
        peer_id, group_id = self._typing_target(data)
        await self.realtime.typing.stop_typing(
            self.user.id, peer_id=peer_id, group_id=group_id, sender_handle=self.channel_name,
        )

    # ── OUTBOUND ──

    async def chat_push(self, event):
        """Channel layer -> client"""
        await self.send_json({'type': event['event'], **event['payload']})

    async def _push_delta(self, delta):
        if delta.event:
            await self.realtime.fanout.deliver_delta(
                delta.event, delta.payload, delta.recipient_ids, exclude_id=self.user.id,
            )

    async def _ack(self, data, **extra):
        await self.send_json({
            'type': 'ack',
            'action': data.get('action'),
            'request_id': data.get('request_id'),
            **extra,
        })

    async def _send_error(self, action, exc, request):
        await self.send_json({
            'type': 'error',
            'action': action,
            **exc.to_dict(),
            'request': request,
        })

    # ── HELPERS ──

    @staticmethod
    def _int_or_none(value):
        if value is None or value == '':
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationFailed(f'Invalid user id: {value!r}', code='INVALID_ID')

    def _typing_target(self, data):
        peer_id = self._int_or_none(data.get('peer_id'))
        group_id = data.get('group_id')
        if (peer_id is None) == (group_id is None):
            raise ValidationFailed('Exactly one of peer_id or group_id is required.', code='COUNTERPART_REQUIRED')
        return peer_id, group_id

    # ── DATABASE OPERATIONS ──

    @database_sync_to_async
    def _authenticate(self):
        """Session user from the auth middleware, else JWT from the query string"""
        from accounts.models import User
        from accounts.serializers import UserPublicSerializer

        user = self.scope.get('user')
        if not (user and user.is_authenticated):
            user = None
            params = parse_qs(self.scope.get('query_string', b'').decode())
            token_str = (params.get('token') or [''])[0]
            if not token_str:
                return None, None
            try:
                token = AccessToken(token_str)
                user = User.objects.get(id=token['user_id'], is_active=True)
            except (TokenError, User.DoesNotExist, KeyError) as e:
                logger.warning(f'WebSocket auth failed: {e}')
                return None, None
        return user, dict(UserPublicSerializer(user).data)

    @database_sync_to_async
    def _touch_last_seen(self):
        from accounts.models import User
        User.objects.filter(id=self.user.id).update(last_seen=timezone.now())
