"""
Durable side of every chat operation.

Each method validates, authorizes and writes to the database, then returns
what the realtime side needs to push (payload + the recipient ids computed
from the store right now). Nothing here talks to sockets, so a failed write
never results in a push.
"""
import logging
from collections import namedtuple

from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction
from django.db.models import Q
from django.utils import timezone

from accounts.models import User
from . import read_cursor
from .attachments import HostedAttachment, parse_attachment, store_attachment, store_picture
from .exceptions import NotAuthorized, NotFound, ValidationFailed
from .models import Group, Message, MessageReaction
from .serializers import GroupSerializer, MessageSerializer, serialize_group, serialize_message
from .storage import ObjectStore

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 2000
MAX_EMOJI_LENGTH = 32
CALL_TYPES = {'audio', 'video'}
CALL_STATUSES = {'answered', 'missed', 'rejected'}

# message: serialized message; recipient_ids: who should get the push
SendResult = namedtuple('SendResult', ['message', 'recipient_ids'])
# event is None when nothing should be pushed (e.g. delete-for-me)
Delta = namedtuple('Delta', ['event', 'payload', 'recipient_ids'])
# notifications: [(event, payload, user_ids), ...]
GroupChange = namedtuple('GroupChange', ['group', 'notifications'])


def hydrated_messages():
    return (
        Message.objects
        .select_related('sender', 'reply_to__sender')
        .prefetch_related('reactions')
    )


def visible_messages(user):
    """Messages minus the ones `user` deleted for themselves."""
    return hydrated_messages().exclude(sender=user, deleted_for_sender=True)


def _get_user(user_id):
    try:
        return User.objects.get(id=user_id, is_active=True)
    except (User.DoesNotExist, ValueError, TypeError):
        raise NotFound('User not found.', code='USER_NOT_FOUND', details={'user_id': user_id})


def _get_group(group_id):
    try:
        return Group.objects.select_related('admin').get(id=group_id)
    except (Group.DoesNotExist, ValidationError, ValueError):
        raise NotFound('Group not found.', code='GROUP_NOT_FOUND', details={'group_id': str(group_id)})


def _get_message(message_id):
    try:
        return Message.objects.select_related('group').get(id=message_id)
    except (Message.DoesNotExist, ValidationError, ValueError):
        raise NotFound('Message not found.', code='MESSAGE_NOT_FOUND', details={'message_id': str(message_id)})


def _check_single_target(data):
    if data.get('receiver_id') is not None and data.get('group_id') is not None:
        raise ValidationFailed(
            'A message targets either a user or a group, not both.', code='RECEIVER_GROUP_EXCLUSIVE',
        )


class MessageService:

    def __init__(self, store=None):
        self.store = store or ObjectStore()

    # ── LOOKUPS ──

    def get_for_participant(self, user, message_id):
        """The message if `user` may act on it; hidden-for-sender reads as not found."""
        message = _get_message(message_id)
        if message.sender_id == user.id:
            if message.deleted_for_sender:
                raise NotFound('Message not found.', code='MESSAGE_NOT_FOUND', details={'message_id': str(message_id)})
            return message
        if message.group_id:
            if not message.group.is_member(user):
                raise NotAuthorized('You are not a member of this group.', code='NOT_A_MEMBER')
        elif message.receiver_id != user.id:
            raise NotAuthorized('You are not part of this conversation.', code='NOT_A_PARTICIPANT')
        return message

    def fetch(self, user, message_id):
        message = self.get_for_participant(user, message_id)
        return serialize_message(hydrated_messages().get(id=message.id))

    # ── SEND ──

    def _prepare(self, sender, data, conversation):
        """
        Validate everything and upload the attachment.
        `conversation` is a Q selecting messages of the target conversation.
        """
        text = data.get('text') or ''
        if not isinstance(text, str):
            raise ValidationFailed('Text must be a string.', code='INVALID_TEXT')
        text = text.strip()
        if len(text) > MAX_TEXT_LENGTH:
            raise ValidationFailed(
                f'Message text is limited to {MAX_TEXT_LENGTH} characters.', code='TEXT_TOO_LONG',
            )

        fields = {'text': text}

        reply_to_id = data.get('reply_to')
        if reply_to_id:
            try:
                fields['reply_to'] = Message.objects.filter(conversation).get(id=reply_to_id)
            except (Message.DoesNotExist, ValidationError, ValueError):
                raise NotFound('The message you replied to no longer exists.', code='REPLY_TARGET_NOT_FOUND')

        call = data.get('call')
        if call is not None:
            fields.update(self._call_record(call))

        # Validated before any upload
        upload = None
        if data.get('attachment'):
            upload = parse_attachment(data['attachment'], inline_only=not self.store.enabled)

        forward_from_id = data.get('forward_from')
        if forward_from_id:
            source = self.get_for_participant(sender, forward_from_id)
            if source.is_deleted:
                raise ValidationFailed('Deleted messages cannot be forwarded.', code='MESSAGE_DELETED')
            fields['forward_from'] = source
            fields['text'] = fields['text'] or source.text
            if upload is None and source.has_attachment:
                fields['attachment'] = source.attachment

        if not fields['text'] and upload is None and 'attachment' not in fields and 'call_type' not in fields:
            raise ValidationFailed('Message is empty.', code='EMPTY_MESSAGE')

        if upload is not None:
            fields['attachment'] = store_attachment(upload, self.store)
        return fields, upload is not None

    def _call_record(self, call):
        if not isinstance(call, dict):
            raise ValidationFailed('Call record must be an object.', code='INVALID_CALL_RECORD')
        call_type = call.get('call_type')
        status = call.get('status')
        duration = call.get('duration', 0)
        if call_type not in CALL_TYPES or status not in CALL_STATUSES:
            raise ValidationFailed(
                'Call record needs call_type audio|video and status answered|missed|rejected.',
                code='INVALID_CALL_RECORD',
            )
        if not isinstance(duration, (int, float)) or isinstance(duration, bool) or duration < 0:
            raise ValidationFailed('Call duration must be a positive number of seconds.', code='INVALID_CALL_RECORD')
        return {'call_type': call_type, 'call_status': status, 'call_duration': int(round(duration))}

    def _create(self, fields, uploaded, **target):
        attachment = fields.pop('attachment', None)
        message = Message(**fields, **target)
        message.attachment = attachment
        try:
            with transaction.atomic():
                message.save()
        except DatabaseError:
            # Nothing references a freshly uploaded object if the row never landed
            if isinstance(attachment, HostedAttachment) and uploaded:
                from .tasks import purge_hosted_attachment
                purge_hosted_attachment.delay(attachment.url)
            raise
        return hydrated_messages().get(id=message.id)

    def send_direct(self, sender, data):
        _check_single_target(data)
        receiver_id = data.get('receiver_id')
        if receiver_id is None:
            raise ValidationFailed('receiver_id is required.', code='RECEIVER_REQUIRED')
        receiver = _get_user(receiver_id)
        if receiver.id == sender.id:
            raise ValidationFailed('You cannot message yourself.', code='INVALID_RECEIVER')

        conversation = (
            Q(sender=sender, receiver=receiver) | Q(sender=receiver, receiver=sender)
        )
        fields, uploaded = self._prepare(sender, data, conversation)
        message = self._create(fields, uploaded, sender=sender, receiver=receiver)
        logger.info(f'Direct message {message.id} from {sender.id} to {receiver.id}')
        return SendResult(serialize_message(message), [receiver.id])

    def send_group(self, sender, data):
        _check_single_target(data)
        group_id = data.get('group_id')
        if group_id is None:
            raise ValidationFailed('group_id is required.', code='GROUP_REQUIRED')
        group = _get_group(group_id)
        if not group.is_member(sender):
            raise NotAuthorized('You are not a member of this group.', code='NOT_A_MEMBER')

        fields, uploaded = self._prepare(sender, data, Q(group=group))
        message = self._create(fields, uploaded, sender=sender, group=group)
        Group.objects.filter(id=group.id).update(updated_at=timezone.now())
        logger.info(f'Group message {message.id} from {sender.id} in {group.id}')
        return SendResult(serialize_message(message), group.member_ids())

    # ── MUTATIONS ──

    def delete(self, actor, message_id, for_everyone=True):
        message = self.get_for_participant(actor, message_id)
        if message.sender_id != actor.id:
            raise NotAuthorized('Only the sender can delete a message.', code='NOT_SENDER')

        payload = {
            'message_id': str(message.id),
            'group_id': str(message.group_id) if message.group_id else None,
        }

        if not for_everyone:
            message.deleted_for_sender = True
            message.save(update_fields=['deleted_for_sender'])
            return Delta(None, {**payload, 'deletion': 'sender'}, [])

        if message.is_deleted:
            return Delta(None, {**payload, 'deletion': 'tombstoned'}, [])

        recipients = message.participant_ids()
        if message.has_attachment:
            attachment = message.attachment
            with transaction.atomic():
                message.delete()
                if isinstance(attachment, HostedAttachment):
                    self._purge_hosted(attachment.url)
            logger.info(f'Message {payload["message_id"]} purged with its {attachment.category} attachment')
            return Delta('message-deleted', {**payload, 'deletion': 'purged'}, recipients)

        message.is_deleted = True
        message.deleted_at = timezone.now()
        message.is_pinned = False
        message.save(update_fields=['is_deleted', 'deleted_at', 'is_pinned'])
        return Delta('message-deleted', {
            **payload, 'deletion': 'tombstoned', 'deleted_at': message.deleted_at.isoformat(),
        }, recipients)

    def _purge_hosted(self, url):
        from .tasks import purge_hosted_attachment

        # Forwarded copies share the object
        if Message.objects.filter(attachment_url=url).exists():
            return
        transaction.on_commit(lambda: purge_hosted_attachment.delay(url))

    def react(self, actor, message_id, emoji, remove=False):
        emoji = emoji.strip() if isinstance(emoji, str) else ''
        if not emoji or len(emoji) > MAX_EMOJI_LENGTH:
            raise ValidationFailed('A reaction emoji is required.', code='INVALID_EMOJI')
        message = self.get_for_participant(actor, message_id)
        if message.is_deleted:
            raise ValidationFailed('Deleted messages cannot be reacted to.', code='MESSAGE_DELETED')

        if remove:
            MessageReaction.objects.filter(message=message, user=actor, emoji=emoji).delete()
        else:
            MessageReaction.objects.get_or_create(message=message, user=actor, emoji=emoji)

        return Delta('message-reaction-changed', {
            'message_id': str(message.id),
            'group_id': str(message.group_id) if message.group_id else None,
            'emoji': emoji,
            'user_id': actor.id,
            'change': 'removed' if remove else 'added',
            'reactions': message.reaction_map(),
        }, message.participant_ids())

    def toggle_pin(self, actor, message_id):
        message = self.get_for_participant(actor, message_id)
        if message.is_deleted:
            raise ValidationFailed('Deleted messages cannot be pinned.', code='MESSAGE_DELETED')
        message.is_pinned = not message.is_pinned
        message.pinned_by = (actor.full_name or actor.email) if message.is_pinned else ''
        message.save(update_fields=['is_pinned', 'pinned_by'])
        return Delta('message-pinned', {
            'message_id': str(message.id),
            'group_id': str(message.group_id) if message.group_id else None,
            'is_pinned': message.is_pinned,
            'pinned_by': message.pinned_by,
        }, message.participant_ids())

    def toggle_star(self, actor, message_id):
        message = self.get_for_participant(actor, message_id)
        message.is_starred = not message.is_starred
        message.save(update_fields=['is_starred'])
        return Delta(None, {'message_id': str(message.id), 'is_starred': message.is_starred}, [])

    # ── READS ──

    def direct_history(self, user, peer_id):
        peer = _get_user(peer_id)
        messages = visible_messages(user).filter(
            Q(sender=user, receiver=peer) | Q(sender=peer, receiver=user)
        )
        data = MessageSerializer(messages, many=True).data
        read_cursor.mark_read(user, peer_id=peer.id)
        return data

    def chat_partners(self, user):
        """Everyone `user` has a direct conversation with, most recent first."""
        rows = (
            Message.objects.filter(Q(sender=user) | Q(receiver=user), group__isnull=True)
            .order_by('-created_at')
            .values_list('sender_id', 'receiver_id')
        )
        partner_ids = []
        for sender_id, receiver_id in rows:
            partner_id = receiver_id if sender_id == user.id else sender_id
            if partner_id not in partner_ids:
                partner_ids.append(partner_id)

        partners = User.objects.in_bulk(partner_ids)
        unread = read_cursor.unread_counts_by_peer(user, partner_ids)
        from accounts.serializers import UserPublicSerializer

        chats = []
        for partner_id in partner_ids:
            partner = partners.get(partner_id)
            if partner is None:
                continue
            last_message = visible_messages(user).filter(
                Q(sender=user, receiver=partner) | Q(sender=partner, receiver=user)
            ).order_by('-created_at').first()
            chats.append({
                **UserPublicSerializer(partner).data,
                'unread_count': unread.get(partner_id, 0),
                'last_message': serialize_message(last_message) if last_message else None,
            })
        return chats


class GroupService:

    def __init__(self, store=None):
        self.store = store or ObjectStore()

    def get_for_member(self, user, group_id):
        group = _get_group(group_id)
        if not group.is_member(user):
            raise NotAuthorized('You are not a member of this group.', code='NOT_A_MEMBER')
        return group

    def _require_admin(self, user, group):
        if group.admin_id != user.id:
            raise NotAuthorized('Only the group admin can do this.', code='ADMIN_ONLY')

    def _users(self, user_ids):
        user_ids = list(dict.fromkeys(user_ids))
        users = User.objects.filter(id__in=user_ids, is_active=True)
        missing = set(user_ids) - {u.id for u in users}
        if missing:
            raise NotFound('Some users do not exist.', code='USER_NOT_FOUND', details={'user_ids': sorted(missing)})
        return list(users)

    def create(self, admin, data):
        members = self._users(data.get('member_ids') or [])
        group_pic = data.get('group_pic') or ''
        if group_pic.startswith('data:'):
            group_pic = store_picture(group_pic, self.store, folder='group-pics')
        with transaction.atomic():
            group = Group.objects.create(
                name=data['name'],
                description=data.get('description', ''),
                group_pic=group_pic,
                is_public=data.get('is_public', False),
                admin=admin,
            )
            group.members.add(admin, *members)
        payload = serialize_group(group)
        logger.info(f'Group {group.id} created by {admin.id} with {len(payload["members"])} members')
        others = [m['id'] for m in payload['members'] if m['id'] != admin.id]
        return GroupChange(payload, [('new-group', {'group': payload}, others)])

    def mine(self, user):
        groups = (
            Group.objects.filter(members=user)
            .select_related('admin')
            .prefetch_related('members')
        )
        result = []
        for group in groups:
            last_message = visible_messages(user).filter(group=group).order_by('-created_at').first()
            result.append({
                **GroupSerializer(group).data,
                'unread_count': read_cursor.unread_count(user, group_id=group.id),
                'last_message': serialize_message(last_message) if last_message else None,
            })
        return result

    def history(self, user, group_id):
        group = self.get_for_member(user, group_id)
        messages = visible_messages(user).filter(group=group)
        data = MessageSerializer(messages, many=True).data
        read_cursor.mark_read(user, group_id=group.id)
        return data

    def members(self, user, group_id):
        return serialize_group(self.get_for_member(user, group_id))

    def add_members(self, actor, group_id, member_ids):
        group = self.get_for_member(actor, group_id)
        if not group.can_add_members(actor):
            raise NotAuthorized('Only the admin can add members to a private group.', code='ADMIN_ONLY')
        existing = set(group.member_ids())
        new_members = [u for u in self._users(member_ids) if u.id not in existing]
        if not new_members:
            raise ValidationFailed('Those users are already members.', code='ALREADY_MEMBERS')
        group.members.add(*new_members)
        group.save(update_fields=['updated_at'])

        payload = serialize_group(group)
        added_ids = [u.id for u in new_members]
        logger.info(f'{actor.id} added {added_ids} to group {group.id}')
        return GroupChange(payload, [
            ('added-to-group', {'group': payload}, added_ids),
            ('group-updated', {'group': payload}, sorted(existing)),
        ])

    def remove_member(self, actor, group_id, user_id):
        group = self.get_for_member(actor, group_id)
        self._require_admin(actor, group)
        if int(user_id) == group.admin_id:
            raise ValidationFailed('The admin cannot be removed from the group.', code='CANNOT_REMOVE_ADMIN')
        if not group.members.filter(id=user_id).exists():
            raise NotFound('That user is not a member of this group.', code='NOT_A_MEMBER')
        group.members.remove(user_id)
        group.save(update_fields=['updated_at'])

        payload = serialize_group(group)
        logger.info(f'{actor.id} removed {user_id} from group {group.id}')
        return GroupChange(payload, [
            ('removed-from-group', {'group_id': str(group.id), 'group_name': group.name}, [int(user_id)]),
            ('group-updated', {'group': payload}, group.member_ids()),
        ])

    def toggle_privacy(self, actor, group_id):
        group = self.get_for_member(actor, group_id)
        self._require_admin(actor, group)
        group.is_public = not group.is_public
        group.save(update_fields=['is_public', 'updated_at'])
        payload = serialize_group(group)
        return GroupChange(payload, [('group-updated', {'group': payload}, group.member_ids())])
