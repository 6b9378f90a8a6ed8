"""
Read cursors: one `last_read_at` per (user, peer) or (user, group).

Unread counts are always recomputed from the message table; no counter is
ever stored, so they cannot drift from the messages they count.
"""
from django.core.exceptions import ValidationError
from django.db.models import Count, Q
from django.utils import timezone

from accounts.models import User
from .exceptions import NotFound, ValidationFailed
from .models import ConversationRead, Group, Message


def _check_counterpart(peer_id, group_id):
    if (peer_id is None) == (group_id is None):
        raise ValidationFailed(
            'Exactly one of peer_id or group_id is required.', code='COUNTERPART_REQUIRED',
        )


def mark_read(user, peer_id=None, group_id=None):
    """Upsert the cursor for this conversation to now."""
    _check_counterpart(peer_id, group_id)
    now = timezone.now()
    if peer_id is not None:
        if not User.objects.filter(id=peer_id).exists():
            raise NotFound('User not found.', code='USER_NOT_FOUND')
        cursor, _ = ConversationRead.objects.update_or_create(
            user=user, peer_id=peer_id, group=None, defaults={'last_read_at': now},
        )
    else:
        try:
            is_member = Group.objects.filter(id=group_id, members=user).exists()
        except (ValidationError, ValueError):
            is_member = False
        if not is_member:
            raise NotFound('Group not found.', code='GROUP_NOT_FOUND')
        cursor, _ = ConversationRead.objects.update_or_create(
            user=user, group_id=group_id, peer=None, defaults={'last_read_at': now},
        )
    return cursor


def last_read_at(user, peer_id=None, group_id=None):
    _check_counterpart(peer_id, group_id)
    cursors = ConversationRead.objects.filter(user=user)
    if peer_id is not None:
        cursors = cursors.filter(peer_id=peer_id)
    else:
        cursors = cursors.filter(group_id=group_id)
    return cursors.values_list('last_read_at', flat=True).first()


def _countable(messages):
    return messages.filter(is_deleted=False, deleted_for_sender=False)


def unread_count(user, peer_id=None, group_id=None):
    """Messages from others newer than the cursor; everything counts if there is no cursor."""
    _check_counterpart(peer_id, group_id)
    if peer_id is not None:
        messages = Message.objects.filter(sender_id=peer_id, receiver=user)
    else:
        messages = Message.objects.filter(group_id=group_id).exclude(sender=user)
    cursor = last_read_at(user, peer_id=peer_id, group_id=group_id)
    if cursor is not None:
        messages = messages.filter(created_at__gt=cursor)
    return _countable(messages).count()


def unread_counts_by_peer(user, peer_ids):
    """{peer_id: unread} for the chat list, two queries regardless of peer count."""
    if not peer_ids:
        return {}
    cursors = dict(
        ConversationRead.objects.filter(user=user, peer_id__in=peer_ids)
        .values_list('peer_id', 'last_read_at')
    )
    counts = {peer_id: 0 for peer_id in peer_ids}
    filters = Q()
    for peer_id in peer_ids:
        condition = Q(sender_id=peer_id)
        if cursors.get(peer_id) is not None:
            condition &= Q(created_at__gt=cursors[peer_id])
        filters |= condition
    rows = (
        _countable(Message.objects.filter(receiver=user).filter(filters))
        .values('sender_id').annotate(total=Count('id'))
    )
    for row in rows:
        counts[row['sender_id']] = row['total']
    return counts
