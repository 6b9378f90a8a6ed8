from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from . import read_cursor
from .exceptions import ValidationFailed
from .realtime import get_realtime
from .serializers import GroupCreateSerializer, GroupMembersAddSerializer
from .services import GroupService, MessageService


def _validated(serializer_class, data):
    serializer = serializer_class(data=data)
    if not serializer.is_valid():
        raise ValidationFailed('Invalid request.', code='INVALID_REQUEST', details=serializer.errors)
    return serializer.validated_data


class ChatPartnersView(APIView):
    """GET /api/chat/chats/: direct conversations with unread count and last message"""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(MessageService().chat_partners(request.user))


class DirectMessagesView(APIView):
    """GET /api/chat/messages/<user_id>/: history with one user; marks it read"""
    permission_classes = [IsAuthenticated]

    def get(self, request, user_id):
        return Response(MessageService().direct_history(request.user, user_id))


class MessageDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, message_id):
        return Response(MessageService().fetch(request.user, message_id))


class MarkDirectReadView(APIView):
    permission_classes = [IsAuthenticated]

    def patch(self, request, user_id):
        cursor = read_cursor.mark_read(request.user, peer_id=user_id)
        return Response({'peer_id': user_id, 'last_read_at': cursor.last_read_at})


class MarkGroupReadView(APIView):
    permission_classes = [IsAuthenticated]

    def patch(self, request, group_id):
        cursor = read_cursor.mark_read(request.user, group_id=group_id)
        return Response({'group_id': str(group_id), 'last_read_at': cursor.last_read_at})


# ── GROUPS ──

class GroupCreateView(APIView):
    """
    POST /api/chat/groups/
    Body: {"name": "...", "description": "...", "member_ids": [2, 3], "is_public": false,
           "group_pic": "https://..." or "data:image/png;base64,..."}
    Online members get a `new-group` push.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        data = _validated(GroupCreateSerializer, request.data)
        change = GroupService().create(request.user, data)
        get_realtime().publish_sync(change.notifications, exclude_id=request.user.id)
        return Response(change.group, status=status.HTTP_201_CREATED)


class MyGroupsView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(GroupService().mine(request.user))


class GroupMessagesView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, group_id):
        return Response(GroupService().history(request.user, group_id))


class GroupMembersView(APIView):
    """
    GET  /api/chat/groups/<id>/members/: group with its members
    POST /api/chat/groups/<id>/members/: add members; private groups: admin only
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, group_id):
        return Response(GroupService().members(request.user, group_id))

    def post(self, request, group_id):
        data = _validated(GroupMembersAddSerializer, request.data)
        change = GroupService().add_members(request.user, group_id, data['member_ids'])
        get_realtime().publish_sync(change.notifications, exclude_id=request.user.id)
        return Response(change.group)


class GroupMemberDetailView(APIView):
    """DELETE /api/chat/groups/<id>/members/<user_id>/: admin only; the admin cannot be removed"""
    permission_classes = [IsAuthenticated]

    def delete(self, request, group_id, user_id):
        change = GroupService().remove_member(request.user, group_id, user_id)
        get_realtime().publish_sync(change.notifications, exclude_id=request.user.id)
        return Response(change.group)


class GroupPrivacyView(APIView):
    permission_classes = [IsAuthenticated]

    def patch(self, request, group_id):
        change = GroupService().toggle_privacy(request.user, group_id)
        get_realtime().publish_sync(change.notifications, exclude_id=request.user.id)
        return Response(change.group)
