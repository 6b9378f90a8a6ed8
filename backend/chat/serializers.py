from django.core.validators import URLValidator
from rest_framework import serializers

from accounts.serializers import UserPublicSerializer
from .attachments import attachment_to_dict
from .models import Group, Message


class MessageSerializer(serializers.ModelSerializer):
    """
    Fully hydrated message as pushed and fetched: sender profile resolved,
    reply target previewed, reactions as {emoji: [user_id, ...]}.
    Tombstoned messages keep their row but expose no content.
    """
    sender = UserPublicSerializer(read_only=True)
    receiver_id = serializers.SerializerMethodField()
    group_id = serializers.SerializerMethodField()
    text = serializers.SerializerMethodField()
    attachment = serializers.SerializerMethodField()
    reply_to = serializers.SerializerMethodField()
    forward_from = serializers.SerializerMethodField()
    reactions = serializers.SerializerMethodField()
    call = serializers.SerializerMethodField()

    class Meta:
        model = Message
        fields = [
            'id', 'sender', 'receiver_id', 'group_id', 'text', 'attachment',
            'reply_to', 'forward_from', 'reactions',
            'is_deleted', 'deleted_at', 'is_pinned', 'pinned_by', 'is_starred',
            'call', 'created_at',
        ]
        read_only_fields = fields

    def get_receiver_id(self, obj):
        return obj.receiver_id

    def get_group_id(self, obj):
        return str(obj.group_id) if obj.group_id else None

    def get_text(self, obj):
        return '' if obj.is_deleted else obj.text

    def get_attachment(self, obj):
        if obj.is_deleted:
            return None
        return attachment_to_dict(obj.attachment)

    def get_reply_to(self, obj):
        target = obj.reply_to
        if target is None:
            return None
        return {
            'id': str(target.id),
            'sender_id': target.sender_id,
            'sender_name': target.sender.full_name,
            'text': '' if target.is_deleted else target.text,
            'attachment_name': '' if target.is_deleted else target.attachment_name,
            'is_deleted': target.is_deleted,
        }

    def get_forward_from(self, obj):
        return str(obj.forward_from_id) if obj.forward_from_id else None

    def get_reactions(self, obj):
        return obj.reaction_map()

    def get_call(self, obj):
        if not obj.call_type:
            return None
        return {
            'call_type': obj.call_type,
            'duration': obj.call_duration or 0,
            'status': obj.call_status,
        }


class GroupSerializer(serializers.ModelSerializer):
    admin = UserPublicSerializer(read_only=True)
    members = UserPublicSerializer(many=True, read_only=True)

    class Meta:
        model = Group
        fields = [
            'id', 'name', 'description', 'admin', 'members', 'group_pic',
            'is_public', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class GroupCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    description = serializers.CharField(max_length=500, required=False, allow_blank=True, default='')
    member_ids = serializers.ListField(child=serializers.IntegerField(), required=False, default=list)
    # An https URL, or a data:image/ URL that gets stored like an attachment
    group_pic = serializers.CharField(required=False, allow_blank=True, default='')
    is_public = serializers.BooleanField(required=False, default=False)

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('Group name is required.')
        return value

    def validate_group_pic(self, value):
        if value and not value.startswith('data:'):
            URLValidator()(value)
            if len(value) > 500:
                raise serializers.ValidationError('Picture URL is too long.')
        return value


class GroupMembersAddSerializer(serializers.Serializer):
    member_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)


def serialize_message(message):
    return MessageSerializer(message).data


def serialize_group(group):
    return GroupSerializer(group).data
