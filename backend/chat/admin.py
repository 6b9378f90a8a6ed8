from django.contrib import admin
from .models import ConversationRead, Group, Message, MessageReaction


@admin.register(Group)
class GroupAdmin(admin.ModelAdmin):
    list_display = ['name', 'admin', 'is_public', 'created_at', 'updated_at']
    list_filter = ['is_public']
    search_fields = ['name', 'admin__email']
    filter_horizontal = ['members']


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ['id', 'sender', 'receiver', 'group', 'attachment_category', 'is_deleted', 'created_at']
    list_filter = ['is_deleted', 'deleted_for_sender', 'is_pinned', 'attachment_category', 'call_type']
    search_fields = ['sender__email', 'text']
    exclude = ['attachment_data']


@admin.register(MessageReaction)
class MessageReactionAdmin(admin.ModelAdmin):
    list_display = ['message', 'user', 'emoji', 'created_at']


@admin.register(ConversationRead)
class ConversationReadAdmin(admin.ModelAdmin):
    list_display = ['user', 'peer', 'group', 'last_read_at']
    search_fields = ['user__email']
