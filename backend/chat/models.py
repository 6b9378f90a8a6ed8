import uuid
from django.db import models
from django.conf import settings
from django.core.exceptions import ValidationError

from .attachments import HostedAttachment, InlineAttachment


class Group(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)
    description = models.CharField(max_length=500, blank=True, default='')
    admin = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='administered_groups'
    )
    members = models.ManyToManyField(
        settings.AUTH_USER_MODEL, related_name='chat_groups', blank=True
    )
    group_pic = models.TextField(blank=True, default='')
    # Private groups: only the admin may add members
    is_public = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'chat_groups'
        ordering = ['-updated_at']

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        super().save(*args, **kwargs)
        # The admin is always a member
        self.members.add(self.admin_id)

    def member_ids(self):
        return list(self.members.values_list('id', flat=True))

    def is_member(self, user):
        return self.members.filter(id=user.id).exists()

    def can_add_members(self, user):
        if self.admin_id == user.id:
            return True
        return self.is_public and self.is_member(user)


class Message(models.Model):
    CALL_TYPES = [
        ('audio', 'Audio'),
        ('video', 'Video'),
    ]
    CALL_STATUSES = [
        ('answered', 'Answered'),
        ('missed', 'Missed'),
        ('rejected', 'Rejected'),
    ]
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='sent_messages'
    )
    # Exactly one of receiver / group is set
    receiver = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.CASCADE, related_name='received_messages'
    )
    group = models.ForeignKey(
        Group, null=True, blank=True, on_delete=models.CASCADE, related_name='messages'
    )
    text = models.CharField(max_length=2000, blank=True, default='')
    # Attachment: either hosted (url) or inline (bytes), never both
    attachment_url = models.URLField(max_length=1000, blank=True, default='')
    attachment_data = models.BinaryField(null=True, blank=True)
    attachment_name = models.CharField(max_length=255, blank=True, default='')
    attachment_mime_type = models.CharField(max_length=100, blank=True, default='')
    attachment_size = models.BigIntegerField(default=0)
    attachment_category = models.CharField(max_length=20, blank=True, default='')
    # Reply / forward
    reply_to = models.ForeignKey(
        'self', null=True, blank=True, on_delete=models.SET_NULL, related_name='replies'
    )
    forward_from = models.ForeignKey(
        'self', null=True, blank=True, on_delete=models.SET_NULL, related_name='forwards'
    )
    # State
    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_for_sender = models.BooleanField(default=False)
    is_pinned = models.BooleanField(default=False)
    pinned_by = models.CharField(max_length=150, blank=True, default='')
    is_starred = models.BooleanField(default=False)
    # Call record
    call_type = models.CharField(max_length=10, choices=CALL_TYPES, blank=True, default='')
    call_duration = models.PositiveIntegerField(null=True, blank=True, help_text='Seconds')
    call_status = models.CharField(max_length=10, choices=CALL_STATUSES, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'chat_messages'
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['sender', 'receiver', 'created_at'], name='chat_messag_sender__3f0c2e_idx'),
            models.Index(fields=['group', 'created_at'], name='chat_messag_group_i_9b1d4a_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(receiver__isnull=False, group__isnull=True)
                    | models.Q(receiver__isnull=True, group__isnull=False)
                ),
                name='message_receiver_xor_group',
            ),
        ]

    def __str__(self):
        target = f'group {self.group_id}' if self.group_id else f'user {self.receiver_id}'
        return f'Message {self.id} from {self.sender_id} to {target}'

    def clean(self):
        if bool(self.receiver_id) == bool(self.group_id):
            raise ValidationError('A message targets exactly one of receiver or group.')

    @property
    def attachment(self):
        """The attachment as a HostedAttachment / InlineAttachment, or None."""
        if self.attachment_url:
            return HostedAttachment(
                url=self.attachment_url,
                name=self.attachment_name,
                mime_type=self.attachment_mime_type,
                size=self.attachment_size,
                category=self.attachment_category,
            )
        if self.attachment_data is not None:
            return InlineAttachment(
                data=bytes(self.attachment_data),
                name=self.attachment_name,
                mime_type=self.attachment_mime_type,
                size=self.attachment_size,
                category=self.attachment_category,
            )
        return None

    @attachment.setter
    def attachment(self, value):
        self.attachment_url = ''
        self.attachment_data = None
        if isinstance(value, HostedAttachment):
            self.attachment_url = value.url
        elif isinstance(value, InlineAttachment):
            self.attachment_data = value.data
        elif value is not None:
            raise TypeError(f'Unsupported attachment: {value!r}')
        self.attachment_name = value.name if value else ''
        self.attachment_mime_type = value.mime_type if value else ''
        self.attachment_size = value.size if value else 0
        self.attachment_category = value.category if value else ''

    @property
    def has_attachment(self):
        return bool(self.attachment_url) or self.attachment_data is not None

    def participant_ids(self):
        """Users who may see this message right now (group membership is read live)."""
        if self.group_id:
            return self.group.member_ids()
        return [self.sender_id, self.receiver_id]

    def reaction_map(self):
        """{emoji: [user_id, ...]} in reaction order."""
        reactions = {}
        for reaction in sorted(self.reactions.all(), key=lambda r: (r.created_at, r.id)):
            reactions.setdefault(reaction.emoji, []).append(reaction.user_id)
        return reactions


class MessageReaction(models.Model):
    message = models.ForeignKey(Message, on_delete=models.CASCADE, related_name='reactions')
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='message_reactions'
    )
    emoji = models.CharField(max_length=32)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'chat_message_reactions'
        unique_together = ['message', 'user', 'emoji']

    def __str__(self):
        return f'{self.user_id} reacted {self.emoji} to {self.message_id}'


class ConversationRead(models.Model):
    """Last time `user` looked at the conversation with `peer` or in `group`."""
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='read_cursors'
    )
    peer = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True,
        on_delete=models.CASCADE, related_name='+'
    )
    group = models.ForeignKey(
        Group, null=True, blank=True, on_delete=models.CASCADE, related_name='read_cursors'
    )
    last_read_at = models.DateTimeField()

    class Meta:
        db_table = 'chat_conversation_reads'
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(peer__isnull=False, group__isnull=True)
                    | models.Q(peer__isnull=True, group__isnull=False)
                ),
                name='read_cursor_peer_xor_group',
            ),
            models.UniqueConstraint(
                fields=['user', 'peer'], condition=models.Q(peer__isnull=False),
                name='unique_read_cursor_peer',
            ),
            models.UniqueConstraint(
                fields=['user', 'group'], condition=models.Q(group__isnull=False),
                name='unique_read_cursor_group',
            ),
        ]

    def __str__(self):
        target = f'group {self.group_id}' if self.group_id else f'user {self.peer_id}'
        return f'{self.user_id} read {target} at {self.last_read_at}'
