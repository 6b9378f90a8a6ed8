import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Group',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=100)),
                ('description', models.CharField(blank=True, default='', max_length=500)),
                ('group_pic', models.URLField(blank=True, default='', max_length=500)),
                ('is_public', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('admin', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='administered_groups', to=settings.AUTH_USER_MODEL)),
                ('members', models.ManyToManyField(blank=True, related_name='chat_groups', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'chat_groups',
                'ordering': ['-updated_at'],
            },
        ),
        migrations.CreateModel(
            name='Message',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('text', models.CharField(blank=True, default='', max_length=2000)),
                ('attachment_url', models.URLField(blank=True, default='', max_length=1000)),
                ('attachment_data', models.BinaryField(blank=True, null=True)),
                ('attachment_name', models.CharField(blank=True, default='', max_length=255)),
                ('attachment_mime_type', models.CharField(blank=True, default='', max_length=100)),
                ('attachment_size', models.BigIntegerField(default=0)),
                ('attachment_category', models.CharField(blank=True, default='', max_length=20)),
                ('is_deleted', models.BooleanField(default=False)),
                ('deleted_at', models.DateTimeField(blank=True, null=True)),
                ('deleted_for_sender', models.BooleanField(default=False)),
                ('is_pinned', models.BooleanField(default=False)),
                ('pinned_by', models.CharField(blank=True, default='', max_length=150)),
                ('is_starred', models.BooleanField(default=False)),
                ('call_type', models.CharField(blank=True, choices=[('audio', 'Audio'), ('video', 'Video')], default='', max_length=10)),
                ('call_duration', models.PositiveIntegerField(blank=True, help_text='Seconds', null=True)),
                ('call_status', models.CharField(blank=True, choices=[('answered', 'Answered'), ('missed', 'Missed'), ('rejected', 'Rejected')], default='', max_length=10)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('forward_from', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='forwards', to='chat.message')),
                ('group', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='messages', to='chat.group')),
                ('receiver', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='received_messages', to=settings.AUTH_USER_MODEL)),
                ('reply_to', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='replies', to='chat.message')),
                ('sender', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='sent_messages', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'chat_messages',
                'ordering': ['created_at'],
                'indexes': [
                    models.Index(fields=['sender', 'receiver', 'created_at'], name='chat_messag_sender__3f0c2e_idx'),
                    models.Index(fields=['group', 'created_at'], name='chat_messag_group_i_9b1d4a_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(
                        condition=(
                            models.Q(('group__isnull', True), ('receiver__isnull', False))
                            | models.Q(('group__isnull', False), ('receiver__isnull', True))
                        ),
                        name='message_receiver_xor_group',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='MessageReaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('emoji', models.CharField(max_length=32)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('message', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='reactions', to='chat.message')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='message_reactions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'chat_message_reactions',
                'unique_together': {('message', 'user', 'emoji')},
            },
        ),
        migrations.CreateModel(
            name='ConversationRead',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('last_read_at', models.DateTimeField()),
                ('group', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='read_cursors', to='chat.group')),
                ('peer', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='read_cursors', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'chat_conversation_reads',
                'constraints': [
                    models.CheckConstraint(
                        condition=(
                            models.Q(('group__isnull', True), ('peer__isnull', False))
                            | models.Q(('group__isnull', False), ('peer__isnull', True))
                        ),
                        name='read_cursor_peer_xor_group',
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(('peer__isnull', False)),
                        fields=('user', 'peer'),
                        name='unique_read_cursor_peer',
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(('group__isnull', False)),
                        fields=('user', 'group'),
                        name='unique_read_cursor_group',
                    ),
                ],
            },
        ),
    ]
