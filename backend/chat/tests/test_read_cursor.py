from datetime import timedelta

from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.test import TestCase
from django.utils import timezone

from chat import read_cursor
from chat.exceptions import NotFound, ValidationFailed
from chat.models import ConversationRead, Group, Message

User = get_user_model()


class ReadCursorTestCase(TestCase):

    def setUp(self):
        self.alice = User.objects.create_user(email='alice@test.com', password='TestPass123!', first_name='Alice')
        self.bob = User.objects.create_user(email='bob@test.com', password='TestPass123!', first_name='Bob')
        self.carol = User.objects.create_user(email='carol@test.com', password='TestPass123!', first_name='Carol')

    def message(self, sender, minutes_ago, receiver=None, group=None, **fields):
        message = Message.objects.create(sender=sender, receiver=receiver, group=group, text='x', **fields)
        # auto_now_add ignores explicit values, so move it afterwards
        created = timezone.now() - timedelta(minutes=minutes_ago)
        Message.objects.filter(id=message.id).update(created_at=created)
        return message


class DirectUnreadTests(ReadCursorTestCase):

    def test_no_cursor_counts_everything(self):
        self.message(self.alice, 10, receiver=self.bob)
        self.message(self.alice, 5, receiver=self.bob)
        self.assertEqual(read_cursor.unread_count(self.bob, peer_id=self.alice.id), 2)

    def test_own_messages_never_count(self):
        self.message(self.bob, 5, receiver=self.alice)
        self.assertEqual(read_cursor.unread_count(self.bob, peer_id=self.alice.id), 0)

    def test_other_conversations_do_not_count(self):
        self.message(self.carol, 5, receiver=self.bob)
        self.message(self.alice, 5, receiver=self.carol)
        self.assertEqual(read_cursor.unread_count(self.bob, peer_id=self.alice.id), 0)

    def test_mark_read_then_zero(self):
        self.message(self.alice, 10, receiver=self.bob)
        self.message(self.alice, 5, receiver=self.bob)
        for _ in range(3):
            read_cursor.mark_read(self.bob, peer_id=self.alice.id)
            self.assertEqual(read_cursor.unread_count(self.bob, peer_id=self.alice.id), 0)
        self.assertEqual(ConversationRead.objects.filter(user=self.bob).count(), 1)

    def test_only_messages_after_cursor_count(self):
        self.message(self.alice, 30, receiver=self.bob)
        ConversationRead.objects.create(
            user=self.bob, peer=self.alice, last_read_at=timezone.now() - timedelta(minutes=20),
        )
        self.message(self.alice, 10, receiver=self.bob)
        self.assertEqual(read_cursor.unread_count(self.bob, peer_id=self.alice.id), 1)

    def test_cursor_equal_to_creation_time_is_read(self):
        message = self.message(self.alice, 10, receiver=self.bob)
        message.refresh_from_db()
        ConversationRead.objects.create(user=self.bob, peer=self.alice, last_read_at=message.created_at)
        self.assertEqual(read_cursor.unread_count(self.bob, peer_id=self.alice.id), 0)

    def test_deleted_messages_do_not_count(self):
        self.message(self.alice, 10, receiver=self.bob, is_deleted=True, deleted_at=timezone.now())
        self.message(self.alice, 5, receiver=self.bob, deleted_for_sender=True)
        self.message(self.alice, 1, receiver=self.bob)
        self.assertEqual(read_cursor.unread_count(self.bob, peer_id=self.alice.id), 1)

    def test_mark_read_updates_existing_cursor(self):
        first = read_cursor.mark_read(self.bob, peer_id=self.alice.id)
        ConversationRead.objects.filter(id=first.id).update(last_read_at=timezone.now() - timedelta(days=1))
        second = read_cursor.mark_read(self.bob, peer_id=self.alice.id)
        self.assertEqual(first.id, second.id)
        self.assertGreater(second.last_read_at, timezone.now() - timedelta(minutes=1))

    def test_mark_read_unknown_peer(self):
        with self.assertRaises(NotFound):
            read_cursor.mark_read(self.bob, peer_id=999999)

    def test_unread_counts_by_peer(self):
        self.message(self.alice, 10, receiver=self.bob)
        self.message(self.alice, 5, receiver=self.bob)
        self.message(self.carol, 5, receiver=self.bob)
        read_cursor.mark_read(self.bob, peer_id=self.carol.id)
        counts = read_cursor.unread_counts_by_peer(self.bob, [self.alice.id, self.carol.id])
        self.assertEqual(counts, {self.alice.id: 2, self.carol.id: 0})
        self.assertEqual(read_cursor.unread_counts_by_peer(self.bob, []), {})


class GroupUnreadTests(ReadCursorTestCase):

    def setUp(self):
        super().setUp()
        self.group = Group.objects.create(name='Team', admin=self.alice)
        self.group.members.add(self.bob, self.carol)

    def test_group_unread_excludes_own(self):
        self.message(self.alice, 10, group=self.group)
        self.message(self.carol, 5, group=self.group)
        self.message(self.bob, 3, group=self.group)
        self.assertEqual(read_cursor.unread_count(self.bob, group_id=self.group.id), 2)

    def test_group_mark_read(self):
        self.message(self.alice, 10, group=self.group)
        read_cursor.mark_read(self.bob, group_id=self.group.id)
        self.assertEqual(read_cursor.unread_count(self.bob, group_id=self.group.id), 0)
        self.message(self.carol, -1, group=self.group)
        self.assertEqual(read_cursor.unread_count(self.bob, group_id=self.group.id), 1)

    def test_group_and_direct_cursors_are_separate(self):
        read_cursor.mark_read(self.bob, group_id=self.group.id)
        read_cursor.mark_read(self.bob, peer_id=self.alice.id)
        self.assertEqual(ConversationRead.objects.filter(user=self.bob).count(), 2)

    def test_non_member_cannot_mark_group_read(self):
        outsider = User.objects.create_user(email='dave@test.com', password='TestPass123!')
        with self.assertRaises(NotFound):
            read_cursor.mark_read(outsider, group_id=self.group.id)


class CounterpartExclusivityTests(ReadCursorTestCase):

    def test_both_counterparts_rejected(self):
        group = Group.objects.create(name='Team', admin=self.alice)
        with self.assertRaises(ValidationFailed):
            read_cursor.mark_read(self.alice, peer_id=self.bob.id, group_id=group.id)
        with self.assertRaises(ValidationFailed):
            read_cursor.unread_count(self.alice, peer_id=self.bob.id, group_id=group.id)

    def test_no_counterpart_rejected(self):
        with self.assertRaises(ValidationFailed):
            read_cursor.mark_read(self.alice)

    def test_database_rejects_cursor_with_both(self):
        group = Group.objects.create(name='Team', admin=self.alice)
        with self.assertRaises(IntegrityError):
            ConversationRead.objects.create(
                user=self.alice, peer=self.bob, group=group, last_read_at=timezone.now(),
            )
