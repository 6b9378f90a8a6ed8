import base64
from datetime import timedelta
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from chat.models import Group, Message

User = get_user_model()


class UserModelTests(TestCase):

    def test_email_is_the_login(self):
        user = User.objects.create_user(email='Alice@Test.com', password='TestPass123!')
        self.assertEqual(user.email, 'Alice@test.com')
        self.assertTrue(user.username)
        self.assertTrue(user.check_password('TestPass123!'))

    def test_username_defaults_to_full_email(self):
        first = User.objects.create_user(email='alice@a.com', password='TestPass123!')
        second = User.objects.create_user(email='alice@b.com', password='TestPass123!')
        self.assertEqual(first.username, 'alice@a.com')
        self.assertEqual(second.username, 'alice@b.com')

    def test_full_name_falls_back_to_username(self):
        user = User.objects.create_user(email='x@test.com', username='xavier')
        self.assertEqual(user.full_name, 'xavier')
        user.first_name, user.last_name = 'Xavier', 'Doe'
        self.assertEqual(user.full_name, 'Xavier Doe')


class MigrationsTests(TestCase):

    def test_models_match_migrations(self):
        # --check exits non-zero when a model change has no migration
        call_command('makemigrations', '--check', '--dry-run', stdout=StringIO())


class LastSeenMiddlewareTests(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(email='alice@test.com', password='TestPass123!')
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)

    def test_stale_last_seen_is_refreshed(self):
        User.objects.filter(id=self.user.id).update(last_seen=timezone.now() - timedelta(hours=1))
        self.user.refresh_from_db()
        self.client.get('/api/auth/profile/')
        self.user.refresh_from_db()
        self.assertGreater(self.user.last_seen, timezone.now() - timedelta(minutes=1))

    def test_recent_last_seen_is_left_alone(self):
        recent = timezone.now() - timedelta(minutes=1)
        User.objects.filter(id=self.user.id).update(last_seen=recent)
        self.user.refresh_from_db()
        self.client.get('/api/auth/profile/')
        self.user.refresh_from_db()
        self.assertEqual(self.user.last_seen, recent)


class CreateTestUsersCommandTests(TestCase):

    def test_seeds_users_conversation_and_group(self):
        call_command('create_test_users', stdout=StringIO())
        self.assertEqual(User.objects.filter(email__endswith='@chatify.test').count(), 3)
        group = Group.objects.get(name='Test Group')
        self.assertEqual(group.admin.username, 'alice')
        self.assertEqual(len(group.member_ids()), 3)
        self.assertEqual(Message.objects.filter(receiver__username='alice').count(), 2)

    def test_is_idempotent(self):
        call_command('create_test_users', stdout=StringIO())
        call_command('create_test_users', password='Other123!', stdout=StringIO())
        self.assertEqual(User.objects.filter(email__endswith='@chatify.test').count(), 3)
        self.assertEqual(Group.objects.filter(name='Test Group').count(), 1)
        self.assertEqual(Message.objects.count(), 3)
        self.assertTrue(User.objects.get(username='bob').check_password('Other123!'))


class ProfileViewTests(TestCase):

    def setUp(self):
        self.user = User.objects.create_user(email='alice@test.com', password='TestPass123!', first_name='Alice')
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)
        self.picture = 'data:image/png;base64,' + base64.b64encode(b'\x89PNG' + b'\x00' * 32).decode()

    def test_get_own_profile(self):
        response = self.client.get('/api/auth/profile/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['email'], 'alice@test.com')

    def test_update_name_and_bio(self):
        response = self.client.patch('/api/auth/profile/', {'last_name': 'Liddell', 'bio': 'Down the hole'}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['full_name'], 'Alice Liddell')
        self.user.refresh_from_db()
        self.assertEqual(self.user.bio, 'Down the hole')

    def test_picture_kept_inline_without_object_store(self):
        response = self.client.patch('/api/auth/profile/', {'profile_pic': self.picture}, format='json')
        self.assertEqual(response.status_code, 200)
        self.user.refresh_from_db()
        self.assertEqual(self.user.profile_pic, self.picture)

    @patch('accounts.views.ObjectStore')
    def test_picture_uploaded_to_object_store(self, store_class):
        store = store_class.return_value
        store.enabled = True
        store.upload.return_value = 'https://bucket.example.com/chatify/profile-pics/a.png'
        response = self.client.patch('/api/auth/profile/', {'profile_pic': self.picture}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['profile_pic'], 'https://bucket.example.com/chatify/profile-pics/a.png')
        self.assertEqual(store.upload.call_args.kwargs['folder'], 'profile-pics')

    def test_picture_must_be_an_image(self):
        response = self.client.patch(
            '/api/auth/profile/', {'profile_pic': 'https://example.com/me.png'}, format='json',
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['code'], 'INVALID_PICTURE')
        self.user.refresh_from_db()
        self.assertEqual(self.user.profile_pic, '')

    def test_empty_update_is_rejected(self):
        response = self.client.patch('/api/auth/profile/', {}, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['code'], 'EMPTY_UPDATE')

    def test_picture_can_be_cleared(self):
        User.objects.filter(id=self.user.id).update(profile_pic=self.picture)
        response = self.client.patch('/api/auth/profile/', {'profile_pic': ''}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['profile_pic'], '')
