from unittest.mock import patch

from asgiref.sync import async_to_sync
from django.contrib.auth import get_user_model
from django.db import OperationalError
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from chat.models import Group, Message
from chat.realtime import Realtime
from .fakes import FakePusher

User = get_user_model()


class APITestCase(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.alice = User.objects.create_user(email='alice@test.com', password='TestPass123!', first_name='Alice')
        self.bob = User.objects.create_user(email='bob@test.com', password='TestPass123!', first_name='Bob')
        self.carol = User.objects.create_user(email='carol@test.com', password='TestPass123!', first_name='Carol')
        self.client.force_authenticate(user=self.alice)

        self.realtime = Realtime(pusher=FakePusher())
        patcher = patch('chat.views.get_realtime', return_value=self.realtime)
        patcher.start()
        self.addCleanup(patcher.stop)

    def go_online(self, *users):
        for user in users:
            async_to_sync(self.realtime.registry.register)(user.id, f'chan-{user.id}')
        self.realtime.pusher.clear()


class AuthRequiredTests(APITestCase):

    def test_anonymous_is_rejected(self):
        self.client.force_authenticate(user=None)
        response = self.client.get('/api/chat/chats/')
        self.assertEqual(response.status_code, 401)

    def test_bearer_token(self):
        from rest_framework_simplejwt.tokens import AccessToken

        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f'Bearer {AccessToken.for_user(self.bob)}')
        response = client.get('/api/auth/profile/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['id'], self.bob.id)


class DirectChatViewTests(APITestCase):

    def test_chat_list_has_unread_counts(self):
        Message.objects.create(sender=self.bob, receiver=self.alice, text='one')
        Message.objects.create(sender=self.bob, receiver=self.alice, text='two')
        response = self.client.get('/api/chat/chats/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['id'], self.bob.id)
        self.assertEqual(response.data[0]['unread_count'], 2)

    def test_history_marks_read(self):
        Message.objects.create(sender=self.bob, receiver=self.alice, text='one')
        response = self.client.get(f'/api/chat/messages/{self.bob.id}/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual([m['text'] for m in response.data], ['one'])
        chats = self.client.get('/api/chat/chats/').data
        self.assertEqual(chats[0]['unread_count'], 0)

    def test_mark_read_endpoint(self):
        response = self.client.patch(f'/api/chat/read/{self.bob.id}/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['peer_id'], self.bob.id)

    def test_missing_message_error_shape(self):
        response = self.client.get('/api/chat/message/00000000-0000-0000-0000-000000000000/')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data['code'], 'MESSAGE_NOT_FOUND')
        self.assertEqual(response.data['kind'], 'not_found')
        self.assertFalse(response.data['retryable'])

    def test_foreign_message_is_forbidden(self):
        message = Message.objects.create(sender=self.bob, receiver=self.carol, text='private')
        response = self.client.get(f'/api/chat/message/{message.id}/')
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data['kind'], 'authorization')

    def test_store_outage_is_503(self):
        with patch('chat.services.MessageService.chat_partners', side_effect=OperationalError('gone')):
            response = self.client.get('/api/chat/chats/')
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.data['code'], 'STORE_UNAVAILABLE')
        self.assertTrue(response.data['retryable'])


class GroupViewTests(APITestCase):

    def create_group(self, **extra):
        data = {'name': 'Team', 'member_ids': [self.bob.id], **extra}
        response = self.client.post('/api/chat/groups/', data, format='json')
        self.assertEqual(response.status_code, 201)
        return response.data

    def test_create_pushes_new_group_to_online_members(self):
        self.go_online(self.alice, self.bob, self.carol)
        group = self.create_group()
        self.assertEqual(group['admin']['id'], self.alice.id)
        self.assertEqual(self.realtime.pusher.handles_for('new-group'), [f'chan-{self.bob.id}'])

    def test_create_requires_name(self):
        response = self.client.post('/api/chat/groups/', {'name': '  '}, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['code'], 'INVALID_REQUEST')
        self.assertIn('name', response.data['details'])

    def test_group_picture_url_or_inline_data_url(self):
        self.assertEqual(
            self.create_group(group_pic='https://cdn.example.com/team.png')['group_pic'],
            'https://cdn.example.com/team.png',
        )
        picture = 'data:image/gif;base64,R0lGODlhAQABAAAAACw='
        self.assertEqual(self.create_group(group_pic=picture)['group_pic'], picture)

    def test_group_picture_must_be_url_or_image(self):
        response = self.client.post('/api/chat/groups/', {'name': 'Team', 'group_pic': 'not a url'}, format='json')
        self.assertEqual(response.status_code, 400)
        self.assertIn('group_pic', response.data['details'])

        response = self.client.post(
            '/api/chat/groups/', {'name': 'Team', 'group_pic': 'data:text/plain;base64,aGk='}, format='json',
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['code'], 'INVALID_PICTURE')
        self.assertFalse(Group.objects.exists())

    def test_private_group_member_cannot_add(self):
        group = self.create_group()
        self.client.force_authenticate(user=self.bob)
        response = self.client.post(
            f'/api/chat/groups/{group["id"]}/members/', {'member_ids': [self.carol.id]}, format='json',
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data['code'], 'ADMIN_ONLY')

    def test_public_group_member_can_add(self):
        group = self.create_group()
        response = self.client.patch(f'/api/chat/groups/{group["id"]}/privacy/')
        self.assertTrue(response.data['is_public'])

        self.go_online(self.alice, self.bob, self.carol)
        self.client.force_authenticate(user=self.bob)
        response = self.client.post(
            f'/api/chat/groups/{group["id"]}/members/', {'member_ids': [self.carol.id]}, format='json',
        )
        self.assertEqual(response.status_code, 200)
        self.assertIn(self.carol.id, [m['id'] for m in response.data['members']])
        self.assertEqual(self.realtime.pusher.handles_for('added-to-group'), [f'chan-{self.carol.id}'])
        self.assertEqual(self.realtime.pusher.handles_for('group-updated'), [f'chan-{self.alice.id}'])

    def test_remove_member(self):
        group = self.create_group()
        self.go_online(self.bob)
        response = self.client.delete(f'/api/chat/groups/{group["id"]}/members/{self.bob.id}/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual([m['id'] for m in response.data['members']], [self.alice.id])
        self.assertEqual(self.realtime.pusher.handles_for('removed-from-group'), [f'chan-{self.bob.id}'])

    def test_group_messages_require_membership(self):
        group = self.create_group()
        self.client.force_authenticate(user=self.carol)
        response = self.client.get(f'/api/chat/groups/{group["id"]}/messages/')
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.data['code'], 'NOT_A_MEMBER')

    def test_my_groups(self):
        group = self.create_group()
        Message.objects.create(sender=self.bob, group=Group.objects.get(id=group['id']), text='hello')
        response = self.client.get('/api/chat/groups/mine/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data[0]['unread_count'], 1)
        self.client.patch(f'/api/chat/groups/read/{group["id"]}/')
        self.assertEqual(self.client.get('/api/chat/groups/mine/').data[0]['unread_count'], 0)


class ContactViewTests(APITestCase):

    def test_contacts_exclude_self(self):
        response = self.client.get('/api/auth/contacts/')
        self.assertEqual(sorted(u['id'] for u in response.data), sorted([self.bob.id, self.carol.id]))

    def test_contact_search(self):
        response = self.client.get('/api/auth/contacts/', {'search': 'car'})
        self.assertEqual([u['id'] for u in response.data], [self.carol.id])


class CallViewTests(APITestCase):

    def test_call_log_filters(self):
        Message.objects.create(sender=self.alice, receiver=self.bob, call_type='video', call_status='answered', call_duration=30)
        Message.objects.create(sender=self.bob, receiver=self.alice, call_type='audio', call_status='missed', call_duration=0)
        Message.objects.create(sender=self.bob, receiver=self.alice, text='not a call')
        response = self.client.get('/api/calls/log/')
        self.assertEqual(len(response.data), 2)
        response = self.client.get('/api/calls/log/', {'status': 'missed'})
        self.assertEqual([m['call']['call_type'] for m in response.data], ['audio'])

    @override_settings(ICE_SERVERS=[{'urls': 'stun:stun.example.com:3478'}])
    def test_ice_servers(self):
        response = self.client.get('/api/calls/ice-servers/')
        self.assertEqual(response.data, {'ice_servers': [{'urls': 'stun:stun.example.com:3478'}]})

    def test_default_ice_servers_are_public_stun(self):
        response = self.client.get('/api/calls/ice-servers/')
        urls = [server['urls'] for server in response.data['ice_servers']]
        self.assertEqual(urls, ['stun:stun.l.google.com:19302', 'stun:stun1.l.google.com:19302'])


class HealthCheckTests(TestCase):

    def test_health(self):
        response = APIClient().get('/api/health/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['db'], 'connected')
        self.assertEqual(response.data['cache'], 'connected')
