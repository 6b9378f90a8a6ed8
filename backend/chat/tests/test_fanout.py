from django.test import SimpleTestCase

from chat.fanout import FanoutEngine
from chat.presence import PresenceRegistry
from chat.typing_relay import TypingRelay
from .fakes import FakePusher


class FanoutTestCase(SimpleTestCase):

    def setUp(self):
        self.pusher = FakePusher()
        self.registry = PresenceRegistry(self.pusher)
        self.fanout = FanoutEngine(self.registry, self.pusher)
        self.typing = TypingRelay(self.registry, self.pusher)

    async def connect(self, *identities):
        for identity in identities:
            await self.registry.register(identity, f'chan-{identity}')
        self.pusher.clear()


class DirectFanoutTests(FanoutTestCase):

    async def test_online_receiver_gets_message(self):
        await self.connect(1, 2)
        pushed = await self.fanout.deliver_direct({'id': 'm1', 'text': 'hi'}, 2)
        self.assertTrue(pushed)
        self.assertEqual(self.pusher.sent, [
            ('chan-2', 'new-direct-message', {'message': {'id': 'm1', 'text': 'hi'}}),
        ])

    async def test_no_echo_to_sender(self):
        await self.connect(1, 2)
        await self.fanout.deliver_direct({'id': 'm1'}, 2)
        self.assertEqual(self.pusher.events_for('chan-1'), [])

    async def test_offline_receiver_gets_nothing(self):
        await self.connect(1)
        pushed = await self.fanout.deliver_direct({'id': 'm1'}, 2)
        self.assertFalse(pushed)
        self.assertEqual(self.pusher.sent, [])

    async def test_push_goes_to_latest_connection(self):
        await self.registry.register(2, 'chan-2-old')
        await self.registry.register(2, 'chan-2-new')
        self.pusher.clear()
        await self.fanout.deliver_direct({'id': 'm1'}, 2)
        self.assertEqual(self.pusher.handles_for('new-direct-message'), ['chan-2-new'])


class GroupFanoutTests(FanoutTestCase):

    async def test_recipients_are_online_members_minus_sender(self):
        await self.connect(1, 2, 4, 9)
        members = [1, 2, 3, 4]
        delivered = await self.fanout.deliver_to_group({'id': 'g1'}, members, exclude_id=1)
        self.assertEqual(sorted(delivered), [2, 4])
        self.assertEqual(sorted(self.pusher.handles_for('new-group-message')), ['chan-2', 'chan-4'])

    async def test_sender_never_receives_own_message(self):
        await self.connect(1, 2)
        await self.fanout.deliver_to_group({'id': 'g1'}, [1, 2], exclude_id=1)
        self.assertNotIn('chan-1', self.pusher.handles_for('new-group-message'))

    async def test_nobody_online(self):
        await self.connect(1)
        delivered = await self.fanout.deliver_to_group({'id': 'g1'}, [1, 2, 3], exclude_id=1)
        self.assertEqual(delivered, [])
        self.assertEqual(self.pusher.sent, [])

    async def test_duplicate_member_ids_pushed_once(self):
        await self.connect(2)
        await self.fanout.deliver_to_group({'id': 'g1'}, [2, 2, 1], exclude_id=1)
        self.assertEqual(self.pusher.handles_for('new-group-message'), ['chan-2'])

    async def test_delta_uses_given_recipient_set(self):
        await self.connect(1, 2, 3)
        payload = {'message_id': 'm1', 'emoji': '👍', 'user_id': 1}
        delivered = await self.fanout.deliver_delta('message-reaction-changed', payload, [1, 3], exclude_id=1)
        self.assertEqual(delivered, [3])
        self.assertEqual(self.pusher.sent, [('chan-3', 'message-reaction-changed', payload)])


class TypingRelayTests(FanoutTestCase):

    async def test_direct_typing_goes_to_peer(self):
        await self.connect(1, 2, 3)
        await self.typing.typing(1, peer_id=2)
        self.assertEqual(self.pusher.sent, [('chan-2', 'peer-typing', {'user_id': 1})])

    async def test_direct_typing_to_offline_peer_is_dropped(self):
        await self.connect(1)
        count = await self.typing.stop_typing(1, peer_id=2)
        self.assertEqual(count, 0)
        self.assertEqual(self.pusher.sent, [])

    async def test_group_typing_broadcasts_to_everyone_but_typist(self):
        await self.connect(1, 2, 3)
        await self.typing.typing(1, group_id='grp')
        self.assertEqual(sorted(self.pusher.handles_for('peer-typing')), ['chan-2', 'chan-3'])
        for _, _, payload in self.pusher.sent:
            self.assertEqual(payload, {'user_id': 1, 'group_id': 'grp'})

    async def test_stop_typing_event_name(self):
        await self.connect(1, 2)
        await self.typing.stop_typing(1, group_id='grp')
        self.assertEqual(self.pusher.sent, [('chan-2', 'peer-stopped-typing', {'user_id': 1, 'group_id': 'grp'})])
