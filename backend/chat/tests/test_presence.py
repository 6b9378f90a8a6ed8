from django.test import SimpleTestCase

from chat.presence import PresenceRegistry
from .fakes import FakePusher


class PresenceRegistryTests(SimpleTestCase):

    def setUp(self):
        self.pusher = FakePusher()
        self.registry = PresenceRegistry(self.pusher)

    async def test_register_and_lookup(self):
        await self.registry.register(1, 'chan-a')
        self.assertEqual(self.registry.lookup(1), 'chan-a')
        self.assertIsNone(self.registry.lookup(2))
        self.assertEqual(self.registry.online_identities(), {1})

    async def test_last_connect_wins(self):
        await self.registry.register(1, 'chan-old')
        await self.registry.register(1, 'chan-new')
        self.assertEqual(self.registry.lookup(1), 'chan-new')
        self.assertEqual(self.registry.handles(), ['chan-new'])

    async def test_stale_disconnect_keeps_newer_connection(self):
        await self.registry.register(1, 'chan-old')
        await self.registry.register(1, 'chan-new')
        removed = await self.registry.unregister(1, 'chan-old')
        self.assertFalse(removed)
        self.assertEqual(self.registry.lookup(1), 'chan-new')

    async def test_unregister_current_handle(self):
        await self.registry.register(1, 'chan-a')
        removed = await self.registry.unregister(1, 'chan-a')
        self.assertTrue(removed)
        self.assertIsNone(self.registry.lookup(1))
        self.assertEqual(self.registry.online_identities(), set())

    async def test_at_most_one_handle_per_identity(self):
        sequence = [
            ('connect', 'h1'), ('connect', 'h2'), ('disconnect', 'h1'),
            ('connect', 'h3'), ('disconnect', 'h2'), ('disconnect', 'h3'), ('connect', 'h4'),
        ]
        latest_live = None
        for op, handle in sequence:
            if op == 'connect':
                await self.registry.register(7, handle)
                latest_live = handle
            else:
                await self.registry.unregister(7, handle)
                if handle == latest_live:
                    latest_live = None
            self.assertLessEqual(len(self.registry.handles()), 1)
            self.assertEqual(self.registry.lookup(7), latest_live)

    async def test_register_broadcasts_full_online_list(self):
        await self.registry.register(1, 'chan-a')
        await self.registry.register(2, 'chan-b')
        last_a = self.pusher.events_for('chan-a')[-1]
        last_b = self.pusher.events_for('chan-b')[-1]
        self.assertEqual(last_a, ('presence-update', {'online_user_ids': [1, 2]}))
        self.assertEqual(last_b, ('presence-update', {'online_user_ids': [1, 2]}))

    async def test_unregister_broadcasts_to_remaining(self):
        await self.registry.register(1, 'chan-a')
        await self.registry.register(2, 'chan-b')
        self.pusher.clear()
        await self.registry.unregister(2, 'chan-b')
        self.assertEqual(self.pusher.sent, [('chan-a', 'presence-update', {'online_user_ids': [1]})])

    async def test_stale_unregister_does_not_broadcast(self):
        await self.registry.register(1, 'chan-old')
        await self.registry.register(1, 'chan-new')
        self.pusher.clear()
        await self.registry.unregister(1, 'chan-old')
        self.assertEqual(self.pusher.sent, [])
