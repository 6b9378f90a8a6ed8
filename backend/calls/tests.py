from django.test import SimpleTestCase

from calls.relay import CallRelay, CallState
from chat.exceptions import NotAuthorized, NotFound, ValidationFailed
from chat.presence import PresenceRegistry
from chat.tests.fakes import FakeClock, FakePusher

CALLER, CALLEE, OTHER = 1, 2, 3


class CallRelayTestCase(SimpleTestCase):

    def setUp(self):
        self.pusher = FakePusher()
        self.clock = FakeClock()
        self.registry = PresenceRegistry(self.pusher)
        self.relay = CallRelay(self.registry, self.pusher, clock=self.clock)

    async def connect(self, *identities):
        for identity in identities:
            await self.registry.register(identity, f'chan-{identity}')
        self.pusher.clear()

    async def ringing_call(self, call_type='video'):
        await self.connect(CALLER, CALLEE)
        session = await self.relay.initiate(CALLER, CALLEE, call_type, signal={'sdp': 'offer'})
        self.pusher.clear()
        return session


class InitiateTests(CallRelayTestCase):

    async def test_rings_online_callee(self):
        await self.connect(CALLER, CALLEE)
        session = await self.relay.initiate(CALLER, CALLEE, 'video', signal={'sdp': 'offer'}, caller={'id': CALLER, 'full_name': 'Alice'})
        self.assertIs(session.state, CallState.RINGING)
        [(handle, event, payload)] = self.pusher.sent
        self.assertEqual((handle, event), ('chan-2', 'incoming-call'))
        self.assertEqual(payload['signal'], {'sdp': 'offer'})
        self.assertEqual(payload['caller']['full_name'], 'Alice')
        self.assertEqual(payload['call_type'], 'video')
        self.assertEqual(self.relay.active_calls(CALLEE), [session])

    async def test_offline_callee_aborts(self):
        await self.connect(CALLER)
        session = await self.relay.initiate(CALLER, CALLEE, 'audio', reply_handle='chan-1')
        self.assertIs(session.state, CallState.OFFLINE_ABORT)
        self.assertEqual(self.pusher.sent, [
            ('chan-1', 'callee-offline', {'call_id': session.call_id, 'callee_id': CALLEE, 'message': 'User is offline'}),
        ])
        self.assertIsNone(self.relay.get(session.call_id))
        self.assertEqual(self.relay.active_calls(CALLER), [])

    async def test_invalid_call_type(self):
        await self.connect(CALLER, CALLEE)
        with self.assertRaises(ValidationFailed):
            await self.relay.initiate(CALLER, CALLEE, 'hologram')

    async def test_cannot_call_self(self):
        await self.connect(CALLER)
        with self.assertRaises(ValidationFailed):
            await self.relay.initiate(CALLER, CALLER, 'audio')


class TransitionTests(CallRelayTestCase):

    async def test_accept_notifies_caller(self):
        session = await self.ringing_call()
        accepted = await self.relay.accept(CALLEE, session.call_id, signal={'sdp': 'answer'})
        self.assertIs(accepted.state, CallState.ACCEPTED)
        self.assertEqual(self.pusher.sent, [
            ('chan-1', 'call-accepted', {'call_id': session.call_id, 'callee_id': CALLEE, 'signal': {'sdp': 'answer'}}),
        ])

    async def test_only_callee_accepts(self):
        session = await self.ringing_call()
        with self.assertRaises(NotAuthorized):
            await self.relay.accept(CALLER, session.call_id)

    async def test_outsider_is_rejected(self):
        session = await self.ringing_call()
        with self.assertRaises(NotAuthorized):
            await self.relay.end(OTHER, session.call_id)

    async def test_reject_is_missed(self):
        session = await self.ringing_call()
        self.clock.advance(4)
        await self.relay.reject(CALLEE, session.call_id)
        self.assertIs(session.state, CallState.REJECTED)
        [(handle, event, payload)] = self.pusher.sent
        self.assertEqual((handle, event), ('chan-1', 'call-rejected'))
        self.assertEqual(payload['summary']['outcome'], 'missed')
        self.assertEqual(payload['summary']['duration'], 4)

    async def test_accept_by_caller_id(self):
        session = await self.ringing_call()
        accepted = await self.relay.accept(CALLEE, caller_id=CALLER)
        self.assertEqual(accepted.call_id, session.call_id)

    async def test_answered_call_duration_counts_from_accept(self):
        session = await self.ringing_call()
        self.clock.advance(5)
        await self.relay.accept(CALLEE, session.call_id)
        self.clock.advance(30)
        ended = await self.relay.end(CALLER, session.call_id)
        self.assertEqual(ended.outcome, 'answered')
        self.assertEqual(ended.duration(), 30)
        [(handle, event, payload)] = [s for s in self.pusher.sent if s[1] == 'call-ended']
        self.assertEqual(handle, 'chan-2')
        self.assertEqual(payload['ended_by'], CALLER)
        self.assertEqual(payload['summary']['state'], 'ended')
        self.assertIsNotNone(payload['summary']['accepted_at'])

    async def test_unanswered_end_is_missed(self):
        session = await self.ringing_call()
        self.clock.advance(12)
        ended = await self.relay.end(CALLER, peer_id=CALLEE)
        self.assertEqual(ended.call_id, session.call_id)
        self.assertEqual(ended.outcome, 'missed')
        self.assertEqual(ended.duration(), 12)
        self.assertIsNone(ended.summary()['accepted_at'])

    async def test_late_messages_after_end_are_ignored(self):
        session = await self.ringing_call()
        await self.relay.end(CALLER, session.call_id)
        self.pusher.clear()
        self.assertIsNone(await self.relay.accept(CALLEE, session.call_id))
        self.assertIsNone(await self.relay.reject(CALLEE, session.call_id))
        self.assertIsNone(await self.relay.end(CALLEE, session.call_id))
        self.assertFalse(await self.relay.signal(CALLEE, session.call_id, {'candidate': 'x'}))
        self.assertEqual(self.pusher.sent, [])
        self.assertEqual(session.state, CallState.ENDED)

    async def test_unknown_call_is_a_no_op(self):
        await self.connect(CALLER, CALLEE)
        self.assertIsNone(await self.relay.end(CALLER, 'nope'))

    async def test_push_follows_reconnect(self):
        session = await self.ringing_call()
        await self.registry.register(CALLER, 'chan-1-new')
        self.pusher.clear()
        await self.relay.accept(CALLEE, session.call_id)
        self.assertEqual(self.pusher.handles_for('call-accepted'), ['chan-1-new'])


class SignalTests(CallRelayTestCase):

    async def test_signal_relayed_to_counterpart(self):
        session = await self.ringing_call()
        await self.relay.accept(CALLEE, session.call_id)
        self.pusher.clear()
        relayed = await self.relay.signal(CALLER, session.call_id, {'candidate': 'abc'})
        self.assertTrue(relayed)
        self.assertEqual(self.pusher.sent, [
            ('chan-2', 'call-signal', {'call_id': session.call_id, 'from_id': CALLER, 'signal': {'candidate': 'abc'}}),
        ])

    async def test_signal_to_offline_counterpart(self):
        session = await self.ringing_call()
        await self.registry.unregister(CALLEE, 'chan-2')
        self.pusher.clear()
        self.assertFalse(await self.relay.signal(CALLER, session.call_id, {'candidate': 'abc'}))


class DisconnectTests(CallRelayTestCase):

    async def test_disconnect_ends_live_calls(self):
        session = await self.ringing_call()
        await self.relay.accept(CALLEE, session.call_id)
        self.clock.advance(8)
        self.pusher.clear()
        ended = await self.relay.disconnected(CALLEE)
        self.assertEqual(ended, [session])
        [(handle, event, payload)] = self.pusher.sent
        self.assertEqual((handle, event), ('chan-1', 'call-ended'))
        self.assertEqual(payload['reason'], 'disconnected')
        self.assertEqual(payload['summary']['duration'], 8)

    async def test_disconnect_without_calls(self):
        await self.connect(CALLER)
        self.assertEqual(await self.relay.disconnected(CALLER), [])


class SummaryTests(CallRelayTestCase):

    async def test_summary_of_finished_call(self):
        session = await self.ringing_call('audio')
        await self.relay.reject(CALLEE, session.call_id)
        summary = self.relay.summary(CALLER, session.call_id)
        self.assertEqual(summary['call_type'], 'audio')
        self.assertEqual(summary['state'], 'rejected')
        self.assertEqual(summary['outcome'], 'missed')

    async def test_unknown_call(self):
        with self.assertRaises(NotFound):
            self.relay.summary(CALLER, 'nope')

    async def test_finished_sessions_are_bounded(self):
        self.relay.retain = 2
        await self.connect(CALLER, CALLEE)
        ids = []
        for _ in range(3):
            session = await self.relay.initiate(CALLER, CALLEE, 'audio')
            await self.relay.end(CALLER, session.call_id)
            ids.append(session.call_id)
        self.assertIsNone(self.relay.get(ids[0]))
        self.assertIsNotNone(self.relay.get(ids[2]))
