"""
Call signaling relay: moves call setup/teardown control messages between
the two parties of a call. Media never passes through here and signal
payloads (SDP offers/answers, ICE candidates) are forwarded untouched.

Per call attempt:

    IDLE -> RINGING -> ACCEPTED -> ENDED
                    -> REJECTED
                    -> ENDED (caller hung up / party dropped before answer)
    IDLE -> OFFLINE_ABORT (callee not connected, nothing retained)

Finished sessions are remembered for a while so late accept/reject/end
messages for them are recognised and ignored instead of re-notifying.
"""
import enum
import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone

from chat.exceptions import NotAuthorized, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

CALL_TYPES = ('audio', 'video')


class CallState(str, enum.Enum):
    IDLE = 'idle'
    RINGING = 'ringing'
    ACCEPTED = 'accepted'
    ENDED = 'ended'
    REJECTED = 'rejected'
    OFFLINE_ABORT = 'offline_abort'

    @property
    def is_terminal(self):
        return self in (CallState.ENDED, CallState.REJECTED, CallState.OFFLINE_ABORT)


@dataclass
class CallSession:
    caller_id: int
    callee_id: int
    call_type: str
    call_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: CallState = CallState.IDLE
    ringing_at: float = None
    accepted_at: float = None
    ended_at: float = None
    outcome: str = ''
    ended_by: int = None

    def involves(self, identity):
        return identity in (self.caller_id, self.callee_id)

    def counterpart(self, identity):
        return self.callee_id if identity == self.caller_id else self.caller_id

    def duration(self):
        """Seconds since accept for answered calls, since ringing otherwise."""
        start = self.accepted_at if self.accepted_at is not None else self.ringing_at
        if start is None or self.ended_at is None:
            return 0
        return max(0, int(round(self.ended_at - start)))

    def summary(self):
        return {
            'call_id': self.call_id,
            'caller_id': self.caller_id,
            'callee_id': self.callee_id,
            'call_type': self.call_type,
            'state': self.state.value,
            'accepted_at': (
                datetime.fromtimestamp(self.accepted_at, tz=timezone.utc).isoformat()
                if self.accepted_at is not None else None
            ),
            'duration': self.duration(),
            'outcome': self.outcome,
        }


class CallRelay:

    def __init__(self, registry, pusher, clock=time.time, retain=500):
        self.registry = registry
        self.pusher = pusher
        self.clock = clock
        self.retain = retain
        self._live = {}
        self._finished = OrderedDict()

    # ── LOOKUPS ──

    def get(self, call_id):
        return self._live.get(call_id) or self._finished.get(call_id)

    def active_calls(self, identity):
        return [s for s in self._live.values() if s.involves(identity)]

    def _find(self, actor_id, call_id=None, peer_id=None):
        if call_id:
            session = self.get(call_id)
            if session is None:
                return None
            if not session.involves(actor_id):
                raise NotAuthorized('You are not a party to this call.', code='NOT_CALL_PARTY')
            return session
        # Without a call id: the most recent live call between actor and peer
        for session in reversed(list(self._live.values())):
            if session.involves(actor_id) and (peer_id is None or session.counterpart(actor_id) == peer_id):
                return session
        return None

    async def _push_to(self, identity, event, payload):
        # Looked up fresh every time: the party may have reconnected
        handle = self.registry.lookup(identity)
        if handle is None:
            return False
        await self.pusher.push(handle, event, payload)
        return True

    def _finish(self, session, state, outcome, ended_by=None):
        session.state = state
        session.outcome = outcome
        session.ended_by = ended_by
        session.ended_at = self.clock()
        self._live.pop(session.call_id, None)
        self._finished[session.call_id] = session
        while len(self._finished) > self.retain:
            self._finished.popitem(last=False)

    # ── TRANSITIONS ──

    async def initiate(self, caller_id, callee_id, call_type, signal=None, caller=None, reply_handle=None):
        if call_type not in CALL_TYPES:
            raise ValidationFailed('call_type must be audio or video.', code='INVALID_CALL_TYPE')
        if callee_id is None or callee_id == caller_id:
            raise ValidationFailed('A call needs another user to call.', code='INVALID_CALLEE')

        session = CallSession(caller_id=caller_id, callee_id=callee_id, call_type=call_type)
        callee_handle = self.registry.lookup(callee_id)
        if callee_handle is None:
            session.state = CallState.OFFLINE_ABORT
            handle = reply_handle or self.registry.lookup(caller_id)
            if handle is not None:
                await self.pusher.push(handle, 'callee-offline', {
                    'call_id': session.call_id,
                    'callee_id': callee_id,
                    'message': 'User is offline',
                })
            logger.info(f'Call {session.call_id}: {callee_id} offline, aborted')
            return session

        session.state = CallState.RINGING
        session.ringing_at = self.clock()
        self._live[session.call_id] = session
        await self.pusher.push(callee_handle, 'incoming-call', {
            'call_id': session.call_id,
            'caller_id': caller_id,
            'caller': caller or {'id': caller_id},
            'call_type': call_type,
            'signal': signal,
        })
        logger.info(f'Call {session.call_id}: {caller_id} ringing {callee_id} ({call_type})')
        return session

    async def accept(self, actor_id, call_id=None, caller_id=None, signal=None):
        session = self._find(actor_id, call_id, peer_id=caller_id)
        if session is None or session.state is not CallState.RINGING:
            return None
        if actor_id != session.callee_id:
            raise NotAuthorized('Only the callee can accept a call.', code='NOT_CALLEE')
        session.state = CallState.ACCEPTED
        session.accepted_at = self.clock()
        await self._push_to(session.caller_id, 'call-accepted', {
            'call_id': session.call_id,
            'callee_id': session.callee_id,
            'signal': signal,
        })
        logger.info(f'Call {session.call_id}: accepted')
        return session

    async def reject(self, actor_id, call_id=None, caller_id=None):
        session = self._find(actor_id, call_id, peer_id=caller_id)
        if session is None or session.state is not CallState.RINGING:
            return None
        if actor_id != session.callee_id:
            raise NotAuthorized('Only the callee can reject a call.', code='NOT_CALLEE')
        self._finish(session, CallState.REJECTED, 'missed', ended_by=actor_id)
        await self._push_to(session.caller_id, 'call-rejected', {
            'call_id': session.call_id,
            'summary': session.summary(),
        })
        logger.info(f'Call {session.call_id}: rejected')
        return session

    async def end(self, actor_id, call_id=None, peer_id=None, reason='hangup'):
        session = self._find(actor_id, call_id, peer_id=peer_id)
        if session is None or session.state.is_terminal:
            return None
        outcome = 'answered' if session.state is CallState.ACCEPTED else 'missed'
        self._finish(session, CallState.ENDED, outcome, ended_by=actor_id)
        await self._push_to(session.counterpart(actor_id), 'call-ended', {
            'call_id': session.call_id,
            'ended_by': actor_id,
            'reason': reason,
            'summary': session.summary(),
        })
        logger.info(f'Call {session.call_id}: ended by {actor_id} ({reason}, {outcome}, {session.duration()}s)')
        return session

    async def signal(self, actor_id, call_id, payload):
        """Relay renegotiation / ICE payloads between the parties of a live call."""
        session = self._find(actor_id, call_id)
        if session is None or session.state.is_terminal:
            return False
        return await self._push_to(session.counterpart(actor_id), 'call-signal', {
            'call_id': session.call_id,
            'from_id': actor_id,
            'signal': payload,
        })

    async def disconnected(self, identity):
        """The identity's connection is gone: end every call it was in."""
        ended = []
        for session in self.active_calls(identity):
            if await self.end(identity, session.call_id, reason='disconnected'):
                ended.append(session)
        return ended

    def summary(self, actor_id, call_id):
        session = self._find(actor_id, call_id)
        if session is None:
            raise NotFound('Call not found.', code='CALL_NOT_FOUND')
        return session.summary()
