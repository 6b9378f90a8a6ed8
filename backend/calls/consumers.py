import logging

logger = logging.getLogger(__name__)


class CallSignalingMixin:
    """
    Call actions of the chat socket. Calls ride on the same connection as
    chat so the presence handle doubles as the call signaling address.

    Client sends:
        {"action": "call-initiate", "callee_id": 2, "call_type": "video", "signal": {...}}
        {"action": "call-accept", "call_id": "hex", "signal": {...}}
        {"action": "call-reject", "call_id": "hex"}
        {"action": "call-end", "call_id": "hex"}
        {"action": "call-signal", "call_id": "hex", "signal": {...}}
        {"action": "call-summary", "call_id": "hex"}

    call-accept / call-reject / call-end may give "caller_id" / "peer_id"
    instead of "call_id".

    Server sends: incoming-call, call-accepted, call-rejected, call-ended,
    callee-offline, call-signal.
    """

    def call_handlers(self):
        return {
            'call-initiate': self._handle_call_initiate,
            'call-accept': self._handle_call_accept,
            'call-reject': self._handle_call_reject,
            'call-end': self._handle_call_end,
            'call-signal': self._handle_call_signal,
            'call-summary': self._handle_call_summary,
        }

    async def _handle_call_initiate(self, data):
        session = await self.realtime.calls.initiate(
            caller_id=self.user.id,
            callee_id=self._int_or_none(data.get('callee_id', data.get('target_id'))),
            call_type=data.get('call_type', 'audio'),
            signal=data.get('signal'),
            caller=self.profile,
            reply_handle=self.channel_name,
        )
        await self._ack(data, call_id=session.call_id, state=session.state.value)

    async def _handle_call_accept(self, data):
        session = await self.realtime.calls.accept(
            self.user.id,
            call_id=data.get('call_id'),
            caller_id=self._int_or_none(data.get('caller_id')),
            signal=data.get('signal'),
        )
        await self._ack(data, call_id=session.call_id if session else data.get('call_id'), changed=session is not None)

    async def _handle_call_reject(self, data):
        session = await self.realtime.calls.reject(
            self.user.id,
            call_id=data.get('call_id'),
            caller_id=self._int_or_none(data.get('caller_id')),
        )
        await self._ack(data, call_id=session.call_id if session else data.get('call_id'), changed=session is not None)

    async def _handle_call_end(self, data):
        session = await self.realtime.calls.end(
            self.user.id,
            call_id=data.get('call_id'),
            peer_id=self._int_or_none(data.get('peer_id')),
        )
        await self._ack(
            data,
            call_id=session.call_id if session else data.get('call_id'),
            changed=session is not None,
            summary=session.summary() if session else None,
        )

    async def _handle_call_signal(self, data):
        relayed = await self.realtime.calls.signal(self.user.id, data.get('call_id'), data.get('signal'))
        await self._ack(data, call_id=data.get('call_id'), relayed=relayed)

    async def _handle_call_summary(self, data):
        summary = self.realtime.calls.summary(self.user.id, data.get('call_id'))
        await self._ack(data, call_id=summary['call_id'], summary=summary)

    async def end_calls_on_disconnect(self):
        ended = await self.realtime.calls.disconnected(self.user.id)
        for session in ended:
            logger.info(f'Call {session.call_id} ended: {self.user.email} disconnected')
