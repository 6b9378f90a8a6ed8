class TypingRelay:
    """
    Ephemeral typing indicators, never stored and never acknowledged.

    Direct chats go to the peer if online. Group typing is sent to every
    connection except the typist, carrying the group id so clients outside
    the group ignore it. There is no server-side timeout: a missing
    stop event leaves the indicator on until the client clears it.
    """

    def __init__(self, registry, pusher):
        self.registry = registry
        self.pusher = pusher

    async def typing(self, from_identity, peer_id=None, group_id=None, sender_handle=None):
        return await self._relay('peer-typing', from_identity, peer_id, group_id, sender_handle)

    async def stop_typing(self, from_identity, peer_id=None, group_id=None, sender_handle=None):
        return await self._relay('peer-stopped-typing', from_identity, peer_id, group_id, sender_handle)

    async def _relay(self, event, from_identity, peer_id, group_id, sender_handle):
        if group_id is not None:
            payload = {'user_id': from_identity, 'group_id': str(group_id)}
            own_handle = sender_handle or self.registry.lookup(from_identity)
            handles = [h for h in self.registry.handles() if h != own_handle]
        else:
            payload = {'user_id': from_identity}
            handle = self.registry.lookup(peer_id)
            handles = [handle] if handle else []
        for handle in handles:
            await self.pusher.push(handle, event, payload)
        return len(handles)
