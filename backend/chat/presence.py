import logging

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """
    Who is online: user id -> the one connection handle that currently
    speaks for that user.

    A newer connection replaces an older one (last connect wins). A
    disconnect only removes the entry if it still points at the
    disconnecting handle, so a late disconnect from a superseded socket
    cannot knock the user offline.

    Every change broadcasts the full online list to every registered handle.
    All access happens on the event loop, so no locking is needed.
    """

    def __init__(self, pusher):
        self._pusher = pusher
        self._handles = {}

    async def register(self, identity, handle):
        previous = self._handles.get(identity)
        self._handles[identity] = handle
        if previous and previous != handle:
            logger.info(f'User {identity} reconnected, superseding {previous}')
        await self.broadcast()

    async def unregister(self, identity, handle):
        """Returns True if the entry was removed."""
        if self._handles.get(identity) != handle:
            return False
        del self._handles[identity]
        await self.broadcast()
        return True

    def lookup(self, identity):
        return self._handles.get(identity)

    def is_current(self, identity, handle):
        return handle is not None and self._handles.get(identity) == handle

    def online_identities(self):
        return set(self._handles)

    def handles(self):
        return list(self._handles.values())

    async def broadcast(self):
        online = sorted(self._handles)
        for handle in self.handles():
            await self._pusher.push(handle, 'presence-update', {'online_user_ids': online})
