import logging

logger = logging.getLogger(__name__)


class FanoutEngine:
    """
    Pushes already-persisted changes to whoever is online.

    Callers hand over the recipient ids computed from the durable store at
    push time; this class only intersects them with the presence registry.
    Offline users get nothing: they see the change on their next fetch.
    """

    def __init__(self, registry, pusher):
        self.registry = registry
        self.pusher = pusher

    async def deliver_direct(self, message, receiver_id):
        """Push `new-direct-message` to the receiver only. Returns True if pushed."""
        handle = self.registry.lookup(receiver_id)
        if handle is None:
            logger.debug(f'Receiver {receiver_id} offline, message {message.get("id")} waits for fetch')
            return False
        await self.pusher.push(handle, 'new-direct-message', {'message': message})
        return True

    async def deliver_to_group(self, message, member_ids, exclude_id):
        """Push `new-group-message` to (members - sender) that are online."""
        return await self.notify_users(
            'new-group-message', {'message': message}, member_ids, exclude_id=exclude_id,
        )

    async def deliver_delta(self, event, payload, recipient_ids, exclude_id):
        """Small mutation events (delete, reaction, pin) to the live recipient set."""
        return await self.notify_users(event, payload, recipient_ids, exclude_id=exclude_id)

    async def notify_users(self, event, payload, user_ids, exclude_id=None):
        delivered = []
        for user_id in dict.fromkeys(user_ids):
            if user_id == exclude_id:
                continue
            handle = self.registry.lookup(user_id)
            if handle is None:
                continue
            await self.pusher.push(handle, event, payload)
            delivered.append(user_id)
        return delivered
