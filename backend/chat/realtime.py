import logging

from asgiref.sync import async_to_sync

from calls.relay import CallRelay
from .fanout import FanoutEngine
from .presence import PresenceRegistry
from .push import ChannelLayerPusher
from .typing_relay import TypingRelay

logger = logging.getLogger(__name__)


class Realtime:
    """
    Owner of the in-memory realtime services of one server process:
    presence registry, fan-out engine, call relay and typing relay,
    all sharing one push transport.
    """

    def __init__(self, pusher=None):
        self.pusher = pusher or ChannelLayerPusher()
        self.registry = PresenceRegistry(self.pusher)
        self.fanout = FanoutEngine(self.registry, self.pusher)
        self.calls = CallRelay(self.registry, self.pusher)
        self.typing = TypingRelay(self.registry, self.pusher)

    async def publish(self, notifications, exclude_id=None):
        """Push [(event, payload, user_ids), ...] to the online users among user_ids."""
        for event, payload, user_ids in notifications:
            await self.fanout.notify_users(event, payload, user_ids, exclude_id=exclude_id)

    def publish_sync(self, notifications, exclude_id=None):
        """For sync callers (DRF views)."""
        async_to_sync(self.publish)(notifications, exclude_id=exclude_id)


_default = None


def get_realtime():
    global _default
    if _default is None:
        _default = Realtime()
    return _default
