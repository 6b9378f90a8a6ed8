import logging

from channels.exceptions import ChannelFull
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)


class ChannelLayerPusher:
    """
    Sends one outbound event to one connection handle (a Channels channel name).

    Fire-and-forget: a full or vanished channel just loses the event, the
    client reconciles on its next fetch.
    """

    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    async def push(self, handle, event, payload):
        try:
            await self.channel_layer.send(handle, {
                'type': 'chat.push',
                'event': event,
                'payload': payload,
            })
        except ChannelFull:
            logger.warning(f'Dropped {event} for {handle}: channel full')
            return False
        return True
