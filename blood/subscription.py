import asyncio
import logging

from channels.layers import get_channel_layer

from .realtime import CHANGE_EVENT, REQUESTS_GROUP

logger = logging.getLogger(__name__)


class LiveSubscription:
    """
    Change-feed on the emergency request table.

    `on_change` is an async callable awaited with the notification data
    ({"eventType": INSERT|UPDATE|DELETE, "new": ..., "old": ...}) for every
    change; consumers use it to refetch wholesale. Notifications are handled
    one at a time in arrival order.
    """

    def __init__(self, on_change, group=REQUESTS_GROUP, channel_layer=None):
        self.on_change = on_change
        self.group = group
        self.channel_layer = channel_layer
        self.channel_name = None
        self._task = None
        self._closed = False

    @property
    def is_active(self):
        return self._task is not None and not self._task.done() and not self._closed

    async def subscribe(self):
        if self._closed:
            raise RuntimeError("Subscription was already closed")
        if self._task is not None:
            return self

        if self.channel_layer is None:
            self.channel_layer = get_channel_layer()
        if self.channel_layer is None:
            logger.warning("No channel layer configured, live updates disabled")
            return self

        self.channel_name = await self.channel_layer.new_channel()
        await self.channel_layer.group_add(self.group, self.channel_name)
        self._task = asyncio.ensure_future(self._listen())
        return self

    async def _listen(self):
        while not self._closed:
            message = await self.channel_layer.receive(self.channel_name)
            if message.get("type") != CHANGE_EVENT:
                continue
            try:
                await self.on_change(message.get("data") or {})
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Live subscription callback failed for %s", self.group)

    async def unsubscribe(self):
        """Safe to call any number of times, before or after the layer went away."""
        if self._closed:
            return
        self._closed = True

        task, self._task = self._task, None
        # called from inside on_change: the listener loop ends once the callback returns
        own_task = task is not None and task is asyncio.current_task()
        if task is not None and not own_task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.warning("Live subscription listener ended with an error", exc_info=True)

        if self.channel_layer is not None and self.channel_name is not None:
            try:
                await self.channel_layer.group_discard(self.group, self.channel_name)
            except Exception:
                logger.warning("Could not leave group %s", self.group, exc_info=True)
        self.channel_name = None

