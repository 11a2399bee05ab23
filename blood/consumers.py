import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.conf import settings
from django.contrib.auth.models import AnonymousUser

from .filters import RequestFilters
from .realtime import donor_group
from .repository import EmergencyRequestRepository
from .session import RequestSession
from .subscription import LiveSubscription
from .transform import record_to_json

logger = logging.getLogger(__name__)


def snapshot_payload(repository, result):
    return {
        "type": "SNAPSHOT",
        "mode": result.mode.value,
        "error": result.error,
        "totalCount": result.total_count,
        "requests": [record_to_json(r) for r in result.requests],
        "activeRequests": [r.id for r in repository.active_requests],
    }


class RequestFeedConsumer(AsyncJsonWebsocketConsumer):
    """
    Public emergency feed. Sends a snapshot on connect, then a fresh snapshot
    every time the request table changes (live mode only).

    Clients may send {"type": "FILTER", "status": [...], "urgency": [...],
    "bloodType": "O-", "limit": 20} to change what they watch.
    """
    async def connect(self):
        user = self.scope.get("user") or AnonymousUser()
        self.session = RequestSession.open(user)
        self.repository = EmergencyRequestRepository(self.session)
        self.subscription = None

        await self.accept()
        await self.refresh()
        await self._sync_subscription()

    async def disconnect(self, close_code):
        session = getattr(self, "session", None)
        if session is not None:
            await session.aclose()

    async def receive_json(self, content, **kwargs):
        msg_type = (content.get("type") or "").upper()
        if msg_type == "REFRESH":
            await self.refresh()
        elif msg_type == "FILTER":
            try:
                limit = int(content.get("limit") or getattr(settings, "JIWANDAN_DEFAULT_FETCH_LIMIT", 50))
            except (TypeError, ValueError):
                limit = getattr(settings, "JIWANDAN_DEFAULT_FETCH_LIMIT", 50)
            filters = RequestFilters(
                status=content.get("status") or RequestFilters().status,
                urgency=content.get("urgency") or (),
                blood_type=content.get("bloodType") or None,
                requester_id=content.get("requesterId") or None,
                limit=max(1, min(limit, 200)),
            )
            await self.refresh(filters)
        await self._sync_subscription()

    async def refresh(self, filters=None):
        result = await database_sync_to_async(self.repository.fetch)(filters)
        await self.send_json(snapshot_payload(self.repository, result))
        return result

    async def on_requests_changed(self, data):
        await self.refresh()
        await self._sync_subscription()

    async def _sync_subscription(self):
        # change-feed only while the data is live; fallback data never changes remotely
        wanted = bool(getattr(settings, "JIWANDAN_REALTIME_ENABLED", True)) and not self.repository.is_fallback
        if wanted and self.subscription is None:
            self.subscription = self.session.register(LiveSubscription(self.on_requests_changed))
            await self.subscription.subscribe()
        elif not wanted and self.subscription is not None:
            await self.subscription.unsubscribe()
            self.subscription = None


class DonorAlertConsumer(AsyncJsonWebsocketConsumer):
    """
    Each donor joins a private group: donor_<user_id>
    The matcher pushes request alerts here.
    """
    async def connect(self):
        user = self.scope.get("user", None)
        if not user or isinstance(user, AnonymousUser) or not user.is_authenticated:
            await self.close()
            return

        if not getattr(user, "is_donor", False):
            await self.close()
            return

        self.group_name = donor_group(user.id)
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()

    async def disconnect(self, close_code):
        if hasattr(self, "group_name"):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def donor_alert(self, event):
        await self.send_json(event.get("data", {}))
