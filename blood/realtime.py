import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from .transform import record_to_json

logger = logging.getLogger(__name__)

REQUESTS_GROUP = "emergency_requests"
CHANGE_EVENT = "requests.changed"

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


def donor_group(user_id) -> str:
    return f"donor_{user_id}"


def _group_send(group, message) -> bool:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return False
    try:
        async_to_sync(channel_layer.group_send)(group, message)
    except Exception:
        # a dead layer must never fail the write that triggered the push
        logger.warning("Realtime push to %s failed", group, exc_info=True)
        return False
    return True


def push_requests_changed(event_type: str, new=None, old=None) -> bool:
    """
    Notify every change-feed listener that the request table moved.
    `new` / `old` are records (or None); listeners only use this as a
    "something changed" signal and refetch.
    """
    data = {
        "eventType": event_type,
        "new": record_to_json(new) if new is not None else None,
        "old": record_to_json(old) if old is not None else None,
    }
    return _group_send(REQUESTS_GROUP, {"type": CHANGE_EVENT, "data": data})


def alert_donors(record, donors, distances=None) -> int:
    """
    Push a match alert to each donor profile's private group.
    Offline donors simply miss it; the request stays visible in the feed.
    """
    distances = distances or {}
    sent = 0
    for profile in donors:
        payload = {
            "type": "DONOR_ALERT",
            "requestId": record.id,
            "bloodType": record.blood_type,
            "unitsNeeded": record.units_needed,
            "urgency": record.urgency,
            "hospital": record.hospital_name,
            "address": record.hospital_address,
            "distanceKm": distances.get(profile.user_id),
        }
        if _group_send(donor_group(profile.user_id), {"type": "donor.alert", "data": payload}):
            sent += 1
    return sent
