from functools import partial

from django.db import transaction
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from .models import EmergencyRequest
from .realtime import DELETE, INSERT, UPDATE, push_requests_changed
from .transform import ROW_FIELDS, transform_row


def _record(instance):
    # join columns are left out; listeners refetch anyway
    return transform_row({name: getattr(instance, name) for name in ROW_FIELDS if "__" not in name})


@receiver(post_save, sender=EmergencyRequest)
def emergency_request_saved(sender, instance, created, raw=False, **kwargs):
    if raw:
        return
    event = INSERT if created else UPDATE
    transaction.on_commit(partial(push_requests_changed, event, new=_record(instance)))


@receiver(post_delete, sender=EmergencyRequest)
def emergency_request_deleted(sender, instance, **kwargs):
    transaction.on_commit(partial(push_requests_changed, DELETE, old=_record(instance)))
