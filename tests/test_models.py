from datetime import timedelta

import pytest
from django.utils import timezone

from blood.models import (
    DONORS_FOUND,
    EXPIRED,
    FULFILLED,
    MATCHING,
    PENDING,
    STATUS_RANK,
    effective_status,
    priority_for,
    statuses_before,
)


@pytest.mark.parametrize("urgency,score", [
    ("normal", 25),
    ("urgent", 50),
    ("critical", 75),
    ("life_threatening", 100),
])
def test_priority_follows_urgency(urgency, score):
    assert priority_for(urgency) == score


def test_open_request_past_deadline_reads_expired():
    now = timezone.now()
    assert effective_status(PENDING, now - timedelta(minutes=1), now) == EXPIRED
    assert effective_status(PENDING, now + timedelta(minutes=1), now) == PENDING
    assert effective_status(FULFILLED, now - timedelta(days=1), now) == FULFILLED


@pytest.mark.django_db
def test_save_recomputes_priority_score(make_request):
    obj = make_request(urgency="urgent")
    assert obj.priority_score == 50

    obj.urgency = "life_threatening"
    obj.save(update_fields=["urgency"])
    obj.refresh_from_db()
    assert obj.priority_score == 100


@pytest.mark.django_db
def test_hospital_sourced_request_copies_directory_entry(make_request):
    from hospitals.models import Hospital

    hospital = Hospital.objects.create(
        name="Teaching Hospital",
        address="Maharajgunj, Kathmandu",
        latitude=27.736,
        longitude=85.330,
    )
    obj = make_request(hospital=hospital, hospital_name="typo", hospital_address="")
    assert obj.hospital_name == "Teaching Hospital"
    assert obj.hospital_address == "Maharajgunj, Kathmandu"
    assert obj.latitude == 27.736


def test_status_only_moves_forward():
    assert statuses_before(MATCHING) == (PENDING,)
    assert statuses_before(DONORS_FOUND) == (PENDING, MATCHING)
    assert statuses_before(PENDING) == ()
    assert set(statuses_before(FULFILLED)).isdisjoint({"cancelled", EXPIRED})
    assert max(STATUS_RANK, key=STATUS_RANK.get) == FULFILLED
