from dataclasses import replace
from datetime import timedelta
from unittest import mock

import pytest
from django.db import OperationalError
from django.utils import timezone

from blood.exceptions import (
    RequestNotFound,
    RequestStateError,
    RequestValidationError,
    SessionClosedError,
)
from blood.filters import RequestFilters
from blood.repository import DataMode, EmergencyRequestRepository
from blood.session import RequestSession


@pytest.fixture
def repo(store):
    repo = EmergencyRequestRepository(RequestSession(user_id="user-1", display_name="Ram Prasad"), store=store)
    repo.use_fallback()
    return repo


def test_database_error_serves_sample_data_with_error(store):
    repo = EmergencyRequestRepository(RequestSession.anonymous(), store=store)
    with mock.patch.object(EmergencyRequestRepository, "_query_live", side_effect=OperationalError("db down")):
        result = repo.fetch()

    assert result.mode is DataMode.FALLBACK
    assert repo.is_fallback
    assert result.error == "db down"
    assert [r.id for r in result.requests] == ["mock-req-3", "mock-req-1", "mock-req-2", "mock-req-4"]
    assert result.total_count == 4


def test_fetch_retries_transient_errors(store, settings):
    settings.JIWANDAN_FETCH_RETRIES = 2
    repo = EmergencyRequestRepository(RequestSession.anonymous(), store=store)
    calls = {"n": 0}

    def flaky(self, filters):
        calls["n"] += 1
        if calls["n"] < 3:
            raise OperationalError("server closed the connection")
        return [{"id": "00000000-0000-0000-0000-000000000001", "status": "pending"}], 1

    with mock.patch.object(EmergencyRequestRepository, "_query_live", flaky), \
            mock.patch("blood.repository.connection"):
        result = repo.fetch()

    assert calls["n"] == 3
    assert result.mode is DataMode.LIVE
    assert result.error is None
    assert len(result.requests) == 1


@pytest.mark.django_db
def test_empty_database_serves_sample_data_without_error(store):
    repo = EmergencyRequestRepository(RequestSession.anonymous(), store=store)
    result = repo.fetch(RequestFilters(status=["pending"]))

    assert result.mode is DataMode.FALLBACK
    assert result.error is None
    assert [r.id for r in result.requests] == ["mock-req-2"]


def test_derived_views(repo):
    assert [r.id for r in repo.active_requests] == ["mock-req-3", "mock-req-1", "mock-req-2", "mock-req-4"]
    assert [r.id for r in repo.user_requests("user-1")] == ["mock-req-1"]
    assert repo.user_requests(None) == []


def test_partial_then_complete_fulfilment(repo):
    first = repo.fulfill("mock-req-1", 1)
    assert first.fulfilled_units == 1
    assert first.status == "partially_fulfilled"
    assert first.fulfilled_at is None

    second = repo.fulfill("mock-req-1", 5)
    assert second.fulfilled_units == 3
    assert second.status == "fulfilled"
    assert second.fulfilled_at is not None

    with pytest.raises(RequestStateError):
        repo.fulfill("mock-req-1", 1)
    assert repo.store.get("mock-req-1").fulfilled_units == 3


@pytest.mark.parametrize("units", [0, -2, "two", None, True, 1.5, 11, 10**20])
def test_fulfil_rejects_bad_unit_counts(repo, units):
    with pytest.raises(RequestValidationError) as exc:
        repo.fulfill("mock-req-1", units)
    assert "units" in exc.value.errors
    assert repo.store.get("mock-req-1").fulfilled_units == 0


def test_cancel_is_terminal(repo):
    cancelled = repo.cancel("mock-req-2", "Donor arranged by family")
    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_reason == "Donor arranged by family"

    again = repo.cancel("mock-req-2")
    assert again.status == "cancelled"
    assert again.cancellation_reason == "Donor arranged by family"

    with pytest.raises(RequestStateError):
        repo.fulfill("mock-req-2", 1)
    with pytest.raises(RequestStateError):
        repo.update("mock-req-2", {"urgency": "critical"})


def test_fulfilled_request_cannot_be_cancelled(repo):
    with pytest.raises(RequestStateError):
        repo.cancel("mock-req-5")
    assert repo.store.get("mock-req-5").status == "fulfilled"


def test_create_prepends_local_request(repo, request_input):
    record = repo.create(request_input)

    assert record.id.startswith("local-")
    assert record.status == "pending"
    assert record.priority_score == 75
    assert record.requester_id == "user-1"
    assert record.requester_name == "Ram Prasad"
    assert repo.requests[0] == record
    assert repo.store.get(record.id) == record


def test_invalid_create_leaves_snapshot_untouched(repo, request_input):
    before = list(repo.requests)
    bad = dict(request_input, patient_name="", units_needed=11, blood_type="C+")

    with pytest.raises(RequestValidationError) as exc:
        repo.create(bad)

    assert set(exc.value.errors) >= {"patient_name", "units_needed", "blood_type"}
    assert repo.requests == before


def test_free_text_request_needs_hospital_details(repo, request_input):
    with pytest.raises(RequestValidationError) as exc:
        repo.create(dict(request_input, hospital_name="", hospital_address=""))
    assert set(exc.value.errors) == {"hospital_name", "hospital_address"}


def test_update_recomputes_priority_and_ignores_unknown_keys(repo):
    updated = repo.update("mock-req-2", {"urgency": "life_threatening", "status": "fulfilled"})
    assert updated.priority_score == 100
    assert updated.status == "pending"
    assert repo.store.get("mock-req-2").urgency == "life_threatening"


def test_update_without_editable_keys_still_stamps_the_row(repo):
    stale = replace(repo.store.get("mock-req-2"), updated_at=timezone.now() - timedelta(hours=1))
    repo.store.replace(stale)

    updated = repo.update("mock-req-2", {"status": "fulfilled"})

    assert updated.status == "pending"
    assert updated.updated_at > stale.updated_at
    assert repo.store.get("mock-req-2").updated_at == updated.updated_at


def test_create_defaults_to_three_day_expiry(repo, request_input):
    record = repo.create(request_input)
    assert abs(record.expires_at - (record.created_at + timedelta(hours=72))) < timedelta(seconds=5)


def test_update_cannot_drop_below_delivered_units(repo):
    with pytest.raises(RequestValidationError) as exc:
        repo.update("mock-req-3", {"units_needed": 1})
    assert "units_needed" in exc.value.errors

    done = repo.update("mock-req-3", {"units_needed": 2})
    assert done.status == "fulfilled"
    assert done.fulfilled_at is not None


def test_matching_progression(repo):
    matching = repo.begin_matching("mock-req-2")
    assert matching.status == "matching"

    found = repo.record_matches("mock-req-2", 4)
    assert found.status == "donors_found"
    assert found.matched_donors_count == 4

    with pytest.raises(RequestStateError):
        repo.begin_matching("mock-req-2")


def test_unknown_request(repo):
    with pytest.raises(RequestNotFound):
        repo.fulfill("mock-req-404", 1)
    with pytest.raises(RequestNotFound):
        repo.get("mock-req-404")


def test_closed_session_rejects_writes(repo, request_input):
    repo.session.close()
    with pytest.raises(SessionClosedError):
        repo.create(request_input)
    with pytest.raises(SessionClosedError):
        repo.cancel("mock-req-2")
