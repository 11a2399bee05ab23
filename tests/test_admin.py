import pytest
from django import forms
from django.contrib import admin
from django.test import RequestFactory

from blood.admin import EmergencyRequestAdmin, EmergencyRequestAdminForm
from blood.models import EmergencyRequest
from blood.repository import EmergencyRequestRepository
from blood.session import RequestSession

pytestmark = pytest.mark.django_db


@pytest.fixture
def model_admin():
    return EmergencyRequestAdmin(EmergencyRequest, admin.site)


@pytest.fixture
def admin_request(volunteer):
    request = RequestFactory().post("/admin/blood/emergencyrequest/")
    request.user = volunteer
    return request


def test_admin_save_cannot_reopen_cancelled_request(model_admin, admin_request, make_request, requester):
    obj = make_request()
    EmergencyRequestRepository(RequestSession.open(requester)).cancel(obj.pk, "Donor arranged by family")

    obj.refresh_from_db()
    obj.status = "pending"
    obj.cancellation_reason = ""
    model_admin.save_model(admin_request, obj, None, True)

    obj.refresh_from_db()
    assert obj.status == "cancelled"
    assert obj.cancellation_reason == "Donor arranged by family"


def test_lifecycle_fields_are_read_only(model_admin, admin_request, make_request):
    obj = make_request()
    readonly = model_admin.get_readonly_fields(admin_request, obj)
    for name in ("status", "matched_donors_count", "fulfilled_units", "cancellation_reason"):
        assert name in readonly
    assert "patient_name" not in readonly

    obj.status = "cancelled"
    closed = model_admin.get_readonly_fields(admin_request, obj)
    assert "patient_name" in closed
    assert "units_needed" in closed
    assert "is_verified" not in closed


def test_admin_edit_keeps_delivered_units(model_admin, admin_request, make_request):
    obj = make_request(units_needed=3, fulfilled_units=2, status="partially_fulfilled")

    obj.fulfilled_units = 0
    obj.units_needed = 2
    model_admin.save_model(admin_request, obj, None, True)

    obj.refresh_from_db()
    assert obj.fulfilled_units == 2
    assert obj.status == "fulfilled"
    assert obj.fulfilled_at is not None


@pytest.mark.parametrize("units,message", [
    (1, "already delivered"),
    (0, "between"),
    (11, "between"),
])
def test_admin_form_rejects_units_outside_range(make_request, units, message):
    obj = make_request(units_needed=3, fulfilled_units=2, status="partially_fulfilled")
    form = EmergencyRequestAdminForm(instance=obj)
    form.cleaned_data = {"units_needed": units}

    with pytest.raises(forms.ValidationError) as exc:
        form.clean_units_needed()
    assert message in str(exc.value)


def test_admin_form_accepts_units_at_delivered_count(make_request):
    obj = make_request(units_needed=3, fulfilled_units=2, status="partially_fulfilled")
    form = EmergencyRequestAdminForm(instance=obj)
    form.cleaned_data = {"units_needed": 2}
    assert form.clean_units_needed() == 2
