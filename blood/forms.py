from django import forms
from django.utils import timezone

from accounts.models import BLOOD_TYPES
from .models import (
    BLOOD_COMPONENTS,
    GENDERS,
    MAX_UNITS,
    MIN_UNITS,
    URGENCY_CHOICES,
)

UPDATABLE_FIELDS = (
    "patient_name",
    "patient_age",
    "units_needed",
    "urgency",
    "hospital_name",
    "hospital_address",
    "contact_name",
    "contact_phone",
)


class EmergencyRequestInputForm(forms.Form):
    """
    Validates a new request before it reaches either backend.
    Plain Form (not ModelForm) so validation never needs the database.
    """
    patient_name = forms.CharField(max_length=120)
    patient_age = forms.IntegerField(required=False, min_value=0, max_value=130)
    patient_gender = forms.ChoiceField(choices=GENDERS, required=False)

    blood_type = forms.ChoiceField(choices=BLOOD_TYPES)
    units_needed = forms.IntegerField(min_value=MIN_UNITS, max_value=MAX_UNITS)
    blood_component = forms.ChoiceField(choices=BLOOD_COMPONENTS, required=False)
    urgency = forms.ChoiceField(choices=URGENCY_CHOICES)

    hospital_id = forms.IntegerField(required=False, min_value=1)
    hospital_name = forms.CharField(max_length=200, required=False)
    hospital_address = forms.CharField(max_length=255, required=False)

    contact_name = forms.CharField(max_length=120)
    contact_phone = forms.CharField(max_length=30)
    contact_relation = forms.CharField(max_length=50)

    needed_by = forms.DateTimeField(required=False)
    expires_at = forms.DateTimeField(required=False)

    def clean_blood_component(self):
        return self.cleaned_data.get("blood_component") or "whole_blood"

    def clean_patient_gender(self):
        return self.cleaned_data.get("patient_gender") or None

    def clean_expires_at(self):
        value = self.cleaned_data.get("expires_at")
        if value is not None and value <= timezone.now():
            raise forms.ValidationError("Expiry must be in the future.")
        return value

    def clean(self):
        cleaned = super().clean()
        # free-text requests must say where the patient is
        if not cleaned.get("hospital_id"):
            if not cleaned.get("hospital_name"):
                self.add_error("hospital_name", "This field is required.")
            if not cleaned.get("hospital_address"):
                self.add_error("hospital_address", "This field is required.")
        return cleaned


class EmergencyRequestUpdateForm(forms.Form):
    """
    Partial update. Only the whitelisted fields that were actually sent
    are validated and returned by `changes()`.
    """
    patient_name = forms.CharField(max_length=120, required=False)
    patient_age = forms.IntegerField(required=False, min_value=0, max_value=130)
    units_needed = forms.IntegerField(required=False, min_value=MIN_UNITS, max_value=MAX_UNITS)
    urgency = forms.ChoiceField(choices=URGENCY_CHOICES, required=False)
    hospital_name = forms.CharField(max_length=200, required=False)
    hospital_address = forms.CharField(max_length=255, required=False)
    contact_name = forms.CharField(max_length=120, required=False)
    contact_phone = forms.CharField(max_length=30, required=False)

    # provided but blank -> error (patient_age may be cleared)
    NON_BLANK = set(UPDATABLE_FIELDS) - {"patient_age"}

    def __init__(self, data=None, *args, **kwargs):
        data = {k: v for k, v in (data or {}).items() if k in UPDATABLE_FIELDS}
        self.provided = set(data)
        super().__init__(data, *args, **kwargs)

    def clean(self):
        cleaned = super().clean()
        for name in self.provided & self.NON_BLANK:
            if name in cleaned and cleaned.get(name) in (None, ""):
                self.add_error(name, "This field cannot be blank.")
        return cleaned

    def changes(self):
        return {name: self.cleaned_data.get(name) for name in self.provided if name in self.cleaned_data}
