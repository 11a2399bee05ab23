"""
Emergency request repository: the only way views and consumers read or
change emergency requests.

Reads degrade to the in-memory fallback store when the database fails or has
nothing to show; writes go to whichever backend the last fetch used and raise
on failure. Every write patches the local snapshot first, reconciles it with
what the backend stored, and restores the previous snapshot if the write fails.
"""
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import Enum
from functools import partial
from typing import List, Optional

from django.conf import settings
from django.db import DatabaseError, InterfaceError, OperationalError, connection, models, transaction
from django.db.models import Case, F, Value, When
from django.db.models.functions import Least
from django.utils import timezone

from hospitals.models import Hospital

from .exceptions import (
    RequestMutationError,
    RequestNotFound,
    RequestStateError,
    RequestValidationError,
)
from .fallback import default_store
from .filters import RequestFilters
from .forms import EmergencyRequestInputForm, EmergencyRequestUpdateForm
from .models import (
    ACTIVE_STATUSES,
    CANCELLED,
    DONORS_FOUND,
    FULFILLED,
    MAX_UNITS,
    MATCHING,
    PARTIALLY_FULFILLED,
    PENDING,
    EmergencyRequest,
    default_expiry,
    effective_status,
    priority_for,
    statuses_before,
)
from .realtime import UPDATE, push_requests_changed
from .transform import ROW_FIELDS, EmergencyRequestRecord, transform_row

logger = logging.getLogger(__name__)


class DataMode(str, Enum):
    LIVE = "live"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class FetchResult:
    requests: List[EmergencyRequestRecord]
    mode: DataMode
    error: Optional[str]
    total_count: int


def form_errors(form) -> dict:
    return {field: [str(e) for e in errs] for field, errs in form.errors.items()}


def apply_fulfillment(record, units, now):
    """
    Add delivered units, never past units_needed. Reaching units_needed
    closes the request as fulfilled and stamps fulfilled_at.
    """
    total = min(record.fulfilled_units + units, record.units_needed)
    done = total >= record.units_needed
    return replace(
        record,
        fulfilled_units=total,
        status=FULFILLED if done else PARTIALLY_FULFILLED,
        fulfilled_at=now if done else record.fulfilled_at,
        updated_at=now,
    )


def _state_message(status, action):
    return f"This request is {status.replace('_', ' ')} and cannot be {action}."


class EmergencyRequestRepository:
    """
    One repository per consuming view / socket. Not thread-safe: the snapshot
    (`requests`) is owned by whoever holds the repository.
    """

    def __init__(self, session, store=None):
        self.session = session
        self.store = store if store is not None else default_store()
        self.requests: List[EmergencyRequestRecord] = []
        self.mode = DataMode.LIVE
        self.error: Optional[str] = None
        self.total_count = 0
        self.filters = RequestFilters()

    # ---------------- reads ----------------
    def fetch(self, filters: Optional[RequestFilters] = None) -> FetchResult:
        """Never raises. Falls back to sample data on error or empty result."""
        if filters is not None:
            self.filters = filters
        filters = self.filters

        try:
            rows, count = self._with_retry(self._query_live, filters)
        except Exception as exc:
            logger.warning("Emergency request query failed, using fallback data: %s", exc)
            return self._use_fallback(filters, error=str(exc) or exc.__class__.__name__)

        if not rows:
            logger.info("No live emergency requests for %s, using fallback data", filters)
            return self._use_fallback(filters)

        self.requests = [transform_row(r) for r in rows]
        self.total_count = count or len(self.requests)
        self.mode = DataMode.LIVE
        self.error = None
        return self._result()

    def use_fallback(self, filters: Optional[RequestFilters] = None) -> FetchResult:
        """Switch to the sample data without touching the database."""
        if filters is not None:
            self.filters = filters
        return self._use_fallback(self.filters)

    def use_live(self):
        """Send the next writes to the database regardless of the last fetch."""
        self.mode = DataMode.LIVE
        self.error = None

    @staticmethod
    def is_live_id(request_id) -> bool:
        try:
            uuid.UUID(str(request_id))
        except ValueError:
            return False
        return True

    def get(self, request_id) -> EmergencyRequestRecord:
        local = self._local(request_id)
        if local is not None:
            return local
        if self.mode is DataMode.FALLBACK:
            raise RequestNotFound(request_id)
        return self._write("load", self._reload, self._pk(request_id))

    @property
    def is_fallback(self):
        return self.mode is DataMode.FALLBACK

    @property
    def active_requests(self) -> List[EmergencyRequestRecord]:
        return [r for r in self.requests if r.current_status in ACTIVE_STATUSES]

    def user_requests(self, user_id=None) -> List[EmergencyRequestRecord]:
        if not user_id:
            return []
        user_id = str(user_id)
        return [r for r in self.requests if r.requester_id == user_id]

    def _result(self):
        return FetchResult(
            requests=list(self.requests),
            mode=self.mode,
            error=self.error,
            total_count=self.total_count,
        )

    def _use_fallback(self, filters, error=None):
        self.requests = self.store.query(filters)
        self.total_count = len(self.requests)
        self.mode = DataMode.FALLBACK
        self.error = error
        return self._result()

    def _query_live(self, filters):
        if filters.requester_id is not None and not filters.requester_id.isdigit():
            # not a database user id, nothing live can match
            return [], 0

        qs = EmergencyRequest.objects.filter(filters.as_q())
        total = qs.count()
        rows = list(
            qs.order_by("-priority_score", "-created_at")
            .values(*ROW_FIELDS)[:filters.limit]
        )
        return rows, total

    def _with_retry(self, fn, *args):
        retries = int(getattr(settings, "JIWANDAN_FETCH_RETRIES", 2))
        delay = float(getattr(settings, "JIWANDAN_FETCH_BACKOFF_SECONDS", 0.2))
        attempt = 0
        while True:
            try:
                return fn(*args)
            except (OperationalError, InterfaceError) as exc:
                if attempt >= retries:
                    raise
                attempt += 1
                logger.info("Transient database error (%s), retry %d/%d in %.2fs", exc, attempt, retries, delay)
                if not connection.in_atomic_block:
                    connection.close_if_unusable_or_obsolete()
                time.sleep(delay)
                delay *= 2

    # ---------------- writes ----------------
    def create(self, data: dict) -> EmergencyRequestRecord:
        self.session.ensure_open()

        form = EmergencyRequestInputForm(data)
        if not form.is_valid():
            raise RequestValidationError(form_errors(form))
        cleaned = form.cleaned_data

        now = timezone.now()
        provisional = self._new_record(cleaned, now)

        with self._optimistic(provisional, prepend=True):
            if self.is_fallback:
                stored = self._create_fallback(cleaned, provisional)
            else:
                stored = self._write("create", self._create_live, cleaned, provisional)
            self._swap(provisional.id, stored)

        logger.info("Emergency request %s created (%s, %s)", stored.id, stored.blood_type, stored.urgency)
        return stored

    def update(self, request_id, data: dict) -> EmergencyRequestRecord:
        self.session.ensure_open()

        form = EmergencyRequestUpdateForm(data)
        if not form.is_valid():
            raise RequestValidationError(form_errors(form))
        changes = form.changes()

        now = timezone.now()
        local = self._local(request_id)
        patch = None
        if local is not None and changes and local.current_status in ACTIVE_STATUSES:
            patch = self._patched(local, changes, now)

        with self._optimistic(patch):
            if self.is_fallback:
                stored = self._update_fallback(request_id, changes, now)
            else:
                stored = self._write("update", self._update_live, request_id, changes, now)
            self._put(stored)
        return stored

    def cancel(self, request_id, reason: str = "") -> EmergencyRequestRecord:
        """Non-terminal -> cancelled. Cancelling twice is a no-op; there is no uncancel."""
        self.session.ensure_open()
        reason = (reason or "").strip()[:255]
        now = timezone.now()

        local = self._local(request_id)
        patch = None
        if local is not None and local.current_status in ACTIVE_STATUSES:
            patch = replace(local, status=CANCELLED, cancellation_reason=reason, updated_at=now)

        changes = {"status": CANCELLED, "cancellation_reason": reason}
        with self._optimistic(patch):
            if self.is_fallback:
                updated, stored = self._transition_fallback(
                    request_id, ACTIVE_STATUSES, lambda r: replace(r, updated_at=now, **changes)
                )
            else:
                updated, stored = self._write(
                    "cancel", self._transition_live, request_id, ACTIVE_STATUSES, changes, now
                )
            if not updated and stored.status != CANCELLED:
                raise RequestStateError(_state_message(stored.current_status, "cancelled"))
            self._put(stored)

        if updated:
            logger.info("Emergency request %s cancelled", stored.id)
        return stored

    def fulfill(self, request_id, units) -> EmergencyRequestRecord:
        """
        Record `units` delivered. The live path is one conditional UPDATE so
        concurrent fulfilments from different clients add up instead of
        overwriting each other.
        """
        self.session.ensure_open()
        units = self._clean_units(units)
        now = timezone.now()

        local = self._local(request_id)
        patch = None
        if local is not None and local.current_status in ACTIVE_STATUSES:
            patch = apply_fulfillment(local, units, now)

        with self._optimistic(patch):
            if self.is_fallback:
                updated, stored = self._transition_fallback(
                    request_id, ACTIVE_STATUSES, lambda r: apply_fulfillment(r, units, now)
                )
            else:
                updated, stored = self._write("fulfill", self._fulfill_live, request_id, units, now)
            if not updated:
                raise RequestStateError(_state_message(stored.current_status, "fulfilled"))
            self._put(stored)

        logger.info(
            "Emergency request %s: %d/%d units fulfilled (%s)",
            stored.id, stored.fulfilled_units, stored.units_needed, stored.status,
        )
        return stored

    def begin_matching(self, request_id) -> EmergencyRequestRecord:
        """pending -> matching, when the matcher starts looking for donors."""
        self.session.ensure_open()
        now = timezone.now()
        allowed = statuses_before(MATCHING)
        changes = {"status": MATCHING}

        local = self._local(request_id)
        patch = replace(local, updated_at=now, **changes) if local is not None and local.current_status in allowed else None

        with self._optimistic(patch):
            if self.is_fallback:
                updated, stored = self._transition_fallback(
                    request_id, allowed, lambda r: replace(r, updated_at=now, **changes)
                )
            else:
                updated, stored = self._write("update", self._transition_live, request_id, allowed, changes, now)
            if not updated:
                raise RequestStateError(_state_message(stored.current_status, "matched"))
            self._put(stored)
        return stored

    def record_matches(self, request_id, donors_count: int) -> EmergencyRequestRecord:
        """pending/matching -> donors_found once at least one donor was matched."""
        self.session.ensure_open()
        donors_count = int(donors_count)
        if donors_count < 1:
            return self.get(request_id)

        now = timezone.now()
        allowed = statuses_before(DONORS_FOUND)
        changes = {"status": DONORS_FOUND, "matched_donors_count": donors_count}

        local = self._local(request_id)
        patch = replace(local, updated_at=now, **changes) if local is not None and local.current_status in allowed else None

        with self._optimistic(patch):
            if self.is_fallback:
                updated, stored = self._transition_fallback(
                    request_id, allowed, lambda r: replace(r, updated_at=now, **changes)
                )
            else:
                updated, stored = self._write("update", self._transition_live, request_id, allowed, changes, now)
            if not updated:
                raise RequestStateError(_state_message(stored.current_status, "matched"))
            self._put(stored)
        return stored

    # ---------------- live backend ----------------
    def _create_live(self, cleaned, provisional):
        hospital = None
        if cleaned.get("hospital_id"):
            hospital = Hospital.objects.filter(pk=cleaned["hospital_id"], is_active=True).first()
            if hospital is None:
                raise RequestValidationError({"hospital_id": ["Select a valid hospital."]})

        obj = EmergencyRequest(
            requester_id=self.session.user_id,
            patient_name=provisional.patient_name,
            patient_age=provisional.patient_age,
            patient_gender=provisional.patient_gender,
            blood_type=provisional.blood_type,
            units_needed=provisional.units_needed,
            blood_component=provisional.blood_component,
            urgency=provisional.urgency,
            hospital=hospital,
            hospital_name=provisional.hospital_name,
            hospital_address=provisional.hospital_address,
            contact_name=provisional.contact_name,
            contact_phone=provisional.contact_phone,
            contact_relation=provisional.contact_relation,
            needed_by=provisional.needed_by,
            expires_at=provisional.expires_at,
            created_at=provisional.created_at,
            updated_at=provisional.updated_at,
        )
        obj.save()
        return self._reload(obj.pk)

    def _update_live(self, request_id, changes, now):
        pk = self._pk(request_id)
        with transaction.atomic():
            obj = EmergencyRequest.objects.select_for_update().filter(pk=pk).first()
            if obj is None:
                raise RequestNotFound(request_id)
            status = effective_status(obj.status, obj.expires_at, now)
            if status not in ACTIVE_STATUSES:
                raise RequestStateError(_state_message(status, "edited"))

            self._check_units(changes, obj.fulfilled_units)
            for name, value in changes.items():
                setattr(obj, name, value)
            fields = set(changes) | {"updated_at"}
            if obj.units_needed <= obj.fulfilled_units:
                obj.status = FULFILLED
                obj.fulfilled_at = now
                fields |= {"status", "fulfilled_at"}
            obj.updated_at = now
            obj.save(update_fields=fields)
        return self._reload(pk)

    def _transition_live(self, request_id, allowed, changes, now):
        pk = self._pk(request_id)
        updated = (
            EmergencyRequest.objects
            .filter(pk=pk, status__in=allowed, expires_at__gt=now)
            .update(updated_at=now, **changes)
        )
        record = self._reload(pk)
        if updated:
            transaction.on_commit(partial(push_requests_changed, UPDATE, new=record))
        return updated, record

    def _fulfill_live(self, request_id, units, now):
        pk = self._pk(request_id)
        # CASE/LEAST see the row as it was before this UPDATE
        completes = When(fulfilled_units__gte=F("units_needed") - units, then=Value(FULFILLED))
        completes_at = When(fulfilled_units__gte=F("units_needed") - units, then=Value(now))
        updated = (
            EmergencyRequest.objects
            .filter(pk=pk, status__in=ACTIVE_STATUSES, expires_at__gt=now)
            .update(
                fulfilled_units=Least(F("fulfilled_units") + units, F("units_needed")),
                status=Case(completes, default=Value(PARTIALLY_FULFILLED), output_field=models.CharField()),
                fulfilled_at=Case(completes_at, default=F("fulfilled_at"), output_field=models.DateTimeField()),
                updated_at=now,
            )
        )
        record = self._reload(pk)
        if updated:
            transaction.on_commit(partial(push_requests_changed, UPDATE, new=record))
        return updated, record

    def _reload(self, pk) -> EmergencyRequestRecord:
        row = EmergencyRequest.objects.filter(pk=pk).values(*ROW_FIELDS).first()
        if row is None:
            raise RequestNotFound(pk)
        return transform_row(row)

    @staticmethod
    def _pk(request_id):
        try:
            return uuid.UUID(str(request_id))
        except ValueError:
            raise RequestNotFound(request_id)

    def _write(self, action, fn, *args):
        try:
            return fn(*args)
        except DatabaseError as exc:
            logger.error("Failed to %s emergency request: %s", action, exc)
            raise RequestMutationError(f"Failed to {action} request: {exc}") from exc

    # ---------------- fallback backend ----------------
    def _create_fallback(self, cleaned, provisional):
        if cleaned.get("hospital_id"):
            # no hospital directory offline; keep it a free-text request
            missing = [f for f in ("hospital_name", "hospital_address") if not cleaned.get(f)]
            if missing:
                raise RequestValidationError(
                    {f: ["Hospital directory is unavailable, enter this manually."] for f in missing}
                )
        return self.store.add(provisional)

    def _update_fallback(self, request_id, changes, now):
        current = self.store.get(request_id)
        if current is None:
            raise RequestNotFound(request_id)
        if current.current_status not in ACTIVE_STATUSES:
            raise RequestStateError(_state_message(current.current_status, "edited"))
        self._check_units(changes, current.fulfilled_units)
        return self.store.replace(self._patched(current, changes, now))

    def _transition_fallback(self, request_id, allowed, build):
        current = self.store.get(request_id)
        if current is None:
            raise RequestNotFound(request_id)
        if current.current_status not in allowed:
            return 0, current
        return 1, self.store.replace(build(current))

    # ---------------- snapshot helpers ----------------
    def _new_record(self, cleaned, now):
        return EmergencyRequestRecord(
            id=f"local-{uuid.uuid4().hex}",
            requester_id=self.session.user_id,
            requester_name=self.session.display_name,
            requester_email=self.session.email,
            patient_name=cleaned["patient_name"],
            patient_age=cleaned.get("patient_age"),
            patient_gender=cleaned.get("patient_gender"),
            blood_type=cleaned["blood_type"],
            units_needed=cleaned["units_needed"],
            blood_component=cleaned.get("blood_component") or "whole_blood",
            urgency=cleaned["urgency"],
            priority_score=priority_for(cleaned["urgency"]),
            hospital_id=None,
            hospital_name=cleaned.get("hospital_name") or "",
            hospital_address=cleaned.get("hospital_address") or "",
            latitude=None,
            longitude=None,
            contact_name=cleaned["contact_name"],
            contact_phone=cleaned["contact_phone"],
            contact_relation=cleaned["contact_relation"],
            status=PENDING,
            matched_donors_count=0,
            fulfilled_units=0,
            cancellation_reason="",
            is_verified=False,
            needed_by=cleaned.get("needed_by"),
            expires_at=cleaned.get("expires_at") or default_expiry(),
            fulfilled_at=None,
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def _patched(record, changes, now):
        patched = replace(record, updated_at=now, **changes)
        patched = replace(patched, priority_score=priority_for(patched.urgency))
        if patched.units_needed <= patched.fulfilled_units:
            patched = replace(patched, status=FULFILLED, fulfilled_at=now)
        return patched

    @staticmethod
    def _check_units(changes, fulfilled_units):
        units = changes.get("units_needed")
        if units is not None and units < fulfilled_units:
            raise RequestValidationError(
                {"units_needed": [f"{fulfilled_units} units were already delivered."]}
            )

    @staticmethod
    def _clean_units(units):
        error = RequestValidationError({"units": [f"Enter a whole number of units from 1 to {MAX_UNITS}."]})
        if isinstance(units, bool):
            raise error
        try:
            value = int(str(units).strip())
        except ValueError:
            raise error
        if not 1 <= value <= MAX_UNITS:
            raise error
        return value

    def _local(self, request_id):
        request_id = str(request_id)
        for r in self.requests:
            if r.id == request_id:
                return r
        if self.is_fallback:
            return self.store.get(request_id)
        return None

    def _put(self, record):
        for i, r in enumerate(self.requests):
            if r.id == record.id:
                self.requests[i] = record
                return

    def _swap(self, old_id, record):
        for i, r in enumerate(self.requests):
            if r.id == old_id:
                self.requests[i] = record
                return
        self.requests.insert(0, record)

    @contextmanager
    def _optimistic(self, record, prepend=False):
        previous = list(self.requests)
        if record is not None:
            for i, r in enumerate(self.requests):
                if r.id == record.id:
                    self.requests[i] = record
                    break
            else:
                if prepend:
                    self.requests.insert(0, record)
        try:
            yield
        except Exception:
            self.requests = previous
            raise
