import json
from functools import wraps

from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_POST

from .exceptions import EmergencyRequestError, RequestValidationError
from .filters import RequestFilters
from .matching import compatible_blood_types, find_matching_donors
from .repository import EmergencyRequestRepository
from .session import RequestSession
from .transform import payload_to_input, record_to_json


def _json_error(exc: EmergencyRequestError):
    body = {"error": exc.message}
    if isinstance(exc, RequestValidationError):
        body["errors"] = exc.errors
    return JsonResponse(body, status=exc.status_code)


def _body(request):
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except ValueError:
        raise RequestValidationError({"__all__": ["Request body must be JSON."]}, message="Invalid JSON body.")
    if not isinstance(data, dict):
        raise RequestValidationError({"__all__": ["Request body must be a JSON object."]}, message="Invalid JSON body.")
    return data


def api_login_required(view_func):
    @wraps(view_func)
    def _wrapped(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return JsonResponse({"error": "Please sign in to continue."}, status=401)
        return view_func(request, *args, **kwargs)
    return _wrapped


def _repository(request):
    return EmergencyRequestRepository(RequestSession.open(request.user))


def _repository_for(request, request_id):
    """Live ids are UUIDs; anything else can only live in the fallback store."""
    repo = _repository(request)
    if not repo.is_live_id(request_id):
        repo.use_fallback()
    return repo


def _can_manage(session, record):
    """Requester or platform staff (admin / moderator / volunteer)."""
    return session.is_staff or (session.user_id is not None and session.user_id == record.requester_id)


def _filters_from_query(request):
    q = request.GET
    try:
        limit = int(q.get("limit") or getattr(settings, "JIWANDAN_DEFAULT_FETCH_LIMIT", 50))
    except ValueError:
        limit = getattr(settings, "JIWANDAN_DEFAULT_FETCH_LIMIT", 50)

    requester_id = q.get("requester") or None
    if q.get("mine") and request.user.is_authenticated:
        requester_id = str(request.user.pk)

    return RequestFilters(
        status=q.getlist("status") or RequestFilters().status,
        urgency=q.getlist("urgency"),
        blood_type=q.get("blood_type") or None,
        requester_id=requester_id,
        limit=max(1, min(limit, 200)),
    )


# 1. Feed (public)
@require_GET
def request_list_api(request):
    repo = _repository(request)
    result = repo.fetch(_filters_from_query(request))
    user_id = request.user.pk if request.user.is_authenticated else None
    return JsonResponse({
        "mode": result.mode.value,
        "error": result.error,
        "totalCount": result.total_count,
        "requests": [record_to_json(r) for r in result.requests],
        "activeRequests": [r.id for r in repo.active_requests],
        "userRequests": [r.id for r in repo.user_requests(user_id)],
    })


# 2. Create (signed-in requester)
@require_POST
@api_login_required
def request_create_api(request):
    repo = _repository(request)
    repo.fetch()
    if repo.is_fallback and repo.error is None:
        # database reachable, just empty: the new request belongs there
        repo.use_live()
    try:
        record = repo.create(payload_to_input(_body(request)))
    except EmergencyRequestError as exc:
        return _json_error(exc)
    return JsonResponse({"mode": repo.mode.value, "request": record_to_json(record)}, status=201)


def _managed_action(action):
    """Load the request, check the caller may manage it, run `action(repo, record, data)`."""
    def decorator(view_func):
        @require_POST
        @api_login_required
        @wraps(view_func)
        def _wrapped(request, request_id):
            repo = _repository_for(request, request_id)
            try:
                data = _body(request)
                record = repo.get(request_id)
                if action == "fulfill":
                    allowed = repo.session.is_staff
                else:
                    allowed = _can_manage(repo.session, record)
                if not allowed:
                    return JsonResponse({"error": "You are not allowed to change this request."}, status=403)
                record = view_func(repo, record, data)
            except EmergencyRequestError as exc:
                return _json_error(exc)
            return JsonResponse({"mode": repo.mode.value, "request": record_to_json(record)})
        return _wrapped
    return decorator


@_managed_action("update")
def request_update_api(repo, record, data):
    return repo.update(record.id, payload_to_input(data))


@_managed_action("cancel")
def request_cancel_api(repo, record, data):
    return repo.cancel(record.id, data.get("reason", ""))


@_managed_action("fulfill")
def request_fulfill_api(repo, record, data):
    return repo.fulfill(record.id, data.get("units"))


# 3. Matching lookup
@require_GET
def request_matches_api(request, request_id):
    repo = _repository_for(request, request_id)
    try:
        record = repo.get(request_id)
    except EmergencyRequestError as exc:
        return _json_error(exc)

    body = {
        "requestId": record.id,
        "compatibleBloodTypes": compatible_blood_types(record.blood_type),
        "donorsCount": 0,
    }
    if not repo.is_fallback:
        donors, _ = find_matching_donors(
            record,
            radius_km=getattr(settings, "JIWANDAN_MATCH_RADIUS_KM", 25),
        )
        body["donorsCount"] = len(donors)
    return JsonResponse(body)
