import math

from accounts.models import DonorProfile


# -------- Blood compatibility (donor groups allowed for recipient) --------
COMPATIBLE_DONORS = {
    "O-": ("O-",),
    "O+": ("O-", "O+"),
    "A-": ("O-", "A-"),
    "A+": ("O-", "O+", "A-", "A+"),
    "B-": ("O-", "B-"),
    "B+": ("O-", "O+", "B-", "B+"),
    "AB-": ("O-", "A-", "B-", "AB-"),
    "AB+": ("O-", "O+", "A-", "A+", "B-", "B+", "AB-", "AB+"),
}


def compatible_blood_types(blood_type: str):
    """
    Donor blood types that can give to `blood_type`. Read-only lookup;
    unknown types get an empty list.
    """
    return [
        {"donorBloodType": bt, "isExactMatch": bt == blood_type}
        for bt in COMPATIBLE_DONORS.get((blood_type or "").strip().upper(), ())
    ]


def haversine_km(lat1, lon1, lat2, lon2):
    R = 6371.0
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return R * c


def available_donors_queryset(blood_type: str):
    donor_types = COMPATIBLE_DONORS.get((blood_type or "").strip().upper(), ())
    return (
        DonorProfile.objects
        .filter(
            is_available=True,
            user__is_active=True,
            user__is_donor=True,
            blood_type__in=donor_types,
        )
        .select_related("user")
    )


def find_matching_donors(record, radius_km=None, limit=50):
    """
    Compatible, available donors for a request.

    With `radius_km` and request coordinates, only donors with a known position
    inside the radius are kept, nearest first. Returns (profiles, distances)
    where distances maps user id -> km (rounded) when known.
    """
    qs = available_donors_queryset(record.blood_type)

    has_gps = record.latitude is not None and record.longitude is not None
    if radius_km is None or not has_gps:
        profiles = list(qs.order_by("-updated_at")[:limit])
        return profiles, {}

    ranked = []
    for p in qs.exclude(latitude__isnull=True).exclude(longitude__isnull=True):
        dist = haversine_km(record.latitude, record.longitude, p.latitude, p.longitude)
        if dist <= radius_km:
            ranked.append((dist, p))

    ranked.sort(key=lambda pair: pair[0])
    ranked = ranked[:limit]
    return [p for _, p in ranked], {p.user_id: round(d, 2) for d, p in ranked}
