from django.conf import settings
from django.core.management.base import BaseCommand

from blood.exceptions import EmergencyRequestError
from blood.filters import RequestFilters
from blood.matching import find_matching_donors
from blood.models import MATCHING, PENDING
from blood.realtime import alert_donors
from blood.repository import EmergencyRequestRepository
from blood.session import RequestSession


def _match_with_widening_radius(record, radii):
    """Nearest ring first: 5km -> 10km -> configured radius. No GPS -> blood type only."""
    if record.latitude is None or record.longitude is None:
        return find_matching_donors(record)

    for radius in radii:
        donors, distances = find_matching_donors(record, radius_km=radius)
        if donors:
            return donors, distances
    return [], {}


class Command(BaseCommand):
    help = "Match open emergency requests to donors: pending -> matching -> donors_found, alerting matched donors."

    def add_arguments(self, parser):
        parser.add_argument("--limit", type=int, default=100, help="Max requests to process in one run.")
        parser.add_argument("--radius-km", type=float, default=None, help="Outer search radius.")

    def handle(self, *args, **options):
        outer = options["radius_km"] or float(getattr(settings, "JIWANDAN_MATCH_RADIUS_KM", 25))
        radii = sorted({r for r in (5.0, 10.0, outer) if r <= outer})

        repo = EmergencyRequestRepository(RequestSession.anonymous())
        repo.fetch(RequestFilters(status={PENDING, MATCHING}, limit=options["limit"]))
        if repo.is_fallback:
            if repo.error:
                self.stderr.write(f"Database unavailable: {repo.error}")
            else:
                self.stdout.write("No open requests to match.")
            return

        matched = 0
        waiting = 0
        alerted = 0

        for record in list(repo.requests):
            if record.current_status not in (PENDING, MATCHING):
                continue
            try:
                if record.status == PENDING:
                    record = repo.begin_matching(record.id)

                donors, distances = _match_with_widening_radius(record, radii)
                if not donors:
                    waiting += 1
                    continue

                alerted += alert_donors(record, donors, distances)
                repo.record_matches(record.id, len(donors))
                matched += 1
            except EmergencyRequestError as e:
                self.stderr.write(f"Request {record.id}: {e.message}")

        self.stdout.write(self.style.SUCCESS(
            f"Matching complete. Donors found: {matched}, still matching: {waiting}, alerts sent: {alerted}"
        ))
