from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from django.conf import settings
from django.db.models import Q

from .models import ACTIVE_STATUSES


def _default_limit():
    return int(getattr(settings, "JIWANDAN_DEFAULT_FETCH_LIMIT", 50))


def _as_set(values):
    # a bare string is one value, not a sequence of characters
    if isinstance(values, str):
        return frozenset([values]) if values else frozenset()
    return frozenset(values or ())


@dataclass(frozen=True)
class RequestFilters:
    """
    Same predicates for the live query and the fallback store:
      - status / urgency: set membership (empty set = no filter)
      - blood_type: exact, case-sensitive match ("all" = no filter)
      - requester_id: exact match
    """
    status: FrozenSet[str] = frozenset(ACTIVE_STATUSES)
    urgency: FrozenSet[str] = frozenset()
    blood_type: Optional[str] = None
    requester_id: Optional[str] = None
    limit: int = field(default_factory=_default_limit)

    def __post_init__(self):
        # accept lists, tuples or a single value from callers
        object.__setattr__(self, "status", _as_set(self.status))
        object.__setattr__(self, "urgency", _as_set(self.urgency))
        if self.requester_id is not None:
            object.__setattr__(self, "requester_id", str(self.requester_id))

    @property
    def has_blood_type(self) -> bool:
        return bool(self.blood_type) and self.blood_type != "all"

    def as_q(self) -> Q:
        q = Q()
        if self.status:
            q &= Q(status__in=sorted(self.status))
        if self.urgency:
            q &= Q(urgency__in=sorted(self.urgency))
        if self.has_blood_type:
            q &= Q(blood_type=self.blood_type)
        if self.requester_id is not None:
            q &= Q(requester_id=self.requester_id)
        return q

    def matches(self, record) -> bool:
        if self.status and record.status not in self.status:
            return False
        if self.urgency and record.urgency not in self.urgency:
            return False
        if self.has_blood_type and record.blood_type != self.blood_type:
            return False
        if self.requester_id is not None and record.requester_id != self.requester_id:
            return False
        return True
