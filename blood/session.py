import logging

from .exceptions import SessionClosedError

logger = logging.getLogger(__name__)


class RequestSession:
    """
    Who is acting on emergency requests, built once on sign-in and handed to
    each repository. A closed session rejects writes; `aclose()` (socket
    teardown) also stops every live subscription registered against it.
    """

    def __init__(self, user_id=None, display_name=None, email=None, is_staff=False):
        self.user_id = None if user_id is None else str(user_id)
        self.display_name = display_name or None
        self.email = email or None
        self.is_staff = is_staff
        self.is_open = True
        self._subscriptions = []

    @classmethod
    def open(cls, user):
        if user is None or not getattr(user, "is_authenticated", False):
            return cls.anonymous()
        return cls(
            user_id=user.pk,
            display_name=getattr(user, "display_name", None) or user.get_username(),
            email=user.email,
            is_staff=bool(user.is_staff or getattr(user, "role", "USER") in ("ADMIN", "MODERATOR", "VOLUNTEER")),
        )

    @classmethod
    def anonymous(cls):
        return cls()

    @property
    def is_authenticated(self):
        return self.user_id is not None

    def ensure_open(self):
        if not self.is_open:
            raise SessionClosedError()

    def register(self, subscription):
        self.ensure_open()
        self._subscriptions.append(subscription)
        return subscription

    def close(self):
        """Mark closed. Subscriptions are torn down by `aclose()` from async code."""
        self.is_open = False

    async def aclose(self):
        self.is_open = False
        subs, self._subscriptions = self._subscriptions, []
        for sub in subs:
            try:
                await sub.unsubscribe()
            except Exception:
                logger.exception("Failed to tear down live subscription on session close")

    def __repr__(self):
        state = "open" if self.is_open else "closed"
        return f"<RequestSession user={self.user_id or 'anonymous'} {state}>"
