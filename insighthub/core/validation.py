"""
Boolean predicates behind the settings, team and webhook forms.

The API enforces them server-side and the client applies them before sending
a request, so both sides agree on what a valid form looks like.
"""

from typing import Iterable, Optional
from urllib.parse import urlparse

from insighthub.core.constants import (
    ROLE_ADMIN, ROLE_OWNER, PASSWORD_MIN_LENGTH, SEARCH_MIN_LENGTH,
    WEBHOOK_EVENTS, WEBHOOK_WILDCARD,
)


def passwords_match(new_password: str, confirm_password: str) -> bool:
    return new_password == confirm_password


def is_valid_password(password: Optional[str], min_length: int = PASSWORD_MIN_LENGTH) -> bool:
    return bool(password) and len(password) >= min_length


def has_events(events: Optional[Iterable[str]]) -> bool:
    return events is not None and len(list(events)) > 0


def is_known_event(event: str) -> bool:
    return event == WEBHOOK_WILDCARD or event in WEBHOOK_EVENTS


def unknown_events(events: Iterable[str]) -> list:
    return [e for e in events if not is_known_event(e)]


def is_valid_webhook_url(url: Optional[str]) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_successful_delivery(status_code: Optional[int]) -> bool:
    """A delivery counts as successful only for a 2xx response."""
    return status_code is not None and 200 <= status_code < 300


def _role(user_or_role) -> Optional[str]:
    return getattr(user_or_role, "role", user_or_role)


def is_owner(user_or_role) -> bool:
    return _role(user_or_role) == ROLE_OWNER


def is_owner_or_admin(user_or_role) -> bool:
    return _role(user_or_role) in (ROLE_OWNER, ROLE_ADMIN)


def can_change_role(member_or_role) -> bool:
    """The owner's role is only changed through an ownership transfer."""
    return _role(member_or_role) != ROLE_OWNER


def should_search(query: Optional[str], min_length: int = SEARCH_MIN_LENGTH) -> bool:
    return query is not None and len(query.strip()) >= min_length


def classify_action(action: str) -> str:
    if "delete" in action or "removed" in action or "revoked" in action:
        return "delete"
    if "create" in action or "registered" in action or "invited" in action:
        return "create"
    if "update" in action or "changed" in action or "transferred" in action:
        return "update"
    return "other"
