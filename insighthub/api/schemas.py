"""Request bodies. Field names are snake_case in Python and camelCase on the wire."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from insighthub.core.constants import (
    API_KEY_EXPIRY_OPTIONS, ASSIGNABLE_ROLES, DASHBOARD_LAYOUTS, MAX_BATCH_EVENTS, NOTIFICATION_TYPES,
    REGISTER_PASSWORD_MIN_LENGTH, SUBSCRIPTION_TIERS, WIDGET_REFRESH_MAX, WIDGET_REFRESH_MIN,
    WIDGET_TYPES,
)
from insighthub.core.validation import has_events, is_valid_webhook_url, unknown_events


class Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _lower(value: str) -> str:
    return value.lower()


# ── Auth & users ──────────────────────────────────────────
class LoginBody(Body):
    email: EmailStr
    password: str = Field(min_length=1)

    normalize_email = field_validator("email")(_lower)


class RegisterBody(Body):
    email: EmailStr
    password: str = Field(min_length=REGISTER_PASSWORD_MIN_LENGTH)
    name: str = Field(min_length=1, max_length=100)
    organization_name: Optional[str] = Field(None, min_length=1, max_length=100)

    normalize_email = field_validator("email")(_lower)


class RefreshBody(Body):
    refresh_token: str


class UpdateProfileBody(Body):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    avatar_url: Optional[str] = None


class ChangePasswordBody(Body):
    current_password: str = ""
    new_password: str = ""


# ── Organizations ─────────────────────────────────────────
class UpdateOrganizationBody(Body):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, pattern=r"^[a-z0-9][a-z0-9-]{1,62}$")
    monthly_budget: Optional[float] = Field(None, ge=0)
    settings: Optional[dict] = None


class InviteBody(Body):
    email: EmailStr
    name: str = Field(min_length=1, max_length=100)
    role: Literal[ASSIGNABLE_ROLES] = "member"

    normalize_email = field_validator("email")(_lower)


class CreateApiKeyBody(Body):
    name: str = Field(min_length=1, max_length=100)
    expires_in_days: int = 0
    permissions: list[str] = Field(default_factory=lambda: ["read"])

    @field_validator("expires_in_days")
    @classmethod
    def known_expiry(cls, value):
        if value not in API_KEY_EXPIRY_OPTIONS:
            raise ValueError(f"expiresInDays must be one of {list(API_KEY_EXPIRY_OPTIONS)}")
        return value


class TransferOwnershipBody(Body):
    user_id: int


# ── Dashboards & widgets ──────────────────────────────────
class Position(BaseModel):
    x: float
    y: float
    w: float
    h: float


class CreateDashboardBody(Body):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    layout: Literal[DASHBOARD_LAYOUTS] = "grid"


class UpdateDashboardBody(Body):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    layout: Optional[Literal[DASHBOARD_LAYOUTS]] = None
    settings: Optional[dict] = None
    is_public: Optional[bool] = None


class CreateWidgetBody(Body):
    name: str = Field(min_length=1, max_length=100)
    type: Literal[WIDGET_TYPES]
    config: dict = Field(default_factory=dict)
    position: Optional[Position] = None
    data_source: Optional[str] = None
    refresh_interval: Optional[int] = Field(None, ge=WIDGET_REFRESH_MIN, le=WIDGET_REFRESH_MAX)


class UpdateWidgetBody(Body):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    type: Optional[Literal[WIDGET_TYPES]] = None
    config: Optional[dict] = None
    position: Optional[Position] = None
    data_source: Optional[str] = None
    refresh_interval: Optional[int] = Field(None, ge=WIDGET_REFRESH_MIN, le=WIDGET_REFRESH_MAX)


class ShareBody(Body):
    is_public: bool = True


class DuplicateBody(Body):
    name: Optional[str] = Field(None, min_length=1, max_length=100)


# ── Analytics ─────────────────────────────────────────────
class TrackEventBody(Body):
    event_type: str = Field(min_length=1, max_length=50)
    event_name: str = Field(min_length=1, max_length=100)
    properties: dict = Field(default_factory=dict)
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: Optional[datetime] = None


class TrackBatchBody(Body):
    events: list[TrackEventBody] = Field(min_length=1, max_length=MAX_BATCH_EVENTS)


class DeleteEventsBody(Body):
    confirmation: str = ""
    before_date: Optional[datetime] = None
    event_type: Optional[str] = None


# ── Billing ───────────────────────────────────────────────
class UpgradeBody(Body):
    tier: Literal[SUBSCRIPTION_TIERS]


class PaymentMethodBody(Body):
    payment_method_id: str = Field(min_length=1)


class BudgetAlertBody(Body):
    threshold: float = Field(ge=0)


# ── Notifications & comments ──────────────────────────────
class CreateNotificationBody(Body):
    user_id: Optional[int] = None
    type: Literal[NOTIFICATION_TYPES] = "info"
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=2000)
    link: Optional[str] = None


class CreateCommentBody(Body):
    resource_type: str = Field(min_length=1)
    resource_id: str = Field(min_length=1)
    content: str = Field(min_length=1, max_length=5000)
    parent_id: Optional[int] = None


class UpdateCommentBody(Body):
    content: str = Field(min_length=1, max_length=5000)


# ── Audit ─────────────────────────────────────────────────
class CreateAuditLogBody(Body):
    action: str = Field(min_length=1)
    resource_type: str = Field(min_length=1)
    resource_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


class AuditCleanupBody(Body):
    confirmation: str = ""
    older_than_days: Optional[int] = Field(None, gt=0)
    before_date: Optional[datetime] = None


# ── Webhooks ──────────────────────────────────────────────
def _check_events(events):
    if events is None:
        return events
    if not has_events(events):
        raise ValueError("At least one event is required")
    unknown = unknown_events(events)
    if unknown:
        raise ValueError(f"Unknown events: {', '.join(unknown)}")
    return list(dict.fromkeys(events))


def _check_url(url):
    if url is not None and not is_valid_webhook_url(url):
        raise ValueError("URL must be an http(s) URL")
    return url


class CreateWebhookBody(Body):
    name: str = Field(min_length=1, max_length=100)
    url: str
    events: Optional[list[str]] = None

    validate_events = field_validator("events")(_check_events)
    validate_url = field_validator("url")(_check_url)


class UpdateWebhookBody(Body):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    url: Optional[str] = None
    events: Optional[list[str]] = None
    is_active: Optional[bool] = None

    validate_events = field_validator("events")(_check_events)
    validate_url = field_validator("url")(_check_url)


class DeleteAccountBody(Body):
    password: str = ""
    confirmation: str = ""


class UpdateMemberBody(Body):
    role: Optional[Literal[ASSIGNABLE_ROLES]] = None
    is_active: Optional[bool] = None