"""Application-wide constants shared by the API, the jobs service and the client."""

APP_VERSION = "1.0.0"

# ── Roles & tiers ─────────────────────────────────────────
ROLE_OWNER = "owner"
ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"
ROLE_VIEWER = "viewer"
ASSIGNABLE_ROLES = (ROLE_ADMIN, ROLE_MEMBER, ROLE_VIEWER)

SUBSCRIPTION_TIERS = ("free", "starter", "pro", "enterprise")

# ── Pagination & caching ──────────────────────────────────
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

CACHE_TTL_USER = 300
CACHE_TTL_ORGANIZATION = 300
CACHE_TTL_DASHBOARD = 60
CACHE_TTL_ANALYTICS = 60

# ── Dashboards & widgets ──────────────────────────────────
DASHBOARD_LAYOUTS = ("grid", "list", "freeform")
WIDGET_TYPES = ("chart", "metric", "table", "text")
WIDGET_REFRESH_MIN = 10
WIDGET_REFRESH_DEFAULT = 300
WIDGET_REFRESH_MAX = 86400
DEFAULT_WIDGET_POSITION = {"x": 0, "y": 0, "w": 4, "h": 3}

# ── Analytics ─────────────────────────────────────────────
MAX_BATCH_EVENTS = 100
EVENT_COST = 0.001

# ── Notifications & billing ───────────────────────────────
NOTIFICATION_TYPES = ("info", "warning", "error", "success")

PRICING = {
    "free": {"name": "Free", "price": 0,
             "features": {"events": 10000, "dashboards": 3, "users": 2, "retention": 30}},
    "starter": {"name": "Starter", "price": 29,
                "features": {"events": 100000, "dashboards": 10, "users": 5, "retention": 90}},
    "pro": {"name": "Pro", "price": 99,
            "features": {"events": 1000000, "dashboards": -1, "users": 20, "retention": 365}},
    # -1 means unlimited / custom pricing
    "enterprise": {"name": "Enterprise", "price": -1,
                   "features": {"events": -1, "dashboards": -1, "users": -1, "retention": -1}},
}

# ── Webhooks ──────────────────────────────────────────────
WEBHOOK_WILDCARD = "*"
WEBHOOK_EVENTS = (
    "dashboard.created",
    "dashboard.updated",
    "dashboard.deleted",
    "widget.created",
    "widget.updated",
    "widget.deleted",
    "analytics.event",
    "user.invited",
    "user.joined",
    "user.removed",
    "billing.invoice",
    "billing.payment",
)
WEBHOOK_USER_AGENT = "InsightHub-Webhook/1.0"
WEBHOOK_RESPONSE_LIMIT = 500

# ── API keys ──────────────────────────────────────────────
API_KEY_PREFIX = "ih_"
API_KEY_EXPIRY_OPTIONS = (30, 90, 180, 365, 0)  # days, 0 = never

# ── Audit logs ────────────────────────────────────────────
AUDIT_CLEANUP_CONFIRMATION = "DELETE_AUDIT_LOGS"
AUDIT_SEARCH_LIMIT = 100
AUDIT_RESOURCE_LIMIT = 50
AUDIT_USER_LIMIT = 100

USER_REGISTERED = "user.registered"
USER_LOGGED_IN = "user.logged_in"
USER_LOGGED_OUT = "user.logged_out"
USER_UPDATED = "user.updated"
USER_INVITED = "user.invited"
USER_DELETED = "user.deleted"
USER_PASSWORD_CHANGED = "user.password_changed"
ORGANIZATION_UPDATED = "organization.updated"
ORGANIZATION_OWNERSHIP_TRANSFERRED = "organization.ownership_transferred"
DASHBOARD_CREATED = "dashboard.created"
DASHBOARD_UPDATED = "dashboard.updated"
DASHBOARD_DELETED = "dashboard.deleted"
WIDGET_CREATED = "widget.created"
WIDGET_UPDATED = "widget.updated"
WIDGET_DELETED = "widget.deleted"
APIKEY_CREATED = "apikey.created"
APIKEY_REVOKED = "apikey.revoked"
WEBHOOK_CREATED = "webhook.created"
WEBHOOK_UPDATED = "webhook.updated"
WEBHOOK_DELETED = "webhook.deleted"
BILLING_TIER_CHANGED = "billing.tier_changed"
ANALYTICS_EVENTS_DELETED = "analytics.events_deleted"
AUDIT_LOGS_DELETED = "audit.logs_deleted"

# ── Search ────────────────────────────────────────────────
SEARCH_MIN_LENGTH = 2
USER_SEARCH_LIMIT = 20
PASSWORD_MIN_LENGTH = 6
REGISTER_PASSWORD_MIN_LENGTH = 8

# ── Email ─────────────────────────────────────────────────
EMAIL_MAX_ATTEMPTS = 3
EMAIL_BATCH_SIZE = 100
REPORT_EMAIL_SUBJECT = "Your Daily InsightHub Report"
