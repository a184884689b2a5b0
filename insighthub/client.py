"""
client.py
---------
Typed HTTP client for the InsightHub REST API, one method per call the web
app makes. Input the web app rejects before sending (mismatched passwords,
webhooks without events, too-short searches) is rejected here as well,
without a request.
"""

from typing import Any, Callable, Optional
from urllib.parse import quote

import requests

from insighthub.core.constants import AUDIT_CLEANUP_CONFIRMATION
from insighthub.core.logging import get_logger
from insighthub.core.validation import has_events, is_valid_password, passwords_match, should_search

logger = get_logger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason or "Request failed"
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, list):
        # pydantic validation errors
        return "; ".join(str(d.get("msg", d)) if isinstance(d, dict) else str(d) for d in detail)
    return str(detail) if detail else (resp.reason or "Request failed")


class InsightHubClient:
    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 30,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        self.token = None
        self.refresh_token = None
        if token:
            self.set_token(token)

    def set_token(self, token: Optional[str]) -> None:
        self.token = token
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        else:
            self.session.headers.pop("Authorization", None)

    def _request(self, method: str, path: str, raw: bool = False, **kwargs) -> Any:
        resp = self.session.request(method, f"{self.base_url}/api{path}", timeout=self.timeout, **kwargs)
        if resp.status_code >= 400:
            message = _error_message(resp)
            logger.error(f"API Error: {method} {path} -> {resp.status_code} {message}")
            raise ApiError(resp.status_code, message)
        if raw:
            return resp.content
        if not resp.content:
            return None
        return resp.json()

    def _get(self, path: str, **kwargs):
        return self._request("GET", path, **kwargs)

    def _post(self, path: str, json=None, **kwargs):
        return self._request("POST", path, json=json, **kwargs)

    def _put(self, path: str, json=None, **kwargs):
        return self._request("PUT", path, json=json, **kwargs)

    def _delete(self, path: str, json=None, **kwargs):
        return self._request("DELETE", path, json=json, **kwargs)

    # ── Auth ──────────────────────────────────────────────
    def _store_tokens(self, data: dict) -> dict:
        self.set_token(data.get("token"))
        self.refresh_token = data.get("refreshToken")
        return data

    def login(self, email: str, password: str) -> dict:
        return self._store_tokens(self._post("/auth/login", {"email": email, "password": password}))

    def register(self, email: str, password: str, name: str, organization_name: Optional[str] = None) -> dict:
        body = {"email": email, "password": password, "name": name}
        if organization_name:
            body["organizationName"] = organization_name
        return self._store_tokens(self._post("/auth/register", body))

    def refresh(self) -> dict:
        return self._store_tokens(self._post("/auth/refresh", {"refreshToken": self.refresh_token}))

    def verify(self) -> dict:
        return self._get("/auth/verify")

    def logout(self) -> None:
        try:
            self._post("/auth/logout")
        finally:
            self.set_token(None)
            self.refresh_token = None

    # ── Dashboards & widgets ──────────────────────────────
    def fetch_dashboards(self) -> list:
        return self._get("/dashboards")

    def fetch_dashboard(self, dashboard_id) -> dict:
        return self._get(f"/dashboards/{dashboard_id}")

    def create_dashboard(self, name: str, description: Optional[str] = None, layout: str = "grid") -> dict:
        body = {"name": name, "layout": layout}
        if description is not None:
            body["description"] = description
        return self._post("/dashboards", body)

    def update_dashboard(self, dashboard_id, data: dict) -> dict:
        return self._put(f"/dashboards/{dashboard_id}", data)

    def delete_dashboard(self, dashboard_id) -> None:
        self._delete(f"/dashboards/{dashboard_id}")

    def duplicate_dashboard(self, dashboard_id, name: Optional[str] = None) -> dict:
        return self._post(f"/dashboards/{dashboard_id}/duplicate", {"name": name} if name else None)

    def share_dashboard(self, dashboard_id, is_public: bool = True) -> dict:
        return self._post(f"/dashboards/{dashboard_id}/share", {"isPublic": is_public})

    def fetch_shared_dashboard(self, dashboard_id) -> dict:
        return self._get(f"/dashboards/shared/{dashboard_id}")

    def fetch_dashboard_data(self, dashboard_id) -> dict:
        return self._get(f"/dashboards/{dashboard_id}/data")

    def create_widget(self, dashboard_id, data: dict) -> dict:
        return self._post(f"/dashboards/{dashboard_id}/widgets", data)

    def update_widget(self, dashboard_id, widget_id, data: dict) -> dict:
        return self._put(f"/dashboards/{dashboard_id}/widgets/{widget_id}", data)

    def delete_widget(self, dashboard_id, widget_id) -> None:
        self._delete(f"/dashboards/{dashboard_id}/widgets/{widget_id}")

    def fetch_widget_data(self, dashboard_id, widget_id) -> dict:
        return self._get(f"/dashboards/{dashboard_id}/widgets/{widget_id}/data")

    # ── Analytics ─────────────────────────────────────────
    def track_event(self, event_type: str, event_name: str, properties: Optional[dict] = None) -> dict:
        return self._post("/analytics/track", {"eventType": event_type, "eventName": event_name,
                                               "properties": properties or {}})

    def fetch_analytics_stats(self, period: str = "week") -> dict:
        return self._get("/analytics/stats", params={"period": period})

    def export_analytics(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> bytes:
        params = {k: v for k, v in (("startDate", start_date), ("endDate", end_date)) if v}
        return self._get("/analytics/export", params=params, raw=True)

    # ── Users ─────────────────────────────────────────────
    def fetch_current_user(self) -> dict:
        return self._get("/users/me")

    def update_user(self, data: dict) -> dict:
        return self._put("/users/me", data)

    def change_password(self, current_password: str, new_password: str,
                        confirm_password: Optional[str] = None) -> dict:
        if confirm_password is not None and not passwords_match(new_password, confirm_password):
            raise ValueError("Passwords do not match")
        if not is_valid_password(new_password):
            raise ValueError("Password must be at least 6 characters")
        return self._put("/users/me/password", {"currentPassword": current_password,
                                                "newPassword": new_password})

    def delete_account(self, password: str, confirmation: str = "DELETE") -> None:
        self._delete("/users/me", {"password": password, "confirmation": confirmation})

    def fetch_user_preferences(self) -> dict:
        return self._get("/users/me/preferences")

    def update_user_preferences(self, preferences: dict) -> dict:
        return self._put("/users/me/preferences", preferences)

    def fetch_user_sessions(self) -> list:
        return self._get("/users/me/sessions")

    def revoke_session(self, session_id) -> None:
        self._delete(f"/users/me/sessions/{session_id}")

    def revoke_all_sessions(self) -> None:
        self._delete("/users/me/sessions")

    def search_users(self, query: str) -> list:
        if not should_search(query):
            return []
        return self._get(f"/users/search/{quote(query.strip(), safe='')}")

    # ── Organization ──────────────────────────────────────
    def fetch_organization(self) -> dict:
        return self._get("/organizations/current")

    def update_organization(self, data: dict) -> dict:
        return self._put("/organizations/current", data)

    def delete_organization(self) -> None:
        self._delete("/organizations/current")

    def fetch_organization_settings(self) -> dict:
        return self._get("/organizations/settings")

    def transfer_ownership(self, user_id) -> dict:
        return self._post("/organizations/transfer-ownership", {"userId": user_id})

    def fetch_team_members(self) -> list:
        return self._get("/organizations/members")

    def invite_member(self, email: str, name: str, role: str = "member") -> dict:
        return self._post("/organizations/invite", {"email": email, "name": name, "role": role})

    def update_member_role(self, member_id, role: str) -> dict:
        return self._put(f"/organizations/members/{member_id}", {"role": role})

    def remove_member(self, member_id) -> None:
        self._delete(f"/organizations/members/{member_id}")

    def fetch_api_keys(self) -> list:
        return self._get("/organizations/api-keys")

    def create_api_key(self, name: str, expires_in_days: int = 0, permissions: Optional[list] = None) -> dict:
        body = {"name": name, "expiresInDays": expires_in_days}
        if permissions is not None:
            body["permissions"] = permissions
        return self._post("/organizations/api-keys", body)

    def delete_api_key(self, key_id) -> None:
        self._delete(f"/organizations/api-keys/{key_id}")

    # ── Webhooks ──────────────────────────────────────────
    def fetch_webhooks(self) -> list:
        return self._get("/webhooks")

    def fetch_webhook(self, webhook_id) -> dict:
        return self._get(f"/webhooks/{webhook_id}")

    def create_webhook(self, name: str, url: str, events: list) -> dict:
        if not has_events(events):
            raise ValueError("Select at least one event")
        return self._post("/webhooks", {"name": name, "url": url, "events": list(events)})

    def update_webhook(self, webhook_id, data: dict) -> dict:
        return self._put(f"/webhooks/{webhook_id}", data)

    def delete_webhook(self, webhook_id) -> None:
        self._delete(f"/webhooks/{webhook_id}")

    def regenerate_webhook_secret(self, webhook_id) -> dict:
        return self._post(f"/webhooks/{webhook_id}/regenerate-secret")

    def test_webhook(self, webhook_id) -> dict:
        return self._post(f"/webhooks/{webhook_id}/test")

    def fetch_webhook_deliveries(self, webhook_id) -> list:
        return self._get(f"/webhooks/{webhook_id}/deliveries")

    # ── Audit logs ────────────────────────────────────────
    def fetch_audit_logs(self, **filters) -> dict:
        return self._get("/audit", params=filters)

    def fetch_audit_log(self, log_id) -> dict:
        return self._get(f"/audit/{log_id}")

    def search_audit_logs(self, query: str) -> list:
        if not should_search(query):
            return []
        return self._get(f"/audit/search/{quote(query.strip(), safe='')}")

    def fetch_audit_logs_by_resource(self, resource_type: str, resource_id) -> list:
        return self._get(f"/audit/resource/{resource_type}/{resource_id}")

    def fetch_audit_logs_by_user(self, user_id) -> list:
        return self._get(f"/audit/user/{user_id}")

    def fetch_audit_stats(self, period: str = "month") -> dict:
        return self._get("/audit/stats/summary", params={"period": period})

    def export_audit_logs(self, format: str = "json", **filters):
        params = {"format": format, **filters}
        if format == "json":
            return self._get("/audit/export", params=params)
        return self._get("/audit/export", params=params, raw=True)

    def cleanup_audit_logs(self, older_than_days: int) -> dict:
        return self._delete("/audit/cleanup", {"olderThanDays": older_than_days,
                                               "confirmation": AUDIT_CLEANUP_CONFIRMATION})

    # ── Billing ───────────────────────────────────────────
    def fetch_billing_overview(self) -> dict:
        return self._get("/billing/overview")

    def fetch_billing_usage(self, period: str = "month") -> list:
        return self._get("/billing/usage", params={"period": period})

    def fetch_billing_pricing(self) -> dict:
        return self._get("/billing/pricing")

    def upgrade_plan(self, tier: str) -> dict:
        return self._post("/billing/upgrade", {"tier": tier})

    def fetch_invoices(self) -> list:
        return self._get("/billing/invoices")

    def fetch_invoice(self, invoice_id) -> dict:
        return self._get(f"/billing/invoices/{invoice_id}")

    def pay_invoice(self, invoice_id) -> dict:
        return self._post(f"/billing/invoices/{invoice_id}/pay")

    def update_payment_method(self, payment_method_id: str) -> dict:
        return self._post("/billing/payment-method", {"paymentMethodId": payment_method_id})

    def set_budget_alert(self, threshold: float) -> dict:
        return self._post("/billing/budget-alert", {"threshold": threshold})

    # ── Notifications ─────────────────────────────────────
    def fetch_notifications(self, unread_only: bool = False) -> list:
        return self._get("/notifications", params={"unreadOnly": str(unread_only).lower()})

    def fetch_unread_count(self) -> int:
        return self._get("/notifications/unread-count")["count"]

    def mark_notification_read(self, notification_id) -> dict:
        return self._put(f"/notifications/{notification_id}/read")

    def mark_all_notifications_read(self) -> dict:
        return self._put("/notifications/mark-all-read")

    def delete_notification(self, notification_id) -> None:
        self._delete(f"/notifications/{notification_id}")

    def clear_all_notifications(self) -> None:
        self._delete("/notifications")

    def fetch_notification_preferences(self) -> dict:
        return self._get("/notifications/preferences")

    def update_notification_preferences(self, preferences: dict) -> dict:
        return self._put("/notifications/preferences", preferences)

    # ── Comments ──────────────────────────────────────────
    def fetch_comments(self, resource_type: str, resource_id) -> list:
        return self._get(f"/comments/{resource_type}/{resource_id}")

    def create_comment(self, resource_type: str, resource_id, content: str,
                       parent_id: Optional[int] = None) -> dict:
        body = {"resourceType": resource_type, "resourceId": str(resource_id), "content": content}
        if parent_id is not None:
            body["parentId"] = parent_id
        return self._post("/comments", body)

    def update_comment(self, comment_id, content: str) -> dict:
        return self._put(f"/comments/{comment_id}", {"content": content})

    def delete_comment(self, comment_id) -> None:
        self._delete(f"/comments/{comment_id}")


def fetch_with_error_handling(request: Callable[[], Any],
                              on_error: Optional[Callable[[Exception], None]] = None) -> Any:
    """Run ``request``; on an API or transport error report it and return None."""
    try:
        return request()
    except (ApiError, requests.RequestException) as e:
        if on_error:
            on_error(e)
        else:
            logger.error(f"Request failed: {e}")
        return None
