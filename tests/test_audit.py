"""Tests for audit log queries, statistics, export and cleanup."""

import io
from datetime import datetime, timedelta

import pandas as pd

from insighthub.models.audit import AuditLog
from tests.helpers import login


def _seed(db, org, rows):
    """rows: (action, resource_type, resource_id, user, days_ago)"""
    now = datetime.utcnow()
    for action, resource_type, resource_id, user, days in rows:
        db.add(AuditLog(organization_id=org["org"].id, user_id=user.id if user else None, action=action,
                        resource_type=resource_type, resource_id=resource_id,
                        created_at=now - timedelta(days=days)))
    db.commit()


class TestQueries:
    def test_paginated_list_with_filters(self, client, db, org, member_headers):
        _seed(db, org, [("dashboard.created", "dashboard", "1", org["owner"], 1),
                        ("dashboard.updated", "dashboard", "1", org["admin"], 0),
                        ("webhook.created", "webhook", "4", org["admin"], 2)])
        page = client.get("/api/audit?pageSize=2&page=1&resourceType=dashboard",
                          headers=member_headers).json()
        assert page["pagination"] == {"page": 1, "pageSize": 2, "total": 2, "totalPages": 1}
        assert [i["action"] for i in page["items"]] == ["dashboard.updated", "dashboard.created"]

        by_user = client.get(f"/api/audit?userId={org['admin'].id}&orderBy=action&order=asc",
                             headers=member_headers).json()
        assert [i["action"] for i in by_user["items"]] == ["dashboard.updated", "webhook.created"]

    def test_page_size_bounds(self, client, member_headers):
        assert client.get("/api/audit?pageSize=101", headers=member_headers).status_code == 422
        assert client.get("/api/audit?page=0", headers=member_headers).status_code == 422

    def test_get_one_is_tenant_scoped(self, client, db, org, other_org, member_headers):
        _seed(db, other_org, [("dashboard.created", "dashboard", "9", other_org["owner"], 0)])
        foreign = db.query(AuditLog).filter(AuditLog.organization_id == other_org["org"].id).first()
        assert client.get(f"/api/audit/{foreign.id}", headers=member_headers).status_code == 404
        outsider = login(client, other_org["member"].email)
        assert client.get(f"/api/audit/{foreign.id}", headers=outsider).json()["action"] == "dashboard.created"

    def test_resource_user_and_search(self, client, db, org, member_headers):
        _seed(db, org, [("widget.created", "widget", "5", org["owner"], 0),
                        ("widget.updated", "widget", "5", org["owner"], 0),
                        ("widget.created", "widget", "6", org["owner"], 0)])
        resource = client.get("/api/audit/resource/widget/5", headers=member_headers).json()
        assert len(resource) == 2
        user_rows = client.get(f"/api/audit/user/{org['owner'].id}", headers=member_headers).json()
        assert len(user_rows) == 3
        found = client.get("/api/audit/search/WIDGET.UP", headers=member_headers).json()
        assert [r["action"] for r in found] == ["widget.updated"]
        assert client.get("/api/audit/search/w", headers=member_headers).status_code == 400

    def test_create_manual_entry(self, client, member_headers, admin_headers):
        body = {"action": "report.viewed", "resourceType": "report", "details": {"id": 3}}
        assert client.post("/api/audit", headers=member_headers, json=body).status_code == 403
        created = client.post("/api/audit", headers=admin_headers, json=body)
        assert created.status_code == 201
        assert created.json()["details"] == {"id": 3}
        assert created.json()["ipAddress"] == "testclient"


class TestStats:
    def test_summary(self, client, db, org, member_headers):
        _seed(db, org, [("dashboard.created", "dashboard", "1", org["owner"], 1),
                        ("dashboard.created", "dashboard", "2", org["owner"], 2),
                        ("widget.created", "widget", "3", org["admin"], 3),
                        ("dashboard.created", "dashboard", "4", org["owner"], 60)])
        month = client.get("/api/audit/stats/summary?period=month", headers=member_headers).json()
        # the member's own login is logged too
        assert month["totalLogs"] == 4
        assert month["byAction"][0] == {"action": "dashboard.created", "count": 2}
        year = client.get("/api/audit/stats/summary?period=year", headers=member_headers).json()
        assert year["totalLogs"] == 5
        assert year["byResource"][0] == {"resourceType": "dashboard", "count": 3}


class TestExport:
    def test_export_formats(self, client, db, org, admin_headers):
        _seed(db, org, [("dashboard.created", "dashboard", "1", org["owner"], 0)])
        as_json = client.get("/api/audit/export", headers=admin_headers).json()
        assert {r["action"] for r in as_json} == {"dashboard.created", "user.logged_in"}

        csv = client.get("/api/audit/export?format=csv", headers=admin_headers)
        assert csv.headers["content-type"].startswith("text/csv")
        frame = pd.read_csv(io.StringIO(csv.text))
        assert set(frame["user"]) == {org["owner"].email, org["admin"].email}
        assert set(frame["category"]) == {"create", "other"}

        xlsx = client.get("/api/audit/export?format=xlsx", headers=admin_headers)
        sheet = pd.read_excel(io.BytesIO(xlsx.content), sheet_name="Audit Logs")
        assert len(sheet) == 2

    def test_export_requires_admin(self, client, member_headers):
        assert client.get("/api/audit/export", headers=member_headers).status_code == 403
        assert client.get("/api/audit/export?format=pdf", headers=member_headers).status_code in (403, 422)


class TestCleanup:
    def test_cleanup_by_age(self, client, db, org, admin_headers):
        _seed(db, org, [("old.one", "x", None, None, 100), ("old.two", "x", None, None, 40),
                        ("fresh", "x", None, None, 1)])
        resp = client.request("DELETE", "/api/audit/cleanup", headers=admin_headers,
                              json={"confirmation": "DELETE_AUDIT_LOGS", "olderThanDays": 30})
        assert resp.status_code == 200
        assert resp.json()["deleted"] == 2
        actions = {a for (a,) in db.query(AuditLog.action)}
        assert "old.one" not in actions and "fresh" in actions
        assert "audit.logs_deleted" in actions

    def test_cleanup_before_date(self, client, db, org, admin_headers):
        _seed(db, org, [("ancient", "x", None, None, 400)])
        cutoff = (datetime.utcnow() - timedelta(days=365)).isoformat()
        resp = client.request("DELETE", "/api/audit/cleanup", headers=admin_headers,
                              json={"confirmation": "DELETE_AUDIT_LOGS", "beforeDate": cutoff})
        assert resp.json()["deleted"] == 1

    def test_cleanup_guards(self, client, admin_headers, member_headers):
        body = {"confirmation": "DELETE_AUDIT_LOGS", "olderThanDays": 30}
        assert client.request("DELETE", "/api/audit/cleanup", headers=member_headers, json=body).status_code == 403
        wrong = client.request("DELETE", "/api/audit/cleanup", headers=admin_headers,
                               json={"confirmation": "yes", "olderThanDays": 30})
        missing = client.request("DELETE", "/api/audit/cleanup", headers=admin_headers,
                                 json={"confirmation": "DELETE_AUDIT_LOGS"})
        assert wrong.status_code == 400
        assert missing.status_code == 400
