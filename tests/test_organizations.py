"""Tests for organization settings, team management, ownership and API keys."""

from datetime import datetime, timedelta

from insighthub.models.audit import AuditLog
from insighthub.models.comment import Comment
from insighthub.models.dashboard import Dashboard
from insighthub.models.notification import EmailQueue, Notification
from insighthub.models.user import ApiKey, Organization, User
from tests.helpers import login


class TestCurrentOrganization:
    def test_get_current_with_counts(self, client, db, org, member_headers):
        db.add(Dashboard(name="Main", organization_id=org["org"].id, created_by_id=org["owner"].id))
        db.commit()
        data = client.get("/api/organizations/current", headers=member_headers).json()
        assert data["slug"] == "acme"
        assert data["counts"] == {"users": 3, "dashboards": 1, "analyticsEvents": 0}

    def test_update_requires_admin(self, client, member_headers, admin_headers):
        body = {"name": "Acme Corp", "monthlyBudget": 500}
        assert client.put("/api/organizations/current", headers=member_headers, json=body).status_code == 403
        resp = client.put("/api/organizations/current", headers=admin_headers, json=body)
        assert resp.status_code == 200
        assert resp.json()["name"] == "Acme Corp"
        assert resp.json()["monthlyBudget"] == 500

    def test_update_invalidates_cache(self, client, admin_headers):
        client.get("/api/organizations/current", headers=admin_headers)
        client.put("/api/organizations/current", headers=admin_headers, json={"name": "Fresh"})
        assert client.get("/api/organizations/current", headers=admin_headers).json()["name"] == "Fresh"

    def test_null_fields_are_ignored(self, client, org, admin_headers):
        resp = client.put("/api/organizations/current", headers=admin_headers,
                          json={"name": None, "monthlyBudget": None})
        assert resp.status_code == 200
        assert resp.json()["name"] == "Acme"

    def test_slug_conflict(self, client, other_org, admin_headers):
        resp = client.put("/api/organizations/current", headers=admin_headers, json={"slug": "globex"})
        assert resp.status_code == 409

    def test_settings(self, client, member_headers):
        data = client.get("/api/organizations/settings", headers=member_headers).json()
        assert data["tier"] == "free"

    def test_delete_requires_owner_and_purges(self, client, db, org, other_org, admin_headers, owner_headers):
        org_id = org["org"].id
        client.post("/api/dashboards", headers=owner_headers, json={"name": "Doomed"})
        assert client.delete("/api/organizations/current", headers=admin_headers).status_code == 403
        assert client.delete("/api/organizations/current", headers=owner_headers).status_code == 200
        db.expire_all()
        assert db.get(Organization, org_id) is None
        assert db.query(User).filter(User.organization_id == org_id).count() == 0
        assert db.query(Dashboard).filter(Dashboard.organization_id == org_id).count() == 0
        assert db.query(AuditLog).filter(AuditLog.organization_id == org_id).count() == 0
        assert db.get(Organization, other_org["org"].id) is not None


class TestMembers:
    def test_list_members(self, client, member_headers):
        rows = client.get("/api/organizations/members", headers=member_headers).json()
        assert sorted(r["role"] for r in rows) == ["admin", "member", "owner"]

    def test_invite(self, client, db, org, admin_headers):
        resp = client.post("/api/organizations/invite", headers=admin_headers,
                           json={"email": "New.Person@acme.io", "name": "New Person", "role": "viewer"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["email"] == "new.person@acme.io"
        assert data["role"] == "viewer"
        login(client, "new.person@acme.io", data["temporaryPassword"])

        invited = db.query(User).filter(User.email == "new.person@acme.io").one()
        assert invited.organization_id == org["org"].id
        assert db.query(EmailQueue).filter(EmailQueue.to == "new.person@acme.io").count() == 1
        assert db.query(Notification).filter(Notification.user_id == org["admin"].id).count() == 1
        assert db.query(AuditLog).filter(AuditLog.action == "user.invited").count() == 1

    def test_invite_existing_email(self, client, org, admin_headers):
        resp = client.post("/api/organizations/invite", headers=admin_headers,
                           json={"email": org["member"].email, "name": "Again"})
        assert resp.status_code == 400

    def test_member_cannot_invite(self, client, member_headers):
        resp = client.post("/api/organizations/invite", headers=member_headers,
                           json={"email": "x@acme.io", "name": "X"})
        assert resp.status_code == 403

    def test_update_member_role(self, client, org, admin_headers):
        resp = client.put(f"/api/organizations/members/{org['member'].id}", headers=admin_headers,
                          json={"role": "viewer"})
        assert resp.status_code == 200
        assert resp.json()["role"] == "viewer"

    def test_cannot_change_owner_or_self(self, client, org, admin_headers):
        owner = client.put(f"/api/organizations/members/{org['owner'].id}", headers=admin_headers,
                           json={"role": "member"})
        me = client.put(f"/api/organizations/members/{org['admin'].id}", headers=admin_headers,
                        json={"role": "member"})
        assert owner.status_code == 403
        assert me.status_code == 400

    def test_deactivate_member_blocks_login(self, client, org, admin_headers):
        client.put(f"/api/organizations/members/{org['member'].id}", headers=admin_headers,
                   json={"isActive": False})
        resp = client.post("/api/auth/login", json={"email": org["member"].email, "password": "password123"})
        assert resp.status_code == 403

    def test_remove_member(self, client, db, org, admin_headers):
        member_id = org["member"].id
        resp = client.delete(f"/api/organizations/members/{member_id}", headers=admin_headers)
        assert resp.status_code == 200
        db.expire_all()
        assert db.get(User, member_id) is None

    def test_removed_member_work_goes_to_owner(self, client, db, org, owner_headers, admin_headers):
        admin_id = org["admin"].id
        dashboard = client.post("/api/dashboards", headers=admin_headers, json={"name": "Admin's"}).json()
        client.post("/api/organizations/api-keys", headers=admin_headers, json={"name": "Admin key"})
        own = Comment(content="mine", user_id=admin_id, organization_id=org["org"].id,
                      resource_type="dashboard", resource_id=str(dashboard["id"]))
        db.add(own)
        db.commit()
        db.add(Comment(content="reply", user_id=org["owner"].id, organization_id=org["org"].id,
                       resource_type="dashboard", resource_id=str(dashboard["id"]), parent_id=own.id))
        db.commit()

        resp = client.delete(f"/api/organizations/members/{admin_id}", headers=owner_headers)
        assert resp.status_code == 200
        db.expire_all()
        assert db.get(Dashboard, dashboard["id"]).created_by_id == org["owner"].id
        assert db.query(ApiKey).one().created_by_id == org["owner"].id
        assert db.query(Comment).count() == 0

    def test_cannot_remove_owner_or_other_tenant(self, client, org, other_org, admin_headers):
        owner = client.delete(f"/api/organizations/members/{org['owner'].id}", headers=admin_headers)
        foreign = client.delete(f"/api/organizations/members/{other_org['member'].id}", headers=admin_headers)
        assert owner.status_code == 403
        assert foreign.status_code == 404


class TestOwnership:
    def test_transfer(self, client, db, org, owner_headers):
        resp = client.post("/api/organizations/transfer-ownership", headers=owner_headers,
                           json={"userId": org["admin"].id})
        assert resp.status_code == 200
        db.expire_all()
        assert db.get(User, org["admin"].id).role == "owner"
        assert db.get(User, org["owner"].id).role == "admin"

    def test_only_owner_can_transfer(self, client, org, admin_headers):
        resp = client.post("/api/organizations/transfer-ownership", headers=admin_headers,
                           json={"userId": org["member"].id})
        assert resp.status_code == 403

    def test_transfer_to_self(self, client, org, owner_headers):
        resp = client.post("/api/organizations/transfer-ownership", headers=owner_headers,
                           json={"userId": org["owner"].id})
        assert resp.status_code == 400


class TestApiKeys:
    def test_create_list_revoke(self, client, db, admin_headers):
        resp = client.post("/api/organizations/api-keys", headers=admin_headers,
                           json={"name": "Ingest", "expiresInDays": 30})
        assert resp.status_code == 201
        created = resp.json()
        assert created["key"].startswith("ih_")
        assert created["keyPrefix"] == created["key"][:10]
        assert created["expiresAt"] is not None

        listed = client.get("/api/organizations/api-keys", headers=admin_headers).json()
        assert len(listed) == 1
        assert "key" not in listed[0]

        assert client.delete(f"/api/organizations/api-keys/{created['id']}", headers=admin_headers).status_code == 200
        assert db.query(ApiKey).count() == 0
        assert db.query(AuditLog).filter(AuditLog.action == "apikey.revoked").count() == 1

    def test_member_cannot_manage_keys(self, client, member_headers):
        assert client.get("/api/organizations/api-keys", headers=member_headers).status_code == 403

    def test_sdk_tracking_with_key(self, client, db, org, admin_headers):
        key = client.post("/api/organizations/api-keys", headers=admin_headers, json={"name": "SDK"}).json()
        resp = client.post("/api/analytics/v1/track", headers={"X-API-Key": key["key"]},
                           json={"eventType": "page_view", "eventName": "Home"})
        assert resp.status_code == 201
        assert resp.json()["success"] is True
        db.expire_all()
        assert db.query(ApiKey).one().last_used_at is not None

    def test_sdk_rejects_bad_and_expired_keys(self, client, db, admin_headers):
        assert client.post("/api/analytics/v1/track", json={"eventType": "x", "eventName": "y"}).status_code == 401
        key = client.post("/api/organizations/api-keys", headers=admin_headers,
                          json={"name": "Old", "expiresInDays": 30}).json()
        db.query(ApiKey).update({ApiKey.expires_at: datetime.utcnow() - timedelta(days=1)})
        db.commit()
        resp = client.post("/api/analytics/v1/track", headers={"X-API-Key": key["key"]},
                           json={"eventType": "x", "eventName": "y"})
        assert resp.status_code == 401
