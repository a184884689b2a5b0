"""Tests for webhook management, signed delivery and event fan-out."""

import inspect
import json
from unittest.mock import MagicMock, patch

import requests

from insighthub.api import webhooks as webhooks_api
from insighthub.core.security import sign_payload, verify_signature
from insighthub.models.webhook import Webhook, WebhookDelivery
from insighthub.services.webhooks import build_payload, deliver, encode_payload, trigger_webhooks

POST = "insighthub.services.webhooks.requests.post"


def _response(status=200, text="ok"):
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    return resp


def _create(client, headers, **body):
    payload = {"name": "Hook", "url": "https://hooks.example.com/in", **body}
    resp = client.post("/api/webhooks", headers=headers, json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestManagement:
    def test_create_returns_secret_once(self, client, admin_headers):
        created = _create(client, admin_headers, events=["dashboard.created"])
        assert len(created["secret"]) == 64
        assert created["events"] == ["dashboard.created"]
        fetched = client.get(f"/api/webhooks/{created['id']}", headers=admin_headers).json()
        assert "secret" not in fetched
        assert [w["id"] for w in client.get("/api/webhooks", headers=admin_headers).json()] == [created["id"]]

    def test_events_default_to_wildcard(self, client, admin_headers):
        assert _create(client, admin_headers)["events"] == ["*"]

    def test_validation(self, client, admin_headers, member_headers):
        no_events = client.post("/api/webhooks", headers=admin_headers,
                                json={"name": "h", "url": "https://x.io", "events": []})
        bad_url = client.post("/api/webhooks", headers=admin_headers, json={"name": "h", "url": "x.io"})
        member = client.post("/api/webhooks", headers=member_headers, json={"name": "h", "url": "https://x.io"})
        assert no_events.status_code == 422
        assert bad_url.status_code == 422
        assert member.status_code == 403

    def test_update_reactivation_resets_failures(self, client, db, admin_headers):
        hook = _create(client, admin_headers)
        db.query(Webhook).update({Webhook.is_active: False, Webhook.failure_count: 7})
        db.commit()
        updated = client.put(f"/api/webhooks/{hook['id']}", headers=admin_headers,
                             json={"isActive": True, "events": ["widget.created"]}).json()
        assert updated["isActive"] is True
        assert updated["failureCount"] == 0
        assert updated["events"] == ["widget.created"]

    def test_regenerate_secret(self, client, db, admin_headers):
        hook = _create(client, admin_headers)
        new = client.post(f"/api/webhooks/{hook['id']}/regenerate-secret", headers=admin_headers).json()
        assert new["secret"] != hook["secret"]
        db.expire_all()
        assert db.get(Webhook, hook["id"]).secret == new["secret"]

    def test_delete(self, client, db, admin_headers):
        hook = _create(client, admin_headers)
        assert client.delete(f"/api/webhooks/{hook['id']}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/webhooks/{hook['id']}", headers=admin_headers).status_code == 404


class TestDelivery:
    def test_signature_matches_body(self, db, org):
        hook = Webhook(name="h", url="https://x.io", secret="s3cret", organization_id=org["org"].id)
        db.add(hook)
        db.commit()
        with patch(POST, return_value=_response(204, "")) as post:
            delivery = deliver(db, hook, build_payload("test", {"a": 1}))
        kwargs = post.call_args.kwargs
        assert verify_signature(kwargs["data"], kwargs["headers"]["X-Webhook-Signature"], "s3cret")
        assert kwargs["headers"]["X-Webhook-Event"] == "test"
        assert json.loads(kwargs["data"])["data"] == {"a": 1}
        assert delivery.success is True
        assert hook.failure_count == 0

    def test_non_2xx_and_errors_count_failures(self, db, org):
        hook = Webhook(name="h", url="https://x.io", secret="s", organization_id=org["org"].id)
        db.add(hook)
        db.commit()
        with patch(POST, return_value=_response(302, "moved")):
            redirect = deliver(db, hook, build_payload("test", {}))
        with patch(POST, side_effect=requests.ConnectionError("refused")):
            refused = deliver(db, hook, build_payload("test", {}))
        assert redirect.success is False and redirect.status_code == 302
        assert refused.success is False and "refused" in refused.error
        assert hook.failure_count == 2
        assert hook.last_triggered_at is not None

    def test_trigger_only_active_subscribers(self, db, org, other_org):
        org_id = org["org"].id
        db.add_all([
            Webhook(name="all", url="https://a.io", secret="s", events=["*"], organization_id=org_id),
            Webhook(name="dash", url="https://b.io", secret="s", events=["dashboard.created"],
                    organization_id=org_id),
            Webhook(name="widgets", url="https://c.io", secret="s", events=["widget.created"],
                    organization_id=org_id),
            Webhook(name="off", url="https://d.io", secret="s", events=["*"], organization_id=org_id,
                    is_active=False),
            Webhook(name="foreign", url="https://e.io", secret="s", events=["*"],
                    organization_id=other_org["org"].id),
        ])
        db.commit()
        with patch(POST, return_value=_response()) as post:
            deliveries = trigger_webhooks(db, org_id, "dashboard.created", {"id": 1})
        assert len(deliveries) == 2
        assert [c.args[0] for c in post.call_args_list] == ["https://a.io", "https://b.io"]

    def test_encode_is_compact(self):
        assert encode_payload({"a": 1, "b": [1, 2]}) == b'{"a":1,"b":[1,2]}'


class TestApiIntegration:
    def test_dashboard_creation_fires_webhook(self, client, db, admin_headers):
        _create(client, admin_headers, events=["dashboard.created"])
        with patch(POST, return_value=_response()) as post:
            client.post("/api/dashboards", headers=admin_headers, json={"name": "Fresh"})
        assert post.call_count == 1
        sent = json.loads(post.call_args.kwargs["data"])
        assert sent["event"] == "dashboard.created"
        assert sent["data"]["name"] == "Fresh"
        assert db.query(WebhookDelivery).count() == 1

    def test_delivery_failure_does_not_fail_request(self, client, admin_headers):
        _create(client, admin_headers)
        with patch(POST, side_effect=requests.Timeout("slow")):
            resp = client.post("/api/dashboards", headers=admin_headers, json={"name": "Fresh"})
        assert resp.status_code == 201

    def test_test_endpoint_and_history(self, client, admin_headers):
        hook = _create(client, admin_headers)
        with patch(POST, return_value=_response(500, "boom")):
            result = client.post(f"/api/webhooks/{hook['id']}/test", headers=admin_headers).json()
        assert result["success"] is False
        assert result["statusCode"] == 500
        history = client.get(f"/api/webhooks/{hook['id']}/deliveries", headers=admin_headers).json()
        assert [d["event"] for d in history] == ["test"]
        assert client.get(f"/api/webhooks/{hook['id']}", headers=admin_headers).json()["failureCount"] == 1

    def test_incoming_signature(self, client, admin_headers):
        hook = _create(client, admin_headers)
        body = b'{"hello":"world"}'
        good = client.post(f"/api/webhooks/incoming/{hook['id']}", content=body,
                           headers={"X-Webhook-Signature": sign_payload(body, hook["secret"])})
        bad = client.post(f"/api/webhooks/incoming/{hook['id']}", content=body,
                          headers={"X-Webhook-Signature": "deadbeef"})
        unsigned = client.post(f"/api/webhooks/incoming/{hook['id']}", content=body)
        assert good.json() == {"received": True, "verified": True}
        assert bad.status_code == 401
        assert unsigned.json() == {"received": True, "verified": False}

    def test_incoming_handler_runs_in_threadpool(self, client):
        assert not inspect.iscoroutinefunction(webhooks_api.incoming)
        assert client.post("/api/webhooks/incoming/999", content=b"{}").status_code == 404
