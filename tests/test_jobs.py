"""Tests for the jobs service: daily reports, report cleanup, the email queue and scheduling."""

import html
import json
import os
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from insighthub.jobs import scheduler as jobs
from insighthub.models.analytics import AnalyticsEvent
from insighthub.models.audit import AuditLog
from insighthub.models.notification import EmailQueue
from insighthub.models.user import User
from insighthub.services.notify import process_email_queue, queue_email, send_email
from insighthub.services.reports import (
    build_org_report, cleanup_old_reports, generate_daily_reports, report_path, report_recipients,
    send_report_email, write_report,
)
from tests.helpers import make_org

REPORT_EMAIL = "insighthub.services.reports.send_email"
QUEUE_EMAIL = "insighthub.services.notify.send_email"
SMTP = "insighthub.services.notify.smtplib.SMTP"


def _utc_stamp(value):
    return value.replace(tzinfo=timezone.utc).timestamp()


@pytest.fixture
def utc_plus_14(monkeypatch):
    """Run with the host clock fourteen hours ahead of UTC."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv("TZ", "UTC-14")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


class TestReports:
    def test_build_org_report(self, db, org):
        now = datetime(2026, 4, 10, 0, 0)
        org_id = org["org"].id
        db.add(AnalyticsEvent(organization_id=org_id, event_type="click", event_name="a", timestamp=now))
        db.add_all([
            AuditLog(organization_id=org_id, user_id=org["owner"].id, action="dashboard.created",
                     resource_type="dashboard", created_at=now - timedelta(hours=3)),
            AuditLog(organization_id=org_id, user_id=org["owner"].id, action="widget.created",
                     resource_type="widget", created_at=now - timedelta(hours=30)),
        ])
        db.commit()
        report = build_org_report(db, org_id, now)
        assert report["generatedAt"] == "2026-04-10T00:00:00Z"
        assert report["metrics"] == {"totalEvents": 1, "totalUsers": 3, "totalDashboards": 0,
                                     "activityCount": 1}
        assert report["activity"][0]["action"] == "dashboard.created"

    def test_generate_writes_single_line_json_and_emails_admins(self, db, org, other_org, reports_dir):
        now = datetime(2026, 4, 10, 0, 0)
        with patch(REPORT_EMAIL, return_value=(True, "")) as send:
            summary = generate_daily_reports(reports_dir=reports_dir, now=now)
        assert len(summary["generated"]) == 2
        assert summary["failed"] == []
        # owner and admin of each organization
        assert summary["emailed"] == 4
        assert {c.args[0] for c in send.call_args_list} == {"owner@acme.io", "admin@acme.io",
                                                           "owner@globex.io", "admin@globex.io"}

        path = report_path(org["org"].id, now.date(), reports_dir)
        assert path.name == f"{org['org'].id}_2026-04-10.json"
        text = path.read_text(encoding="utf-8")
        assert "\n" not in text
        assert json.loads(text)["organizationId"] == org["org"].id

    def test_failed_organization_does_not_stop_the_run(self, db, org, other_org, reports_dir):
        real = build_org_report

        def flaky(session, organization_id, now=None):
            if organization_id == org["org"].id:
                raise RuntimeError("boom")
            return real(session, organization_id, now)

        with patch("insighthub.services.reports.build_org_report", side_effect=flaky), \
                patch(REPORT_EMAIL, return_value=(False, "smtp down")):
            summary = generate_daily_reports(reports_dir=reports_dir)
        assert summary["failed"] == [org["org"].id]
        assert len(summary["generated"]) == 1
        assert summary["emailed"] == 0

    def test_cleanup_old_reports(self, reports_dir):
        reports_dir.mkdir(parents=True)
        old = reports_dir / "1_2026-01-01.json"
        fresh = reports_dir / "1_2026-04-09.json"
        old.write_text("{}")
        fresh.write_text("{}")
        now = datetime(2026, 4, 10)
        stamp = _utc_stamp(now - timedelta(days=31))
        os.utime(old, (stamp, stamp))
        deleted = cleanup_old_reports(reports_dir, retention_days=30, now=now)
        assert deleted == [old]
        assert fresh.exists()

    def test_cleanup_missing_dir(self, tmp_path):
        assert cleanup_old_reports(tmp_path / "nope") == []

    def test_cleanup_cutoff_ignores_host_timezone(self, reports_dir, utc_plus_14):
        reports_dir.mkdir(parents=True)
        now = datetime(2026, 4, 10, 12, 0)
        cutoff = now - timedelta(days=30)
        stale = reports_dir / "1_2026-03-10.json"
        kept = reports_dir / "1_2026-03-11.json"
        stale.write_text("{}")
        kept.write_text("{}")
        os.utime(stale, (_utc_stamp(cutoff - timedelta(hours=1)),) * 2)
        os.utime(kept, (_utc_stamp(cutoff + timedelta(hours=1)),) * 2)
        assert cleanup_old_reports(reports_dir, retention_days=30, now=now) == [stale]
        assert kept.exists()

    def test_bad_recipient_address_does_not_stop_the_run(self, db, org, other_org, reports_dir):
        db.query(User).filter(User.id == org["admin"].id).update({User.email: "bad\n@acme.io"})
        db.commit()
        with patch(SMTP) as smtp:
            summary = generate_daily_reports(reports_dir=reports_dir)
        assert len(summary["generated"]) == 2
        assert summary["failed"] == []
        # owner of acme plus owner and admin of globex
        assert summary["emailed"] == 3
        assert smtp.return_value.__enter__.return_value.send_message.call_count == 3

    def test_recipient_error_does_not_stop_the_run(self, db, org, other_org, reports_dir):
        with patch("insighthub.services.reports.send_report_email",
                   side_effect=[RuntimeError("template"), True, True, True]):
            summary = generate_daily_reports(reports_dir=reports_dir)
        assert len(summary["generated"]) == 2
        assert summary["emailed"] == 3


class TestReportEmail:
    def test_subject_and_body_embed_the_report(self, tmp_path):
        path = write_report({"organizationId": 7, "metrics": {"totalEvents": 2}}, tmp_path / "7_2026-04-10.json")
        with patch(REPORT_EMAIL, return_value=(True, "")) as send:
            assert send_report_email("owner@acme.io", path, "Acme") is True
        to, subject, body = send.call_args.args
        assert to == "owner@acme.io"
        assert subject == "Your Daily InsightHub Report"
        assert "Acme" in body
        assert path.read_text(encoding="utf-8") in html.unescape(body)

    def test_smtp_rejection_returns_false(self, tmp_path):
        path = write_report({"organizationId": 7}, tmp_path / "7_2026-04-10.json")
        with patch(REPORT_EMAIL, return_value=(False, "refused")):
            assert send_report_email("owner@acme.io", path) is False

    def test_unreadable_report_is_logged(self, tmp_path, caplog):
        with patch(REPORT_EMAIL) as send:
            assert send_report_email("owner@acme.io", tmp_path / "missing.json") is False
        send.assert_not_called()
        assert "Failed to read report" in caplog.text

    def test_recipients_are_active_owners_and_admins(self, db, org):
        org_id = org["org"].id
        db.add_all([
            User(email="viewer@acme.io", name="V", hashed_password="x", role="viewer", organization_id=org_id),
            User(email="gone@acme.io", name="G", hashed_password="x", role="admin", organization_id=org_id,
                 is_active=False),
        ])
        db.commit()
        emails = [u.email for u in report_recipients(db, org_id)]
        assert emails == ["owner@acme.io", "admin@acme.io"]


class TestSendEmail:
    def test_header_injection_is_reported_not_raised(self):
        with patch(SMTP) as smtp:
            ok, error = send_email("bad\n@x.io", "Hi", "<p>hi</p>")
        assert ok is False
        assert error
        smtp.assert_not_called()

    def test_smtp_failure_is_reported(self):
        with patch(SMTP, side_effect=OSError("connection refused")):
            assert send_email("a@x.io", "Hi", "<p>hi</p>") == (False, "connection refused")


class TestEmailQueue:
    def test_sends_due_emails_only(self, db):
        queue_email(db, "a@x.io", "Hi", "<p>hi</p>")
        queue_email(db, "b@x.io", "Later", "<p>later</p>",
                    scheduled_for=datetime.utcnow() + timedelta(hours=1))
        with patch(QUEUE_EMAIL, return_value=(True, "")) as send:
            result = process_email_queue(db)
        assert result == {"sent": 1, "retrying": 0, "failed": 0}
        assert send.call_args.args[0] == "a@x.io"
        assert db.query(EmailQueue).filter(EmailQueue.status == "sent").one().sent_at is not None

    def test_retries_then_fails(self, db):
        queue_email(db, "a@x.io", "Hi", "<p>hi</p>")
        with patch(QUEUE_EMAIL, return_value=(False, "refused")):
            first = process_email_queue(db)
            process_email_queue(db)
            last = process_email_queue(db)
            after = process_email_queue(db)
        assert first == {"sent": 0, "retrying": 1, "failed": 0}
        assert last == {"sent": 0, "retrying": 0, "failed": 1}
        assert after == {"sent": 0, "retrying": 0, "failed": 0}
        item = db.query(EmailQueue).one()
        assert item.status == "failed"
        assert item.attempts == 3
        assert item.last_error == "refused"

    def test_bad_address_does_not_block_the_queue(self, db):
        bad = queue_email(db, "bad\n@x.io", "Hi", "<p>hi</p>")
        queue_email(db, "ok@x.io", "Hi", "<p>hi</p>")
        with patch(SMTP):
            first = process_email_queue(db)
            process_email_queue(db)
            last = process_email_queue(db)
        assert first == {"sent": 1, "retrying": 1, "failed": 0}
        assert last == {"sent": 0, "retrying": 0, "failed": 1}
        db.refresh(bad)
        assert bad.status == "failed"
        assert bad.attempts == 3
        assert bad.last_error

    def test_job_wrapper(self, db):
        queue_email(db, "a@x.io", "Hi", "<p>hi</p>")
        with patch(QUEUE_EMAIL, return_value=(True, "")):
            assert jobs.run_email_queue()["sent"] == 1


class TestScheduler:
    def test_jobs_registered(self):
        scheduler = jobs.build_scheduler(BackgroundScheduler)
        daily = scheduler.get_job(jobs.DAILY_REPORTS_JOB_ID)
        queue = scheduler.get_job(jobs.EMAIL_QUEUE_JOB_ID)
        assert daily.func is jobs.run_daily_reports
        assert str(daily.trigger).startswith("cron[")
        assert "hour='0'" in str(daily.trigger) and "minute='0'" in str(daily.trigger)
        assert queue.func is jobs.run_email_queue
        assert daily.max_instances == 1 and daily.coalesce is True

    def test_run_daily_reports(self, db, reports_dir):
        make_org(db)
        with patch.object(jobs.settings, "REPORTS_DIR", str(reports_dir)), \
                patch(REPORT_EMAIL, return_value=(True, "")):
            summary = jobs.run_daily_reports()
        assert len(summary["generated"]) == 1
        assert summary["emailed"] == 2
