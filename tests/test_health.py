"""Tests for /ping and /health."""

import pytest

from bookmanager.models import db as _db


class _Job:
    def __init__(self, job_id):
        self.id = job_id
        self.next_run_time = None


class _Scheduler:
    running = True

    def __init__(self, *job_ids):
        self._jobs = [_Job(job_id) for job_id in job_ids]

    def get_jobs(self):
        return self._jobs


def _install_scheduler(app, monkeypatch, failures):
    monkeypatch.setitem(app.config, "SCHEDULER_MAX_CONSECUTIVE_FAILURES", 3)
    monkeypatch.setattr(app, "scheduler", _Scheduler("send_due_reminders"), raising=False)
    monkeypatch.setattr(app, "scheduler_state_lock", None, raising=False)
    monkeypatch.setattr(
        app,
        "scheduler_state",
        {
            "updated_at": "2026-10-01T00:00:00+00:00",
            "jobs": {
                "send_due_reminders": {
                    "last_status": "error",
                    "last_error": "Unhandled exception",
                    "consecutive_failures": failures,
                }
            },
        },
        raising=False,
    )


def test_sqlite_foreign_keys_enabled(db):
    assert _db.session.execute(_db.text("PRAGMA foreign_keys")).scalar() == 1


def test_ping(client):
    rv = client.get("/ping")
    assert rv.status_code == 200
    assert rv.content_type.startswith("application/json")
    data = rv.get_json()
    assert data["status"] == "ok"
    assert data["timestamp"]


def test_health_reports_disabled_scheduler(client):
    rv = client.get("/health")
    data = rv.get_json()
    assert rv.status_code == 200
    assert data["status"] == "ok"
    assert data["database"] == {"status": "ok"}
    assert data["scheduler"] == {"running": False, "reason": "disabled"}


def test_health_hides_database_error_detail(client, monkeypatch):
    def _fail(*args, **kwargs):
        raise RuntimeError("sqlite:///srv/private/bookmanager.db is unreachable")

    monkeypatch.setattr(_db.session, "execute", _fail)

    rv = client.get("/health")
    data = rv.get_json()
    assert rv.status_code == 503
    assert data["status"] == "degraded"
    assert data["database"] == {"status": "error", "error": "unavailable"}


@pytest.mark.parametrize("failures, status_code, failing", [(3, 503, ["send_due_reminders"]), (2, 200, [])])
def test_health_failure_threshold(app, client, monkeypatch, failures, status_code, failing):
    _install_scheduler(app, monkeypatch, failures)

    rv = client.get("/health")
    data = rv.get_json()
    assert rv.status_code == status_code
    assert data["scheduler"]["running"] is True
    assert data["scheduler"]["failing_jobs"] == failing
    assert data["scheduler"]["jobs"][0]["consecutive_failures"] == failures


def test_health_scheduler_probe_failure(app, client, monkeypatch):
    class _Broken:
        @property
        def running(self):
            raise RuntimeError("scheduler probe crash")

        def get_jobs(self):
            return []

    monkeypatch.setattr(app, "scheduler", _Broken(), raising=False)

    rv = client.get("/health")
    data = rv.get_json()
    assert rv.status_code == 503
    assert data["scheduler"] == {"running": False, "reason": "probe_failed"}
