from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from familyos.config import settings
from familyos.models.domain.action_payloads import parse_action_payload
from familyos.models.domain.agent_domain import ActionStatus, PendingAction, RiskLevel
from familyos.models.domain.calendar_domain import ChannelSubscription

pytestmark = pytest.mark.integration


def _pending_action(action_id, *, status, expires_at, updated_at):
    return PendingAction(
        id=action_id,
        household_id="hh-1",
        user_id="user-a",
        action_type="notifyPartner",
        payload=parse_action_payload("notifyPartner", {"message": "Pick up Maya"}),
        status=status,
        risk_level=RiskLevel.MEDIUM,
        reason="medium risk action requires approval",
        expires_at=expires_at,
        created_at=updated_at,
        updated_at=updated_at,
    )


def test_channel_renewal_renews_and_registers(api_app, subscription_repo, provider):
    subscription_repo.rows.append(
        ChannelSubscription(
            id="sub-old",
            calendar_ref="cal-a",
            channel_id="chan-old",
            resource_id="res-old",
            sync_token="sync-1",
            expiration=datetime.now(UTC) + timedelta(hours=6),
        )
    )
    client = TestClient(api_app)

    response = client.post("/api/cron/channels/renew")

    assert response.status_code == 200
    body = response.json()
    assert body["renewed"]["job"] == "channel_renewal"
    assert body["renewed"]["succeeded"] == 1
    assert body["registered"]["job"] == "channel_registration"
    assert body["registered"]["succeeded"] == 1

    active = [row for row in subscription_repo.rows if row.is_active()]
    assert sorted(row.calendar_ref for row in active) == ["cal-a", "cal-b"]
    renewed = next(row for row in active if row.calendar_ref == "cal-a")
    assert renewed.sync_token == "sync-1"


def test_channel_renewal_reports_failures(api_app, provider):
    provider.register_errors["sam@example.com"] = RuntimeError("Calendar access denied")
    client = TestClient(api_app)

    response = client.get("/api/cron/channels/renew")

    registered = response.json()["registered"]
    assert response.status_code == 200
    assert registered["succeeded"] == 1
    assert registered["failed"] == 1
    assert registered["errors"] == [{"ref": "cal-b", "error": "Calendar access denied"}]


def test_expire_actions(api_app, action_repo):
    now = datetime.now(UTC)
    action_repo.rows["act-stale"] = _pending_action(
        "act-stale",
        status=ActionStatus.PENDING,
        expires_at=now - timedelta(minutes=5),
        updated_at=now - timedelta(hours=1),
    )
    action_repo.rows["act-live"] = _pending_action(
        "act-live",
        status=ActionStatus.PENDING,
        expires_at=now + timedelta(hours=1),
        updated_at=now,
    )
    client = TestClient(api_app)

    response = client.post("/api/cron/actions/expire")

    assert response.json() == {"job": "expire_actions", "count": 1}
    assert action_repo.rows["act-stale"].status == ActionStatus.EXPIRED
    assert action_repo.rows["act-live"].status == ActionStatus.PENDING


def test_cleanup_actions_removes_old_terminal_rows(api_app, action_repo):
    old = datetime.now(UTC) - timedelta(days=settings.ACTION_RETENTION_DAYS + 1)
    action_repo.rows["act-old"] = _pending_action(
        "act-old", status=ActionStatus.EXECUTED, expires_at=old, updated_at=old
    )
    client = TestClient(api_app)

    response = client.post("/api/cron/actions/cleanup")

    assert response.json() == {"job": "cleanup_actions", "count": 1}
    assert action_repo.rows == {}


def test_memory_cleanup(api_app):
    client = TestClient(api_app)

    response = client.post("/api/cron/memory/cleanup")

    assert response.json() == {"job": "cleanup_memory", "count": 0}


def test_intelligence_sweep(api_app):
    client = TestClient(api_app)

    response = client.post("/api/cron/intelligence")

    body = response.json()
    assert response.status_code == 200
    assert body["job"] == "intelligence"
    assert body["processed"] == 1
    assert body["failed"] == 0


@pytest.mark.parametrize(
    "authorization,expected",
    [(None, 401), ("Bearer wrong", 401), ("Bearer s3cret", 200)],
)
def test_cron_secret_enforced_when_configured(api_app, monkeypatch, authorization, expected):
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
    client = TestClient(api_app)
    headers = {"Authorization": authorization} if authorization else {}

    response = client.post("/api/cron/memory/cleanup", headers=headers)

    assert response.status_code == expected


def test_production_without_secret_is_unavailable(api_app, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", None)
    monkeypatch.setattr(settings, "environment", "production")
    client = TestClient(api_app)

    response = client.post("/api/cron/memory/cleanup")

    assert response.status_code == 503


def test_cron_without_container_is_unavailable(api_app):
    del api_app.state.container
    client = TestClient(api_app)

    response = client.post("/api/cron/actions/expire")

    assert response.status_code == 503
