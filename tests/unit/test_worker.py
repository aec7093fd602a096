from datetime import UTC, datetime, timedelta

import pytest

from familyos.jobs import worker
from familyos.models.domain.action_payloads import parse_action_payload
from familyos.models.domain.agent_domain import RiskLevel


@pytest.mark.asyncio
async def test_run_worker_runs_job_with_injected_container(monkeypatch, container):
    called = {}

    async def dummy_job(c):
        called["container"] = c
        return {"job_run": "dummy", "count": 0}

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    result = await worker.run_worker("dummy", container=container)

    assert called["container"] is container
    assert result == {"job_run": "dummy", "count": 0}


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError, match="Unknown worker job 'missing'"):
        await worker.run_worker("missing")


def test_job_name_from_argv(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["worker", "--loop", "Expire_Actions"])
    monkeypatch.delenv("WORKER_JOB", raising=False)

    assert worker._resolve_job_name() == "expire_actions"
    assert worker._resolve_loop() is True


def test_job_name_from_env(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["worker"])
    monkeypatch.setenv("WORKER_JOB", "intelligence")
    monkeypatch.delenv("WORKER_LOOP", raising=False)

    assert worker._resolve_job_name() == "intelligence"
    assert worker._resolve_loop() is False


def test_every_job_has_an_interval():
    assert set(worker.JOB_INTERVAL_SECONDS) == set(worker.JOB_REGISTRY)


@pytest.mark.asyncio
async def test_channel_renewal_job_registers_missing_channels(container, provider):
    result = await worker.run_worker("channel_renewal", container=container)

    assert result["renewed"]["processed"] == 0
    assert result["registered"]["succeeded"] == 2
    assert sorted(calendar_id for _, calendar_id in provider.registered) == [
        "alex@example.com",
        "sam@example.com",
    ]


@pytest.mark.asyncio
async def test_expire_actions_job_counts_stale_actions(container, action_repo):
    payload = parse_action_payload(
        "createEvent", {"title": "Dentist", "start": "2026-03-10T15:00:00Z"}
    )
    await action_repo.create(
        household_id="hh-1",
        user_id="user-a",
        payload=payload,
        risk_level=RiskLevel.MEDIUM,
        reason="needs approval",
        expires_at=datetime.now(UTC) - timedelta(minutes=1),
    )

    result = await worker.run_worker("expire_actions", container=container)

    assert result == {"job_run": "expire_actions", "count": 1}


@pytest.mark.asyncio
async def test_cleanup_memory_job_with_nothing_expired(container):
    result = await worker.run_worker("cleanup_memory", container=container)

    assert result == {"job_run": "cleanup_memory", "count": 0}


@pytest.mark.asyncio
async def test_intelligence_job_sweeps_each_household(container):
    result = await worker.run_worker("intelligence", container=container)

    assert result["job_run"] == "intelligence"
    assert result["processed"] == 1
    assert result["failed"] == 0
