"""
Tests for the daily workflow scheduler.
"""

from datetime import datetime

import pytest
from unittest.mock import AsyncMock, MagicMock

from src.common.error_handling import AlreadyRunning
from src.services.workflow_scheduler import WorkflowScheduler


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def fake_workflow(fail_for=()):
    workflow = MagicMock()

    async def trigger(owner_id, is_manual=True):
        if owner_id in fail_for:
            raise AlreadyRunning(owner_id, "active-run")
        run = MagicMock()
        run.run_id = f"run-{owner_id}"
        return run

    workflow.trigger = AsyncMock(side_effect=trigger)
    return workflow


@pytest.fixture
def enabled_settings(settings_repo):
    settings_repo.settings = {
        "owner-1": {"keywords": ["python"], "enabled": True},
        "owner-2": {"keywords": ["go"], "enabled": True},
        "owner-3": {"keywords": ["rust"], "enabled": False},
    }
    return settings_repo


class TestWorkflowScheduler:

    @pytest.mark.asyncio
    async def test_triggers_enabled_owners_at_scheduled_hour(self, enabled_settings):
        workflow = fake_workflow()
        scheduler = WorkflowScheduler(
            workflow, enabled_settings, hour=9, clock=Clock(datetime(2026, 3, 2, 9, 15))
        )

        started = await scheduler.run_once()

        assert sorted(started) == ["run-owner-1", "run-owner-2"]
        for call in workflow.trigger.await_args_list:
            assert call.kwargs["is_manual"] is False

    @pytest.mark.asyncio
    async def test_does_nothing_outside_scheduled_hour(self, enabled_settings):
        workflow = fake_workflow()
        scheduler = WorkflowScheduler(
            workflow, enabled_settings, hour=9, clock=Clock(datetime(2026, 3, 2, 14, 0))
        )

        assert await scheduler.run_once() == []
        workflow.trigger.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_runs_at_most_once_per_day(self, enabled_settings):
        workflow = fake_workflow()
        clock = Clock(datetime(2026, 3, 2, 9, 0))
        scheduler = WorkflowScheduler(workflow, enabled_settings, hour=9, clock=clock)

        await scheduler.run_once()
        clock.now = datetime(2026, 3, 2, 9, 45)
        assert await scheduler.run_once() == []

        clock.now = datetime(2026, 3, 3, 9, 5)
        assert len(await scheduler.run_once()) == 2
        assert workflow.trigger.await_count == 4

    @pytest.mark.asyncio
    async def test_skips_owner_with_active_run(self, enabled_settings):
        workflow = fake_workflow(fail_for={"owner-1"})
        scheduler = WorkflowScheduler(
            workflow, enabled_settings, hour=9, clock=Clock(datetime(2026, 3, 2, 9, 0))
        )

        started = await scheduler.run_once()

        assert started == ["run-owner-2"]

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_stop_other_owners(self, enabled_settings):
        workflow = fake_workflow()
        original = workflow.trigger.side_effect

        async def flaky(owner_id, is_manual=True):
            if owner_id == "owner-1":
                raise ConnectionError("store unreachable")
            return await original(owner_id, is_manual=is_manual)

        workflow.trigger.side_effect = flaky
        scheduler = WorkflowScheduler(
            workflow, enabled_settings, hour=9, clock=Clock(datetime(2026, 3, 2, 9, 0))
        )

        assert await scheduler.run_once() == ["run-owner-2"]
