"""
Daily workflow scheduler.

Checks once an hour and, during the configured hour, triggers a run for
every owner whose settings have ``enabled=true``. Owners that already have
an active run are skipped. Each owner is triggered at most once per day.
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Callable, List, Optional

from src.common.error_handling import AlreadyRunning
from src.common.repositories import (
    WorkflowSettingsRepositoryInterface,
    get_workflow_settings_repository,
)
from src.services.auto_job_workflow import AutoJobWorkflow

logger = logging.getLogger(__name__)


class WorkflowScheduler:
    """Hourly check that fans scheduled runs out to enabled owners."""

    def __init__(
        self,
        workflow: AutoJobWorkflow,
        settings_repository: Optional[WorkflowSettingsRepositoryInterface] = None,
        hour: int = 9,
        check_interval_seconds: float = 3600,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.workflow = workflow
        self._settings_repository = settings_repository
        self.hour = hour
        self.check_interval_seconds = check_interval_seconds
        self._clock = clock
        self._last_run_date: Optional[date] = None

    @property
    def settings_repository(self) -> WorkflowSettingsRepositoryInterface:
        if self._settings_repository is None:
            self._settings_repository = get_workflow_settings_repository()
        return self._settings_repository

    async def run_once(self) -> List[str]:
        """
        Trigger scheduled runs if it is the scheduled hour and not yet done today.

        Returns:
            Run ids started by this check
        """
        now = self._clock()
        if now.hour != self.hour or self._last_run_date == now.date():
            return []
        self._last_run_date = now.date()

        owners = self.settings_repository.list_enabled_owners()
        logger.info(f"Scheduled check: {len(owners)} owners enabled")

        started = []
        for owner_id in owners:
            try:
                run = await self.workflow.trigger(owner_id, is_manual=False)
                started.append(run.run_id)
            except AlreadyRunning as e:
                logger.info(f"Skipping scheduled run for {owner_id}: {e}")
            except Exception as e:
                logger.error(f"Scheduled run for {owner_id} failed to start: {e}")
        return started

    async def run_forever(self) -> None:
        """Loop until cancelled."""
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Scheduler check failed: {e}")
            await asyncio.sleep(self.check_interval_seconds)
