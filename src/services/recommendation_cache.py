"""
Recommendation Cache

Per-job memoized "should I apply" verdict stored on the AutoJobRecord.

get_or_compute:
1. A final entry (score or error) is returned as-is unless force_refresh.
2. Otherwise the caller claims the entry by writing the "Calculating..."
   placeholder with a compare-and-swap on the record's generation. Only
   the winner calls the AI adapter; losers poll until the entry is final.
3. The winner always finalizes: a scored entry on success, an error entry
   on timeout, adapter failure or interruption.

A placeholder older than the staleness window is stuck (its computation
died with the process). Reads treat it as absent, and ``sweep`` clears it.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from src.common.error_handling import AdapterError, ItemFailure
from src.common.json_utils import coerce_score
from src.common.repositories import AutoJobRepositoryInterface, get_auto_job_repository
from src.common.workflow_types import AutoJobRecord, RecommendationCacheEntry, utcnow
from src.services.ai_adapter import AIAdapter

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "interrupted"


class RecommendationCache:
    """Claim / compute / finalize cycle around AIAdapter.recommend."""

    def __init__(
        self,
        ai_adapter: AIAdapter,
        repository: Optional[AutoJobRepositoryInterface] = None,
        ai_timeout_seconds: float = 120,
        stale_after_seconds: float = 600,
        poll_interval_seconds: float = 1.0,
    ):
        self.ai_adapter = ai_adapter
        self._repository = repository
        self.ai_timeout_seconds = ai_timeout_seconds
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self.poll_interval_seconds = poll_interval_seconds

    @property
    def repository(self) -> AutoJobRepositoryInterface:
        if self._repository is None:
            self._repository = get_auto_job_repository()
        return self._repository

    async def get_or_compute(
        self, record_id: str, profile: str, force_refresh: bool = False
    ) -> RecommendationCacheEntry:
        """
        Return the cached recommendation for a record, computing it at most once.

        Raises:
            ItemFailure: If the record does not exist, or another caller's
                computation did not finish within the AI timeout
        """
        loop = asyncio.get_running_loop()
        wait_deadline = loop.time() + self.ai_timeout_seconds + self.poll_interval_seconds

        while True:
            record = self.repository.get(record_id)
            if record is None:
                raise ItemFailure(f"Auto job {record_id} not found")
            entry = record.recommendation

            if entry is not None and entry.is_placeholder and not entry.is_stuck(self.stale_after):
                if loop.time() > wait_deadline:
                    raise ItemFailure("Recommendation is still being computed")
                await asyncio.sleep(self.poll_interval_seconds)
                continue

            if entry is not None and entry.is_final and not force_refresh:
                return entry

            generation = record.recommendation_generation
            claimed = self.repository.claim_recommendation(
                record.id, generation, RecommendationCacheEntry.placeholder()
            )
            if claimed:
                return await self._compute(record, profile, generation + 1)

            # Another caller claimed first; its result satisfies a refresh too
            force_refresh = False

    async def _compute(
        self, record: AutoJobRecord, profile: str, generation: int
    ) -> RecommendationCacheEntry:
        entry: Optional[RecommendationCacheEntry] = None
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self.ai_adapter.recommend, record, profile),
                timeout=self.ai_timeout_seconds,
            )
            score = coerce_score(getattr(result, "score", None))
            if score is None:
                entry = RecommendationCacheEntry.failure("Malformed AI response: missing score")
            else:
                entry = RecommendationCacheEntry(
                    score=score,
                    should_apply=bool(result.should_apply),
                    reason=result.reason,
                    cached_at=utcnow(),
                )
        except asyncio.TimeoutError:
            entry = RecommendationCacheEntry.failure(
                f"AI call timed out after {self.ai_timeout_seconds:g}s"
            )
        except AdapterError as e:
            entry = RecommendationCacheEntry.failure(str(e))
        except Exception as e:
            logger.exception(f"Recommendation for {record.job_id} raised unexpectedly")
            entry = RecommendationCacheEntry.failure(f"AI call failed: {e}")
        finally:
            if entry is None:
                entry = RecommendationCacheEntry.failure(INTERRUPTED_MESSAGE)
            if not self.repository.finalize_recommendation(record.id, generation, entry):
                logger.warning(
                    f"Recommendation for {record.job_id} superseded before it was stored"
                )

        record.recommendation = entry
        record.recommendation_generation = generation
        return entry

    def sweep(self) -> int:
        """Clear stuck placeholders so the next read recomputes them."""
        cutoff = utcnow() - self.stale_after
        cleared = self.repository.clear_stuck_recommendations(cutoff)
        if cleared:
            logger.info(f"Cleared {cleared} stuck recommendation entries")
        return cleared


async def run_periodic_sweep(cache: RecommendationCache, interval_seconds: float) -> None:
    """Background loop running ``cache.sweep`` until cancelled."""
    while True:
        try:
            await asyncio.to_thread(cache.sweep)
        except Exception as e:
            logger.error(f"Stuck recommendation sweep failed: {e}")
        await asyncio.sleep(interval_seconds)
