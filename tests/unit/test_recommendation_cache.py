"""
Tests for the recommendation cache.

Covers the claim / compute / finalize cycle: single computation per key,
concurrent readers, error entries, stuck placeholders and the sweep.
"""

import asyncio
from datetime import timedelta

import pytest

from src.common.error_handling import ItemFailure
from src.common.workflow_types import DEFAULT_FAILURE_MESSAGE, PLACEHOLDER_REASON, utcnow
from src.services.recommendation_cache import INTERRUPTED_MESSAGE, RecommendationCache, run_periodic_sweep
from tests.fixtures.fake_collaborators import OWNER_ID, PROFILE, ScriptedAIAdapter


def placeholder_doc(age_seconds: float):
    return {
        "score": None,
        "should_apply": False,
        "reason": PLACEHOLDER_REASON,
        "cached_at": utcnow() - timedelta(seconds=age_seconds),
    }


def scored_doc(score: int, age_seconds: float = 0):
    return {
        "score": score,
        "should_apply": score >= 70,
        "reason": f"Scored {score}",
        "cached_at": utcnow() - timedelta(seconds=age_seconds),
    }


def make_cache(adapter, repo, **kwargs):
    options = {"ai_timeout_seconds": 5, "stale_after_seconds": 600, "poll_interval_seconds": 0.01}
    options.update(kwargs)
    return RecommendationCache(adapter, repo, **options)


class TestGetOrCompute:

    @pytest.mark.asyncio
    async def test_miss_computes_and_stores(self, cache, jobs_repo, ai_adapter):
        record = jobs_repo.seed(OWNER_ID, "job-1")

        entry = await cache.get_or_compute(record.id, PROFILE)

        assert entry.score == 80
        assert entry.should_apply is True
        assert entry.error is None
        stored = jobs_repo.docs[record.id]["recommendation"]
        assert stored["score"] == 80
        assert "error" not in stored
        assert jobs_repo.docs[record.id]["recommendation_generation"] == 1

    @pytest.mark.asyncio
    async def test_second_read_is_served_from_cache(self, cache, jobs_repo, ai_adapter):
        record = jobs_repo.seed(OWNER_ID, "job-1")

        first = await cache.get_or_compute(record.id, PROFILE)
        second = await cache.get_or_compute(record.id, PROFILE)

        assert first.score == second.score
        assert ai_adapter.recommend_calls == ["job-1"]

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_computation(self, jobs_repo):
        adapter = ScriptedAIAdapter(recommend_delay=0.2)
        cache = make_cache(adapter, jobs_repo)
        record = jobs_repo.seed(OWNER_ID, "job-1")

        entries = await asyncio.gather(*[cache.get_or_compute(record.id, PROFILE) for _ in range(5)])

        assert len(adapter.recommend_calls) == 1
        assert {e.score for e in entries} == {80}
        assert len(jobs_repo.claims) == 1

    @pytest.mark.asyncio
    async def test_adapter_error_is_cached_as_error_entry(self, jobs_repo):
        adapter = ScriptedAIAdapter(fail_recommend={"job-1"})
        cache = make_cache(adapter, jobs_repo)
        record = jobs_repo.seed(OWNER_ID, "job-1")

        entry = await cache.get_or_compute(record.id, PROFILE)
        again = await cache.get_or_compute(record.id, PROFILE)

        assert entry.score is None
        assert entry.error == "AI provider error for job-1"
        assert entry.is_final
        assert again.error == entry.error
        assert len(adapter.recommend_calls) == 1

    @pytest.mark.asyncio
    async def test_blank_adapter_error_still_records_error(self, jobs_repo):
        adapter = ScriptedAIAdapter(fail_recommend={"job-1"}, recommend_error="")
        cache = make_cache(adapter, jobs_repo)
        record = jobs_repo.seed(OWNER_ID, "job-1")

        entry = await cache.get_or_compute(record.id, PROFILE)

        assert entry.score is None
        assert entry.error == DEFAULT_FAILURE_MESSAGE
        assert jobs_repo.docs[record.id]["recommendation"]["error"] == DEFAULT_FAILURE_MESSAGE

    @pytest.mark.asyncio
    async def test_timeout_produces_error_entry(self, jobs_repo):
        adapter = ScriptedAIAdapter(recommend_delay=0.5)
        cache = make_cache(adapter, jobs_repo, ai_timeout_seconds=0.05)
        record = jobs_repo.seed(OWNER_ID, "job-1")

        entry = await cache.get_or_compute(record.id, PROFILE)

        assert entry.score is None
        assert entry.error == "AI call timed out after 0.05s"
        assert jobs_repo.docs[record.id]["recommendation"]["error"] == entry.error

    @pytest.mark.asyncio
    async def test_exactly_one_of_score_and_error_at_rest(self, jobs_repo):
        adapter = ScriptedAIAdapter(fail_recommend={"job-2"})
        cache = make_cache(adapter, jobs_repo)
        ok = jobs_repo.seed(OWNER_ID, "job-1")
        bad = jobs_repo.seed(OWNER_ID, "job-2")

        await cache.get_or_compute(ok.id, PROFILE)
        await cache.get_or_compute(bad.id, PROFILE)

        for record in (ok, bad):
            stored = jobs_repo.docs[record.id]["recommendation"]
            assert (stored["score"] is None) != (stored.get("error") is None)

    @pytest.mark.asyncio
    async def test_force_refresh_recomputes(self, cache, jobs_repo, ai_adapter):
        record = jobs_repo.seed(
            OWNER_ID, "job-1", recommendation=scored_doc(40), recommendation_generation=1
        )

        cached = await cache.get_or_compute(record.id, PROFILE)
        refreshed = await cache.get_or_compute(record.id, PROFILE, force_refresh=True)

        assert cached.score == 40
        assert refreshed.score == 80
        assert ai_adapter.recommend_calls == ["job-1"]
        assert jobs_repo.docs[record.id]["recommendation_generation"] == 2

    @pytest.mark.asyncio
    async def test_fresh_placeholder_is_waited_on(self, jobs_repo, ai_adapter):
        cache = make_cache(ai_adapter, jobs_repo)
        record = jobs_repo.seed(
            OWNER_ID, "job-1", recommendation=placeholder_doc(1), recommendation_generation=1
        )

        async def finish_elsewhere():
            await asyncio.sleep(0.05)
            jobs_repo.docs[record.id]["recommendation"] = scored_doc(65)

        _, entry = await asyncio.gather(finish_elsewhere(), cache.get_or_compute(record.id, PROFILE))

        assert entry.score == 65
        assert ai_adapter.recommend_calls == []

    @pytest.mark.asyncio
    async def test_waiting_gives_up_after_ai_timeout(self, jobs_repo, ai_adapter):
        cache = make_cache(ai_adapter, jobs_repo, ai_timeout_seconds=0.05)
        record = jobs_repo.seed(
            OWNER_ID, "job-1", recommendation=placeholder_doc(1), recommendation_generation=1
        )

        with pytest.raises(ItemFailure):
            await cache.get_or_compute(record.id, PROFILE)
        assert ai_adapter.recommend_calls == []

    @pytest.mark.asyncio
    async def test_stuck_placeholder_is_recomputed(self, jobs_repo, ai_adapter):
        cache = make_cache(ai_adapter, jobs_repo, stale_after_seconds=60)
        record = jobs_repo.seed(
            OWNER_ID, "job-1", recommendation=placeholder_doc(3600), recommendation_generation=1
        )

        entry = await cache.get_or_compute(record.id, PROFILE)

        assert entry.score == 80
        assert ai_adapter.recommend_calls == ["job-1"]

    @pytest.mark.asyncio
    async def test_cancelled_computation_stores_interrupted(self, jobs_repo):
        adapter = ScriptedAIAdapter(recommend_delay=0.5)
        cache = make_cache(adapter, jobs_repo)
        record = jobs_repo.seed(OWNER_ID, "job-1")

        task = asyncio.create_task(cache.get_or_compute(record.id, PROFILE))
        while not adapter.recommend_calls:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        stored = jobs_repo.docs[record.id]["recommendation"]
        assert stored["score"] is None
        assert stored["error"] == INTERRUPTED_MESSAGE

    @pytest.mark.asyncio
    async def test_superseded_result_is_not_stored(self, jobs_repo):
        adapter = ScriptedAIAdapter(recommend_delay=0.1)
        cache = make_cache(adapter, jobs_repo)
        record = jobs_repo.seed(OWNER_ID, "job-1")

        async def refresh_midway():
            await asyncio.sleep(0.03)
            # A newer claim bumps the generation under the running computation
            jobs_repo.docs[record.id]["recommendation_generation"] = 5
            jobs_repo.docs[record.id]["recommendation"] = scored_doc(12)

        await asyncio.gather(refresh_midway(), cache.get_or_compute(record.id, PROFILE))

        assert jobs_repo.docs[record.id]["recommendation"]["score"] == 12

    @pytest.mark.asyncio
    async def test_missing_record_raises(self, cache):
        with pytest.raises(ItemFailure):
            await cache.get_or_compute("65f000000000000000000000", PROFILE)


class TestSweep:

    def test_sweep_clears_only_stuck_placeholders(self, cache, jobs_repo):
        stuck = jobs_repo.seed(OWNER_ID, "job-1", recommendation=placeholder_doc(3600))
        fresh = jobs_repo.seed(OWNER_ID, "job-2", recommendation=placeholder_doc(5))
        scored = jobs_repo.seed(OWNER_ID, "job-3", recommendation=scored_doc(90, age_seconds=3600))
        failed = jobs_repo.seed(
            OWNER_ID, "job-4",
            recommendation={**placeholder_doc(3600), "reason": "boom", "error": "boom"},
        )

        cleared = cache.sweep()

        assert cleared == 1
        assert "recommendation" not in jobs_repo.docs[stuck.id]
        for record in (fresh, scored, failed):
            assert "recommendation" in jobs_repo.docs[record.id]

    def test_sweep_with_nothing_stuck(self, cache, jobs_repo):
        jobs_repo.seed(OWNER_ID, "job-1")

        assert cache.sweep() == 0

    @pytest.mark.asyncio
    async def test_periodic_sweep_runs_until_cancelled(self, cache, jobs_repo):
        stuck = jobs_repo.seed(OWNER_ID, "job-1", recommendation=placeholder_doc(3600))

        task = asyncio.create_task(run_periodic_sweep(cache, interval_seconds=0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert "recommendation" not in jobs_repo.docs[stuck.id]
