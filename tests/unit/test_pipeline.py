import pytest

from canarywatch.core.time import today_utc
from canarywatch.models.entities import (
    DailySnapshot,
    Document,
    Item,
    ItemStatus,
    Job,
    JobStatus,
    JobType,
    PipelineRun,
    PipelineRunStatus,
    Signal,
    Source,
    SourceTier,
    SourceType,
)
from canarywatch.pipeline.drain import drain_pipeline, execute_job, process_ready_jobs
from canarywatch.pipeline.stages import PipelineContext, handle_fetch
from canarywatch.schemas.extraction import AxisImpact, ExtractedClaim, SignalExtraction
from canarywatch.schemas.payloads import FetchPayload
from canarywatch.services.acquisition.fetcher import AcquisitionResult
from canarywatch.services.discovery.common import DiscoveredItem, FetchResult
from canarywatch.services.queue import JobQueue
from canarywatch.services.runs import PipelineConfigError, RunInProgressError, acquire_run_lock
from canarywatch.services.storage import InMemoryBlobStore
from canarywatch.utils.urls import url_hash

ARTICLE = " ".join(["frontier"] * 450)
ARTICLE_URL = "https://metr.org/blog/long-tasks"


async def fake_rss(source):
    return FetchResult(
        items=[DiscoveredItem(url=ARTICLE_URL, url_hash=url_hash(ARTICLE_URL), title="Long tasks", source_id=source.id)]
    )


async def fake_acquirer(url):
    return AcquisitionResult(success=True, content=ARTICLE, metadata={"title": "Long tasks"}, status_code=200)


async def fake_extractor(text, source_context):
    claim = ExtractedClaim(
        claim_summary="Agents now complete hour-long tasks",
        classification="research_finding",
        axes_impacted=[AxisImpact(axis="reasoning", direction="up", magnitude=0.6)],
        confidence=0.8,
    )
    return SignalExtraction(claims=[claim]), {"provider": "fake", "model": "fake-1", "prompt_version": "test"}


def no_sleep(seconds):
    return None


@pytest.fixture
def context(settings):
    return PipelineContext.from_settings(
        settings,
        blob_store=InMemoryBlobStore(),
        fetchers={SourceType.rss: fake_rss},
        acquirer=fake_acquirer,
        extractor=fake_extractor,
    )


@pytest.fixture
def source(db):
    row = Source(name="METR", url="https://metr.org/blog", tier=SourceTier.TIER_0, source_type=SourceType.rss)
    db.add(row)
    db.commit()
    return row


def test_drain_runs_every_stage_to_a_snapshot(session_factory, context, db, source):
    result = drain_pipeline(session_factory, context, source_groups=["TIER_0"], sleep=no_sleep)

    assert result.jobs_failed == 0
    assert result.jobs_done == 5
    assert result.items_discovered == 1
    assert result.items_processed == 1
    assert result.errors == []

    run = db.get(PipelineRun, result.run_id)
    assert run.status == PipelineRunStatus.completed
    assert run.completed_at is not None

    item = db.query(Item).one()
    assert item.status == ItemStatus.processed
    document = db.query(Document).one()
    assert document.extracted_metadata["llm"]["provider"] == "fake"
    assert len(document.extracted_metadata["extraction"]["claims"]) == 1
    assert db.query(Signal).count() == 1

    snapshot = db.query(DailySnapshot).filter(DailySnapshot.date == today_utc()).one()
    assert snapshot.axis_scores["reasoning"]["score"] == pytest.approx(0.18)
    assert {job.status for job in db.query(Job).all()} == {JobStatus.done}


def test_drain_runs_jobs_on_a_thread_pool(session_factory, settings, db, source):
    urls = [f"https://metr.org/blog/post-{n}" for n in range(8)]

    async def many_rss(src):
        return FetchResult(
            items=[DiscoveredItem(url=url, url_hash=url_hash(url), title=url, source_id=src.id) for url in urls]
        )

    threaded = PipelineContext.from_settings(
        settings.model_copy(update={"pipeline_job_concurrency": 4}),
        blob_store=InMemoryBlobStore(),
        fetchers={SourceType.rss: many_rss},
        acquirer=fake_acquirer,
        extractor=fake_extractor,
    )

    result = drain_pipeline(session_factory, threaded, source_groups=["TIER_0"], sleep=no_sleep)

    assert result.jobs_failed == 0
    assert result.jobs_done == 1 + 8 + 8 + 8 + 1
    assert result.items_discovered == 8
    assert result.items_processed == 8
    assert db.query(Item).filter(Item.status == ItemStatus.processed).count() == 8
    assert db.query(Signal).count() == 8
    snapshot = db.query(DailySnapshot).filter(DailySnapshot.date == today_utc()).one()
    assert snapshot.axis_scores["reasoning"]["signal_count"] == 8
    assert len(snapshot.signal_ids) == 8


def test_second_drain_finds_nothing_new(session_factory, context, db, source):
    drain_pipeline(session_factory, context, source_groups=["TIER_0"], sleep=no_sleep)
    second = drain_pipeline(session_factory, context, source_groups=["TIER_0"], sleep=no_sleep)

    assert second.items_discovered == 0
    assert second.jobs_done == 1
    assert db.query(Item).count() == 1
    assert db.query(PipelineRun).filter(PipelineRun.status == PipelineRunStatus.completed).count() == 2


def test_drain_refuses_when_lock_is_held(session_factory, context, db, source, settings):
    assert acquire_run_lock(db, "someone-else", settings.run_lock_stale_minutes)

    with pytest.raises(RunInProgressError):
        drain_pipeline(session_factory, context, source_groups=["TIER_0"], sleep=no_sleep)
    assert db.query(Job).count() == 0
    assert db.query(PipelineRun).count() == 0


def test_drain_rejects_unknown_source_groups(session_factory, context):
    with pytest.raises(PipelineConfigError):
        drain_pipeline(session_factory, context, source_groups=["TIER_9"], sleep=no_sleep)


def test_exhausted_time_budget_leaves_jobs_queued(session_factory, context, db, source):
    ticks = iter([0.0])

    def clock():
        return next(ticks, 1_000_000.0)

    result = drain_pipeline(session_factory, context, source_groups=["TIER_0"], time_budget_seconds=60, clock=clock, sleep=no_sleep)

    assert result.jobs_done == 0
    assert db.get(PipelineRun, result.run_id).status == PipelineRunStatus.completed
    pending = db.query(Job).one()
    assert pending.type == JobType.discover
    assert pending.status == JobStatus.pending


def test_transient_fetch_failure_is_retried_later(session_factory, settings, db, source):
    async def flaky(url):
        return AcquisitionResult(success=False, status_code=503, error="HTTP 503")

    context = PipelineContext.from_settings(
        settings,
        blob_store=InMemoryBlobStore(),
        fetchers={SourceType.rss: fake_rss},
        acquirer=flaky,
        extractor=fake_extractor,
    )
    result = drain_pipeline(session_factory, context, source_groups=["TIER_0"], sleep=no_sleep)

    assert result.jobs_failed == 1
    assert "TransientAcquisitionError" in result.errors[0]
    fetch_job = db.query(Job).filter(Job.type == JobType.fetch).one()
    assert fetch_job.status == JobStatus.retry
    assert fetch_job.attempts == 1
    assert db.query(Item).one().acquisition_attempt_count == 1
    assert db.get(PipelineRun, result.run_id).status == PipelineRunStatus.completed


def test_process_ready_jobs_drains_without_starting_a_run(session_factory, context, db, source):
    run = PipelineRun()
    db.add(run)
    db.flush()
    item = Item(run_id=run.id, source_id=source.id, url=ARTICLE_URL, url_hash=url_hash(ARTICLE_URL))
    db.add(item)
    db.flush()
    JobQueue(db).enqueue(run.id, JobType.fetch, FetchPayload(item_id=item.id), dedupe_key=f"FETCH:{item.url_hash}")
    db.commit()

    result = process_ready_jobs(session_factory, context, sleep=no_sleep)

    assert result.run_id is None
    assert result.jobs_done == 4
    assert db.query(Signal).count() == 1
    assert db.query(PipelineRun).count() == 1


def test_execute_job_records_failure_on_queue(session_factory, context, db, source):
    run = PipelineRun()
    db.add(run)
    db.flush()
    queue = JobQueue(db)
    job = queue.enqueue(run.id, JobType.extract, {"document_id": 404})
    db.commit()
    queue.claim_batch(1, "worker-1")

    outcome = execute_job(session_factory, job.id, context)

    assert not outcome.ok
    assert "LookupError" in outcome.error
    db.expire_all()
    failed = db.get(Job, job.id)
    assert failed.status == JobStatus.retry
    assert failed.last_error.startswith("LookupError")


def test_execute_job_leaves_job_leased_to_another_worker(session_factory, context, db, source):
    run = PipelineRun()
    db.add(run)
    db.flush()
    queue = JobQueue(db)
    job = queue.enqueue(run.id, JobType.extract, {"document_id": 404})
    db.commit()
    queue.claim_batch(1, "worker-2")

    outcome = execute_job(session_factory, job.id, context, worker_id="worker-1")

    assert not outcome.ok
    db.expire_all()
    leased = db.get(Job, job.id)
    assert leased.status == JobStatus.running
    assert leased.locked_by == "worker-2"
    assert leased.attempts == 0


def test_fetch_without_chaining_enqueues_nothing(context, db, source):
    run = PipelineRun()
    db.add(run)
    db.flush()
    item = Item(run_id=run.id, source_id=source.id, url=ARTICLE_URL, url_hash=url_hash(ARTICLE_URL))
    db.add(item)
    db.commit()

    context.chain = False
    result = handle_fetch(db, run.id, FetchPayload(item_id=item.id), context)
    db.commit()

    assert result["status"] == "acquired"
    assert db.query(Job).count() == 0
