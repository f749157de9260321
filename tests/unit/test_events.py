from datetime import date

from canarywatch.core.time import now_utc
from canarywatch.models.entities import Document, Item, PipelineRun, Signal, Source, SourceTier, SourceType, TimelineEvent
from canarywatch.services.events import (
    detect_and_record_events,
    detect_axis_events,
    detect_canary_events,
    record_events,
)


def test_threshold_crossing_detected_once_per_level():
    events = detect_axis_events(
        {"reasoning": {"score": 0.8, "delta": 0.05}},
        {"reasoning": {"score": 0.45}},
    )
    titles = [event.title for event in events]
    assert titles == ["Reasoning crosses 50% threshold", "Reasoning crosses 75% threshold"]


def test_no_crossing_when_already_above():
    assert detect_axis_events({"planning": {"score": 0.6, "delta": 0.01}}, {"planning": {"score": 0.55}}) == []


def test_rapid_decline_detected():
    events = detect_axis_events({"tool_use": {"score": 0.2, "delta": -0.2}}, {"tool_use": {"score": 0.4}})
    assert [event.title for event in events] == ["Significant decline in Tool Use"]


def test_canary_status_change():
    events = detect_canary_events(
        [{"canary_id": "arc_agi", "status": "yellow"}, {"canary_id": "deception", "status": "gray"}],
        [{"canary_id": "arc_agi", "status": "green"}],
    )
    assert len(events) == 1
    assert events[0].title == 'Canary "arc_agi" changed: green -> yellow'
    assert events[0].category == "policy"


def test_record_events_dedupes_by_date_and_title(db):
    day = date(2026, 3, 1)
    events = detect_axis_events({"reasoning": {"score": 0.55, "delta": 0.0}}, {})
    assert record_events(db, day, events) == 1
    assert record_events(db, day, events) == 0
    db.commit()
    assert db.query(TimelineEvent).count() == 1


def test_benchmark_signals_become_events(db):
    source = Source(name="ARC Prize", url="https://arcprize.org/blog", tier=SourceTier.TIER_0, source_type=SourceType.rss)
    run = PipelineRun()
    db.add_all([source, run])
    db.flush()
    item = Item(run_id=run.id, source_id=source.id, url="https://arcprize.org/blog/r", url_hash="h")
    db.add(item)
    db.flush()
    document = Document(item_id=item.id)
    db.add(document)
    db.flush()
    created_at = now_utc()
    db.add_all(
        [
            Signal(
                document_id=document.id,
                claim_summary="New model scores 55% on ARC-AGI-2",
                classification="benchmark_result",
                axes_impacted=[{"axis": "reasoning", "direction": "up", "magnitude": 0.7}],
                confidence=0.8,
                source_url="https://arcprize.org/blog/r",
                scoring_version="v1",
                created_at=created_at,
            ),
            Signal(
                document_id=document.id,
                claim_summary="Low confidence benchmark rumour",
                classification="benchmark_result",
                confidence=0.5,
                scoring_version="v1",
                created_at=created_at,
            ),
        ]
    )
    db.commit()

    created = detect_and_record_events(db, created_at.date(), {}, [], None, None)
    db.commit()
    assert created == 1
    event = db.query(TimelineEvent).one()
    assert event.category == "benchmark"
    assert event.axes_impacted == ["reasoning"]
    assert event.title.startswith("Benchmark: New model scores 55%")
