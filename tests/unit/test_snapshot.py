from datetime import date, datetime, timedelta

import pytest

from canarywatch.models.entities import (
    CanaryDefinition,
    DailySnapshot,
    Document,
    Item,
    PipelineRun,
    Signal,
    Source,
    SourceTier,
    SourceType,
)
from canarywatch.services.canaries import CanarySpec
from canarywatch.services.snapshot import (
    PreviousSnapshot,
    SignalInput,
    build_snapshot,
    coverage_score,
    coverage_weights,
    create_daily_snapshot,
)

DAY = date(2026, 3, 2)


def _signal(signal_id, axis="reasoning", direction="up", magnitude=0.6, confidence=0.8, source_id=1, uncertainty=0.5):
    return SignalInput(
        id=signal_id,
        confidence=confidence,
        axes_impacted=[{"axis": axis, "direction": direction, "magnitude": magnitude, "uncertainty": uncertainty}],
        source_id=source_id,
    )


def test_single_signal_score_is_smoothed_from_zero():
    result = build_snapshot(DAY, [_signal(1)], [_signal(1)], None, [])
    reasoning = result.axis_scores["reasoning"]
    assert reasoning["score"] == pytest.approx(0.18)
    assert reasoning["delta"] == pytest.approx(0.18)
    assert reasoning["signal_count"] == 1
    assert reasoning["source_count"] == 1
    assert reasoning["uncertainty"] == 0.5
    assert set(result.axis_scores) == {"reasoning"}
    assert result.signal_ids == [1]


def test_quiet_day_decays_previous_score():
    previous = PreviousSnapshot(date=DAY - timedelta(days=1), axis_scores={"planning": {"score": 0.4}})
    result = build_snapshot(DAY, [], [], previous, [])
    planning = result.axis_scores["planning"]
    assert planning["score"] == pytest.approx(0.392)
    assert planning["delta"] == pytest.approx(-0.008)
    assert planning["uncertainty"] is None
    assert result.notes


def test_confidence_weighted_mean_with_opposing_signals():
    signals = [
        _signal(1, magnitude=0.5, confidence=0.9, source_id=1),
        _signal(2, direction="down", magnitude=0.5, confidence=0.3, source_id=2),
    ]
    result = build_snapshot(DAY, signals, signals, None, [])
    raw = (0.5 * 0.9 - 0.5 * 0.3) / (0.9 + 0.3)
    assert result.axis_scores["reasoning"]["score"] == pytest.approx(round(0.3 * raw, 4))
    assert result.axis_scores["reasoning"]["source_count"] == 2


def test_three_reasoning_signals_average_by_confidence():
    signals = [
        _signal(1, magnitude=0.8, confidence=0.9, source_id=1),
        _signal(2, magnitude=0.5, confidence=0.6, source_id=2),
        _signal(3, magnitude=0.2, confidence=0.3, source_id=3),
    ]
    result = build_snapshot(DAY, signals, signals, None, [])
    reasoning = result.axis_scores["reasoning"]
    # raw = (0.72 + 0.30 + 0.06) / 1.8 = 0.6
    assert reasoning["score"] == pytest.approx(0.18)
    assert reasoning["delta"] == pytest.approx(0.18)
    assert reasoning["signal_count"] == 3
    assert reasoning["source_count"] == 3
    assert result.coverage_score == pytest.approx(0.11)


def test_uncertainty_is_clamped_to_floor():
    signals = [_signal(i, uncertainty=0.0, source_id=i) for i in range(1, 21)]
    result = build_snapshot(DAY, signals, signals, None, [])
    assert result.axis_scores["reasoning"]["uncertainty"] == 0.1


def test_coverage_requires_three_window_signals():
    two = [_signal(1, source_id=1), _signal(2, source_id=2)]
    assert coverage_weights(two)["reasoning"] == 0.0

    three = two + [_signal(3, source_id=3)]
    assert coverage_weights(three)["reasoning"] == pytest.approx(1.0)
    assert coverage_score(three) == round(1 / 9, 2)

    single_source = [_signal(i, source_id=1) for i in range(3)]
    assert coverage_weights(single_source)["reasoning"] == pytest.approx(0.8)


def test_canaries_evaluated_from_axis_scores():
    canary = CanarySpec(id="arc_agi", axes_watched=["reasoning"], thresholds={"red": "<10%", "green": ">50%"})
    result = build_snapshot(DAY, [_signal(1)], [_signal(1)], None, [canary])
    status = result.canary_statuses[0]
    assert status["canary_id"] == "arc_agi"
    assert status["status"] == "green"
    assert status["last_change"] == DAY.isoformat()
    assert status["level"] == pytest.approx(0.59)


def _seed_signal(db, created_at: datetime, magnitude: float = 0.6):
    source = db.query(Source).first()
    if source is None:
        source = Source(
            name="METR", url="https://metr.org/blog", tier=SourceTier.TIER_0, source_type=SourceType.rss
        )
        db.add(source)
        db.flush()
        run = PipelineRun(started_at=created_at)
        db.add(run)
        db.flush()
    run = db.query(PipelineRun).first()
    item = Item(run_id=run.id, source_id=source.id, url=f"https://metr.org/{created_at.isoformat()}", url_hash="h")
    db.add(item)
    db.flush()
    document = Document(item_id=item.id, clean_blob_key="k")
    db.add(document)
    db.flush()
    db.add(
        Signal(
            document_id=document.id,
            claim_summary="Claim",
            axes_impacted=[{"axis": "reasoning", "direction": "up", "magnitude": magnitude, "uncertainty": 0.5}],
            confidence=0.8,
            scoring_version="v1",
            created_at=created_at,
        )
    )
    db.commit()


def test_create_daily_snapshot_is_idempotent(db):
    db.add(CanaryDefinition(id="arc_agi", name="ARC-AGI", axes_watched=["reasoning"], thresholds={"red": "<10%"}))
    _seed_signal(db, datetime.combine(DAY, datetime.min.time()) + timedelta(hours=3))
    _seed_signal(db, datetime.combine(DAY, datetime.min.time()) - timedelta(hours=3))

    first, previous = create_daily_snapshot(db, DAY)
    db.commit()
    first_scores = dict(first.axis_scores)
    second, _ = create_daily_snapshot(db, DAY)
    db.commit()

    assert previous is None
    assert db.query(DailySnapshot).count() == 1
    assert second.axis_scores == first_scores
    assert len(second.signal_ids) == 1
    assert second.axis_scores["reasoning"]["score"] == pytest.approx(0.18)
    assert second.canary_statuses[0]["canary_id"] == "arc_agi"


def test_create_daily_snapshot_ignores_snapshot_before_a_gap(db):
    db.add(DailySnapshot(date=DAY - timedelta(days=3), axis_scores={"reasoning": {"score": 0.5}}))
    db.commit()

    snapshot, previous = create_daily_snapshot(db, DAY)
    assert previous is None
    assert snapshot.axis_scores == {}


def test_create_daily_snapshot_decays_prior_day_snapshot(db):
    db.add(DailySnapshot(date=DAY - timedelta(days=3), axis_scores={"reasoning": {"score": 0.9}}))
    db.add(DailySnapshot(date=DAY - timedelta(days=1), axis_scores={"reasoning": {"score": 0.5}}))
    db.commit()

    snapshot, previous = create_daily_snapshot(db, DAY)
    assert previous.date == DAY - timedelta(days=1)
    assert snapshot.axis_scores["reasoning"]["score"] == pytest.approx(0.49)
    assert snapshot.axis_scores["reasoning"]["delta"] == pytest.approx(-0.01)
