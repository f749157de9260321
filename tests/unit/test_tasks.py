from datetime import date, timedelta

import pytest

from canarywatch.models.entities import CanaryDefinition, DailySnapshot, TimelineEvent

DAY = date(2026, 3, 2)


@pytest.fixture
def tasks(session_factory, monkeypatch):
    from canarywatch.tasks import jobs

    monkeypatch.setattr(jobs, "_db", session_factory)
    return jobs


def test_rebuild_snapshot_task_matches_aggregate_stage(tasks, db):
    db.add(CanaryDefinition(id="arc_agi", name="ARC-AGI", axes_watched=["reasoning"], thresholds={}))
    db.add(
        DailySnapshot(
            date=DAY - timedelta(days=1),
            axis_scores={"reasoning": {"score": 0.2}},
            canary_statuses=[{"canary_id": "arc_agi", "status": "green", "last_change": "2026-02-01"}],
        )
    )
    db.commit()

    summary = tasks.rebuild_snapshot.run(DAY.isoformat())

    assert summary == {
        "date": DAY.isoformat(),
        "signal_count": 0,
        "coverage_score": 0.0,
        "events_created": 1,
    }
    snapshot = db.query(DailySnapshot).filter(DailySnapshot.date == DAY).one()
    assert snapshot.axis_scores["reasoning"]["score"] == pytest.approx(0.196)
    assert snapshot.canary_statuses[0]["status"] == "yellow"
    assert db.query(TimelineEvent).one().date == DAY
