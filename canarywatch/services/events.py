import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from canarywatch.models.entities import Signal, TimelineEvent

logger = logging.getLogger(__name__)

THRESHOLD_LEVELS = (0.5, 0.75)
RAPID_MOVEMENT_THRESHOLD = 0.15
BENCHMARK_CONFIDENCE_THRESHOLD = 0.7

AXIS_LABELS = {
    "reasoning": "Reasoning",
    "learning_efficiency": "Learning Efficiency",
    "long_term_memory": "Long-term Memory",
    "planning": "Planning",
    "tool_use": "Tool Use",
    "social_cognition": "Social Cognition",
    "multimodal_perception": "Multimodal Perception",
    "robustness": "Robustness",
    "alignment_safety": "Alignment & Safety",
}


@dataclass
class DetectedEvent:
    title: str
    description: str
    category: str
    axes_impacted: list[str] = field(default_factory=list)
    source_url: str | None = None


def detect_axis_events(axis_scores: dict[str, dict], previous_scores: dict[str, dict]) -> list[DetectedEvent]:
    events: list[DetectedEvent] = []
    for axis, entry in axis_scores.items():
        label = AXIS_LABELS.get(axis, axis)
        score = entry.get("score") or 0.0
        prev_score = (previous_scores.get(axis) or {}).get("score") or 0.0
        for threshold in THRESHOLD_LEVELS:
            if score >= threshold and prev_score < threshold:
                events.append(
                    DetectedEvent(
                        title=f"{label} crosses {threshold * 100:g}% threshold",
                        description=(
                            f"The {label.lower()} axis reached {score * 100:.0f}%, crossing the "
                            f"{threshold * 100:g}% milestone. Previous score: {prev_score * 100:.0f}%."
                        ),
                        category="model",
                        axes_impacted=[axis],
                    )
                )

        delta = entry.get("delta") or 0.0
        if abs(delta) >= RAPID_MOVEMENT_THRESHOLD:
            direction = "improvement" if delta > 0 else "decline"
            events.append(
                DetectedEvent(
                    title=f"Significant {direction} in {label}",
                    description=(
                        f"The {label.lower()} axis moved {delta * 100:+.1f}% in a single day "
                        f"(EMA-smoothed)."
                    ),
                    category="model",
                    axes_impacted=[axis],
                )
            )
    return events


def detect_canary_events(canary_statuses: list[dict], previous_statuses: list[dict]) -> list[DetectedEvent]:
    previous_by_id = {entry.get("canary_id"): entry for entry in previous_statuses}
    events: list[DetectedEvent] = []
    for canary in canary_statuses:
        previous = previous_by_id.get(canary["canary_id"])
        if previous and previous.get("status") != canary["status"]:
            events.append(
                DetectedEvent(
                    title=f'Canary "{canary["canary_id"]}" changed: {previous.get("status")} -> {canary["status"]}',
                    description=(
                        f'Canary "{canary["canary_id"]}" changed from {previous.get("status")} '
                        f'to {canary["status"]}.'
                    ),
                    category="policy",
                )
            )
    return events


def detect_benchmark_events(db: Session, snapshot_date: date) -> list[DetectedEvent]:
    lower = datetime.combine(snapshot_date, time.min)
    upper = lower + timedelta(days=1)
    signals = (
        db.query(Signal)
        .filter(
            Signal.created_at >= lower,
            Signal.created_at < upper,
            Signal.classification == "benchmark_result",
            Signal.confidence >= BENCHMARK_CONFIDENCE_THRESHOLD,
        )
        .order_by(Signal.id.asc())
        .all()
    )
    return [
        DetectedEvent(
            title=f"Benchmark: {signal.claim_summary[:80]}",
            description=signal.claim_summary,
            category="benchmark",
            axes_impacted=[impact.get("axis") for impact in signal.axes_impacted or [] if impact.get("axis")],
            source_url=signal.source_url,
        )
        for signal in signals
    ]


def record_events(db: Session, snapshot_date: date, events: list[DetectedEvent]) -> int:
    created = 0
    for event in events:
        title = event.title[:512]
        exists = (
            db.query(TimelineEvent.id)
            .filter(TimelineEvent.date == snapshot_date, TimelineEvent.title == title)
            .first()
        )
        if exists:
            continue
        try:
            with db.begin_nested():
                db.add(
                    TimelineEvent(
                        date=snapshot_date,
                        title=title,
                        description=event.description[:2000],
                        event_type="reality",
                        category=event.category,
                        source_url=event.source_url,
                        axes_impacted=event.axes_impacted,
                    )
                )
                db.flush()
        except IntegrityError:
            continue
        created += 1
    return created


def detect_and_record_events(
    db: Session,
    snapshot_date: date,
    axis_scores: dict[str, dict],
    canary_statuses: list[dict],
    previous_axis_scores: dict[str, dict] | None,
    previous_canary_statuses: list[dict] | None,
) -> int:
    events = detect_axis_events(axis_scores, previous_axis_scores or {})
    events += detect_canary_events(canary_statuses, previous_canary_statuses or [])
    events += detect_benchmark_events(db, snapshot_date)
    created = record_events(db, snapshot_date, events)
    if created:
        logger.info("Recorded %s timeline events for %s", created, snapshot_date.isoformat())
    return created
