"""Daily aggregation of signals into smoothed axis scores.

``build_snapshot`` is a pure function of the target date, the day's signals,
the trailing seven-day window and the previous snapshot, so rebuilding a date
with the same signals reproduces the same row. ``create_daily_snapshot`` loads
those inputs and upserts the row by date.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from statistics import pstdev

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from canarywatch.core.time import now_utc
from canarywatch.models.entities import CanaryDefinition, DailySnapshot, Document, Item, Signal
from canarywatch.schemas.extraction import AXES
from canarywatch.services.canaries import CanarySpec, evaluate_canaries

logger = logging.getLogger(__name__)

EMA_ALPHA = 0.3
QUIET_DAY_DECAY = 0.98
WINDOW_DAYS = 7
MIN_WINDOW_SIGNALS = 3
UNCERTAINTY_FLOOR = 0.10
UNCERTAINTY_CEILING = 0.50
SINGLE_SOURCE_PENALTY = 0.15
DEFAULT_IMPACT_UNCERTAINTY = 0.5

DIRECTION_SIGN = {"up": 1, "down": -1, "neutral": 0}


@dataclass
class SignalInput:
    id: int
    confidence: float
    axes_impacted: list[dict]
    source_id: int | None = None


@dataclass
class PreviousSnapshot:
    date: date
    axis_scores: dict[str, dict] = field(default_factory=dict)
    canary_statuses: list[dict] = field(default_factory=list)


@dataclass
class SnapshotResult:
    date: date
    axis_scores: dict[str, dict]
    canary_statuses: list[dict]
    coverage_score: float
    signal_ids: list[int]
    notes: list[str] = field(default_factory=list)


@dataclass
class _AxisAccumulator:
    weighted_sum: float = 0.0
    weight_sum: float = 0.0
    scores: list[float] = field(default_factory=list)
    uncertainties: list[float] = field(default_factory=list)
    sources: set = field(default_factory=set)

    @property
    def count(self) -> int:
        return len(self.scores)


def _impacts(signal: SignalInput):
    for impact in signal.axes_impacted or []:
        axis = impact.get("axis")
        if axis in AXES:
            yield axis, impact


def axis_uncertainty(acc: _AxisAccumulator) -> float:
    mean_uncertainty = sum(acc.uncertainties) / len(acc.uncertainties)
    count_factor = 1 / (1 + acc.count / 5)
    agreement = min(1.0, pstdev(acc.scores)) if acc.count > 1 else 0.0
    diversity = 1.0 if len(acc.sources) == 1 else 0.0
    value = 0.3 * mean_uncertainty + 0.3 * count_factor + 0.25 * agreement + SINGLE_SOURCE_PENALTY * diversity
    return round(max(UNCERTAINTY_FLOOR, min(UNCERTAINTY_CEILING, value)), 3)


def coverage_weights(window_signals: list[SignalInput]) -> dict[str, float]:
    touches = {axis: 0 for axis in AXES}
    sources: dict[str, set] = {axis: set() for axis in AXES}
    for signal in window_signals:
        for axis, _ in _impacts(signal):
            touches[axis] += 1
            sources[axis].add(signal.source_id if signal.source_id is not None else f"signal:{signal.id}")

    weights: dict[str, float] = {}
    for axis in AXES:
        if touches[axis] < MIN_WINDOW_SIGNALS:
            weights[axis] = 0.0
        else:
            weights[axis] = 0.7 + 0.3 * min(1.0, len(sources[axis]) / 3)
    return weights


def coverage_score(window_signals: list[SignalInput]) -> float:
    weights = coverage_weights(window_signals)
    return round(sum(weights.values()) / len(weights), 2)


def build_snapshot(
    snapshot_date: date,
    today_signals: list[SignalInput],
    window_signals: list[SignalInput],
    previous: PreviousSnapshot | None,
    canaries: list[CanarySpec],
) -> SnapshotResult:
    accumulators = {axis: _AxisAccumulator() for axis in AXES}
    for signal in today_signals:
        confidence = float(signal.confidence or 0)
        for axis, impact in _impacts(signal):
            signal_score = DIRECTION_SIGN.get(impact.get("direction"), 0) * float(impact.get("magnitude") or 0)
            acc = accumulators[axis]
            acc.weighted_sum += signal_score * confidence
            acc.weight_sum += confidence
            acc.scores.append(signal_score)
            uncertainty = impact.get("uncertainty")
            acc.uncertainties.append(float(DEFAULT_IMPACT_UNCERTAINTY if uncertainty is None else uncertainty))
            acc.sources.add(signal.source_id if signal.source_id is not None else f"signal:{signal.id}")

    previous_scores = previous.axis_scores if previous else {}
    axis_scores: dict[str, dict] = {}
    for axis in AXES:
        acc = accumulators[axis]
        previous_entry = previous_scores.get(axis)
        if acc.count == 0 and previous_entry is None:
            continue
        prev_score = float((previous_entry or {}).get("score") or 0.0)

        if acc.count > 0:
            raw_score = acc.weighted_sum / acc.weight_sum if acc.weight_sum > 0 else 0.0
            score = EMA_ALPHA * raw_score + (1 - EMA_ALPHA) * prev_score
            uncertainty = axis_uncertainty(acc)
        else:
            score = prev_score * QUIET_DAY_DECAY
            uncertainty = None

        score = round(max(-1.0, min(1.0, score)), 4)
        axis_scores[axis] = {
            "score": score,
            "uncertainty": uncertainty,
            "delta": round(score - prev_score, 3),
            "signal_count": acc.count,
            "source_count": len(acc.sources),
        }

    notes: list[str] = []
    if not today_signals:
        notes.append("No signals today; carried-forward scores decayed")

    return SnapshotResult(
        date=snapshot_date,
        axis_scores=axis_scores,
        canary_statuses=evaluate_canaries(
            canaries,
            axis_scores,
            previous.canary_statuses if previous else None,
            snapshot_date,
        ),
        coverage_score=coverage_score(window_signals),
        signal_ids=sorted(signal.id for signal in today_signals),
        notes=notes,
    )


def _day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    return datetime.combine(start, time.min), datetime.combine(end + timedelta(days=1), time.min)


def load_signal_inputs(db: Session, start: date, end: date) -> list[SignalInput]:
    lower, upper = _day_bounds(start, end)
    rows = (
        db.query(Signal.id, Signal.confidence, Signal.axes_impacted, Item.source_id)
        .join(Document, Document.id == Signal.document_id)
        .join(Item, Item.id == Document.item_id)
        .filter(Signal.created_at >= lower, Signal.created_at < upper)
        .order_by(Signal.id.asc())
        .all()
    )
    return [
        SignalInput(id=row.id, confidence=row.confidence, axes_impacted=row.axes_impacted or [], source_id=row.source_id)
        for row in rows
    ]


def load_previous_snapshot(db: Session, snapshot_date: date) -> PreviousSnapshot | None:
    """Return the snapshot for the day before, or None after a gap."""
    row = db.query(DailySnapshot).filter(DailySnapshot.date == snapshot_date - timedelta(days=1)).one_or_none()
    if row is None:
        return None
    return PreviousSnapshot(
        date=row.date,
        axis_scores=dict(row.axis_scores or {}),
        canary_statuses=list(row.canary_statuses or []),
    )


def load_canaries(db: Session) -> list[CanarySpec]:
    rows = (
        db.query(CanaryDefinition)
        .filter(CanaryDefinition.is_active.is_(True))
        .order_by(CanaryDefinition.display_order.asc(), CanaryDefinition.id.asc())
        .all()
    )
    return [CanarySpec.from_row(row) for row in rows]


def _apply(row: DailySnapshot, result: SnapshotResult, now: datetime) -> None:
    row.axis_scores = result.axis_scores
    row.canary_statuses = result.canary_statuses
    row.coverage_score = result.coverage_score
    row.signal_ids = result.signal_ids
    row.notes = result.notes
    row.updated_at = now


def upsert_snapshot(db: Session, result: SnapshotResult, now: datetime | None = None) -> DailySnapshot:
    now = now or now_utc()
    row = db.query(DailySnapshot).filter(DailySnapshot.date == result.date).one_or_none()
    if row is not None:
        _apply(row, result, now)
        db.flush()
        return row

    row = DailySnapshot(date=result.date, created_at=now)
    _apply(row, result, now)
    try:
        with db.begin_nested():
            db.add(row)
            db.flush()
    except IntegrityError:
        # A concurrent aggregate inserted the date first.
        row = db.query(DailySnapshot).filter(DailySnapshot.date == result.date).one()
        _apply(row, result, now)
        db.flush()
    return row


def create_daily_snapshot(db: Session, snapshot_date: date) -> tuple[DailySnapshot, PreviousSnapshot | None]:
    today_signals = load_signal_inputs(db, snapshot_date, snapshot_date)
    window_signals = load_signal_inputs(db, snapshot_date - timedelta(days=WINDOW_DAYS - 1), snapshot_date)
    previous = load_previous_snapshot(db, snapshot_date)
    result = build_snapshot(snapshot_date, today_signals, window_signals, previous, load_canaries(db))
    row = upsert_snapshot(db, result)
    logger.info(
        "Snapshot %s built from %s signals (coverage %.2f)",
        snapshot_date.isoformat(),
        len(result.signal_ids),
        result.coverage_score,
    )
    return row, previous
