import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

THRESHOLD_ORDER = ("red", "yellow", "green")
THRESHOLD_PATTERN = re.compile(r"^\s*(<=|>=|<|>)\s*(\d+(?:\.\d+)?)\s*%\s*$")
DEFAULT_UNCERTAINTY = 0.5


@dataclass
class CanarySpec:
    id: str
    axes_watched: list[str]
    thresholds: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Any) -> "CanarySpec":
        return cls(id=row.id, axes_watched=list(row.axes_watched or []), thresholds=dict(row.thresholds or {}))


def parse_threshold(raw: str | None) -> tuple[str, float] | None:
    """Parse ``"<10%"`` style thresholds into ``("<", 0.10)``. Anything else yields None."""
    if not raw:
        return None
    match = THRESHOLD_PATTERN.match(raw)
    if not match:
        return None
    return match.group(1), float(match.group(2)) / 100


def threshold_matches(raw: str | None, level: float) -> bool:
    parsed = parse_threshold(raw)
    if parsed is None:
        return False
    op, bound = parsed
    if op == "<":
        return level < bound
    if op == "<=":
        return level <= bound
    if op == ">":
        return level > bound
    return level >= bound


def fallback_status(level: float) -> str:
    if level >= 0.6:
        return "green"
    if level >= 0.3:
        return "yellow"
    return "red"


def status_for_level(thresholds: dict[str, str], level: float) -> str:
    for status in THRESHOLD_ORDER:
        if threshold_matches(thresholds.get(status), level):
            return status
    return fallback_status(level)


def evaluate_canaries(
    canaries: list[CanarySpec],
    axis_scores: dict[str, dict],
    previous_statuses: list[dict] | None,
    snapshot_date: date,
) -> list[dict]:
    previous_by_id = {entry.get("canary_id"): entry for entry in previous_statuses or []}
    results: list[dict] = []
    for canary in canaries:
        watched = [axis_scores[axis] for axis in canary.axes_watched if axis in axis_scores]
        uncertainties = [entry["uncertainty"] for entry in watched if entry.get("uncertainty") is not None]
        avg_uncertainty = sum(uncertainties) / len(uncertainties) if uncertainties else DEFAULT_UNCERTAINTY

        if watched:
            level = sum((entry["score"] + 1) / 2 for entry in watched) / len(watched)
            status = status_for_level(canary.thresholds, level)
        else:
            level = None
            status = "gray"

        previous = previous_by_id.get(canary.id)
        if previous and previous.get("status") == status and previous.get("last_change"):
            last_change = previous["last_change"]
        else:
            last_change = snapshot_date.isoformat()

        results.append(
            {
                "canary_id": canary.id,
                "status": status,
                "last_change": last_change,
                "confidence": round(max(0.1, min(1.0, 1 - avg_uncertainty)), 3),
                "level": round(level, 4) if level is not None else None,
            }
        )
    return results
