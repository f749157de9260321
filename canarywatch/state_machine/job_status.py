from canarywatch.models.entities import JobStatus


class InvalidJobTransition(ValueError):
    pass


_ALLOWED = {
    JobStatus.pending: {JobStatus.running},
    JobStatus.retry: {JobStatus.running},
    # running -> retry also covers stale lease release.
    JobStatus.running: {JobStatus.done, JobStatus.retry, JobStatus.dead},
    # Operator requeue.
    JobStatus.dead: {JobStatus.pending},
    JobStatus.done: set(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in _ALLOWED[current]


def enforce_transition(current: JobStatus, target: JobStatus) -> None:
    if not can_transition(current, target):
        raise InvalidJobTransition(f"Invalid job transition: {current} -> {target}")
