import argparse
import json
import sys

from canarywatch.core.config import get_settings
from canarywatch.core.logging import configure_logging
from canarywatch.db.init_db import init_db
from canarywatch.db.session import get_session_maker
from canarywatch.pipeline.drain import drain_pipeline, process_ready_jobs
from canarywatch.pipeline.stages import PipelineContext
from canarywatch.services.runs import PipelineConfigError, RunInProgressError


def main() -> int:
    parser = argparse.ArgumentParser(description="Drain the Canary Watch pipeline queue")
    parser.add_argument("--source-groups", help="Comma-separated source tiers, defaults to PIPELINE_SOURCE_GROUPS")
    parser.add_argument("--time-budget", type=int, help="Seconds before the drain stops claiming jobs")
    parser.add_argument(
        "--worker",
        action="store_true",
        help="Only process jobs already queued, without starting a new run",
    )
    args = parser.parse_args()

    configure_logging()
    init_db()
    settings = get_settings()
    context = PipelineContext.from_settings(settings)
    groups = [group.strip() for group in args.source_groups.split(",") if group.strip()] if args.source_groups else None

    try:
        if args.worker:
            result = process_ready_jobs(get_session_maker(), context, time_budget_seconds=args.time_budget)
        else:
            result = drain_pipeline(
                get_session_maker(), context, source_groups=groups, time_budget_seconds=args.time_budget
            )
    except (RunInProgressError, PipelineConfigError) as exc:
        print(json.dumps({"error": str(exc), "type": exc.__class__.__name__}))
        return 1

    print(json.dumps(result.model_dump(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
