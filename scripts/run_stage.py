"""Run a single pipeline stage directly against ids, bypassing the queue.

Stages run without chaining, and mapping uses the stricter
``DIRECT_SIGNAL_CONFIDENCE_THRESHOLD``.
"""

import argparse
import json
import sys
from datetime import date

from canarywatch.core.config import get_settings
from canarywatch.core.logging import configure_logging
from canarywatch.db.init_db import init_db
from canarywatch.db.session import get_session_maker
from canarywatch.pipeline.stages import (
    PipelineContext,
    handle_aggregate,
    handle_extract,
    handle_fetch,
    handle_map,
)
from canarywatch.schemas.payloads import (
    AggregatePayload,
    DiscoverPayload,
    ExtractPayload,
    FetchPayload,
    MapPayload,
)
from canarywatch.services.discovery.run import run_discovery
from canarywatch.services.runs import (
    RunInProgressError,
    finish_run,
    new_lock_token,
    release_run_lock,
    start_run,
    validate_source_groups,
)


def _discover(db, context: PipelineContext, groups: list[str], dry_run: bool) -> dict:
    settings = context.settings
    token = new_lock_token()
    run = start_run(db, token, settings.run_lock_stale_minutes, scoring_version=settings.scoring_version)
    error = None
    try:
        summary = run_discovery(
            db, run.id, DiscoverPayload(source_groups=groups, dry_run=dry_run), settings, fetchers=context.fetchers
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        error = str(exc)
        raise
    finally:
        finish_run(db, run.id, error=error)
        release_run_lock(db, token)
    return {"run_id": run.id, **summary.as_dict()}


def main() -> int:
    parser = argparse.ArgumentParser(description="Run one Canary Watch pipeline stage directly")
    sub = parser.add_subparsers(dest="stage", required=True)

    discover = sub.add_parser("discover", help="Discover items from sources")
    discover.add_argument("--source-groups", default=None)
    discover.add_argument("--dry-run", action="store_true")

    fetch = sub.add_parser("fetch", help="Acquire content for items")
    fetch.add_argument("item_ids", type=int, nargs="+")

    extract = sub.add_parser("extract", help="Extract claims from documents")
    extract.add_argument("document_ids", type=int, nargs="+")

    map_ = sub.add_parser("map", help="Map extracted claims to signals")
    map_.add_argument("document_ids", type=int, nargs="+")

    aggregate = sub.add_parser("aggregate", help="Build the daily snapshot")
    aggregate.add_argument("--date", type=date.fromisoformat, default=None)

    args = parser.parse_args()

    configure_logging()
    init_db()
    settings = get_settings()
    context = PipelineContext.from_settings(
        settings, chain=False, confidence_threshold=settings.direct_signal_confidence_threshold
    )

    db = get_session_maker()()
    results: list[dict] = []
    try:
        if args.stage == "discover":
            raw_groups = args.source_groups.split(",") if args.source_groups else settings.source_group_list
            groups = validate_source_groups([group.strip() for group in raw_groups if group.strip()])
            results.append(_discover(db, context, groups, args.dry_run))
        elif args.stage == "fetch":
            for item_id in args.item_ids:
                results.append(handle_fetch(db, None, FetchPayload(item_id=item_id), context))
                db.commit()
        elif args.stage == "extract":
            for document_id in args.document_ids:
                results.append(handle_extract(db, None, ExtractPayload(document_id=document_id), context))
                db.commit()
        elif args.stage == "map":
            for document_id in args.document_ids:
                results.append(handle_map(db, None, MapPayload(document_id=document_id), context))
                db.commit()
        else:
            target = args.date or context.today()
            results.append(handle_aggregate(db, None, AggregatePayload(date=target), context))
            db.commit()
    except RunInProgressError as exc:
        print(json.dumps({"error": str(exc)}))
        return 1
    finally:
        db.close()

    print(json.dumps(results, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
