import argparse
from collections import Counter

from sqlalchemy.orm import Session

from canarywatch.db.init_db import init_db
from canarywatch.db.session import get_session_maker
from canarywatch.models.entities import CanaryDefinition, Source

try:
    from scripts.source_catalog import CANARY_CATALOG, SOURCE_CATALOG
except ModuleNotFoundError:
    from source_catalog import CANARY_CATALOG, SOURCE_CATALOG  # type: ignore

SOURCE_FIELDS = ("url", "tier", "trust_weight", "source_type", "query_config", "is_active")
CANARY_FIELDS = ("name", "description", "axes_watched", "thresholds", "display_order")


def upsert_sources(db: Session, disable_unmanaged: bool = False) -> Counter[str]:
    stats: Counter[str] = Counter()
    catalog_names = {item["name"] for item in SOURCE_CATALOG}

    for item in SOURCE_CATALOG:
        existing = db.query(Source).filter(Source.name == item["name"]).one_or_none()
        if existing:
            for field in SOURCE_FIELDS:
                setattr(existing, field, item[field])
            stats["sources_updated"] += 1
        else:
            db.add(Source(name=item["name"], **{field: item[field] for field in SOURCE_FIELDS}))
            stats["sources_created"] += 1

    if disable_unmanaged:
        unmanaged_sources = (
            db.query(Source)
            .filter(Source.name.notin_(catalog_names), Source.is_active.is_(True))
            .all()
        )
        for unmanaged in unmanaged_sources:
            unmanaged.is_active = False
            stats["sources_disabled_unmanaged"] += 1
    return stats


def upsert_canaries(db: Session) -> Counter[str]:
    stats: Counter[str] = Counter()
    for item in CANARY_CATALOG:
        existing = db.get(CanaryDefinition, item["id"])
        if existing:
            for field in CANARY_FIELDS:
                setattr(existing, field, item[field])
            existing.is_active = True
            stats["canaries_updated"] += 1
        else:
            db.add(CanaryDefinition(id=item["id"], is_active=True, **{field: item[field] for field in CANARY_FIELDS}))
            stats["canaries_created"] += 1
    return stats


def seed_catalog(db: Session, dry_run: bool = False, disable_unmanaged: bool = False) -> dict[str, int]:
    stats = upsert_sources(db, disable_unmanaged=disable_unmanaged)
    stats.update(upsert_canaries(db))
    if dry_run:
        db.rollback()
        stats["dry_run"] = 1
    else:
        db.commit()
    return dict(stats)


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed Canary Watch sources and canary definitions")
    parser.add_argument("--dry-run", action="store_true", help="Validate and print changes without committing")
    parser.add_argument(
        "--disable-unmanaged",
        action="store_true",
        help="Disable active sources that are not present in scripts/source_catalog.py",
    )
    args = parser.parse_args()

    init_db()
    db = get_session_maker()()
    try:
        stats = seed_catalog(db, dry_run=args.dry_run, disable_unmanaged=args.disable_unmanaged)
    finally:
        db.close()
    print(f"Seed completed: {stats}")


if __name__ == "__main__":
    main()
