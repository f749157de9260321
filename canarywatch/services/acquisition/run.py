import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from canarywatch.core.time import now_utc
from canarywatch.models.entities import Document, Item, ItemStatus
from canarywatch.services.acquisition.fetcher import Acquirer, AcquisitionResult, acquire_url
from canarywatch.services.acquisition.validate import validate_content
from canarywatch.services.runs import increment_run_counters
from canarywatch.services.storage import BlobStore, document_blob_key

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1024


class TransientAcquisitionError(RuntimeError):
    pass


@dataclass
class AcquireOutcome:
    item_id: int
    status: str
    document_id: int | None = None
    error: str | None = None


def _existing_document(db: Session, item_id: int) -> Document | None:
    return db.query(Document).filter(Document.item_id == item_id).order_by(Document.id.desc()).first()


def _fail_item(db: Session, item: Item, error: str, run_id: int | None) -> AcquireOutcome:
    item.status = ItemStatus.failed
    item.acquisition_error = error[:MAX_ERROR_LENGTH]
    if run_id is not None:
        increment_run_counters(db, run_id, failed=1)
    logger.info("Item %s failed acquisition: %s", item.id, error)
    return AcquireOutcome(item_id=item.id, status="failed", error=error)


def acquire_item(
    db: Session,
    item_id: int,
    blob_store: BlobStore,
    max_attempts: int,
    acquirer: Acquirer = acquire_url,
    run_id: int | None = None,
) -> AcquireOutcome:
    """Acquire, validate and store content for one item.

    Permanent failures mark the item failed and return normally. Transient
    failures are counted against the item and committed before
    ``TransientAcquisitionError`` is raised, so the job retries with backoff
    until the item reaches ``max_attempts``.
    """
    item = db.get(Item, item_id)
    if item is None:
        raise LookupError(f"Item {item_id} not found")

    if item.status != ItemStatus.pending:
        document = _existing_document(db, item.id)
        return AcquireOutcome(
            item_id=item.id,
            status="skipped",
            document_id=document.id if document else None,
        )

    if item.acquisition_attempt_count >= max_attempts:
        return _fail_item(db, item, item.acquisition_error or "Acquisition attempts exhausted", run_id)

    result: AcquisitionResult = asyncio.run(acquirer(item.url))
    if not result.success:
        error = (result.error or "Acquisition failed")[:MAX_ERROR_LENGTH]
        item.acquisition_attempt_count += 1
        item.acquisition_error = error
        if result.permanent:
            return _fail_item(db, item, error, run_id)
        return _transient(db, item, error, max_attempts, run_id)

    validation = validate_content(result.content)
    if not validation.valid:
        item.acquisition_attempt_count += 1
        return _fail_item(db, item, validation.reason or "Invalid content", run_id)

    key = document_blob_key(item.id)
    try:
        blob_store.put(key, validation.content.encode("utf-8"), "text/markdown")
    except OSError as exc:
        item.acquisition_attempt_count += 1
        item.acquisition_error = str(exc)[:MAX_ERROR_LENGTH]
        return _transient(db, item, f"Blob upload failed: {exc}", max_attempts, run_id)

    document = Document(
        item_id=item.id,
        clean_blob_key=key,
        extracted_metadata=result.metadata | {"truncated": validation.truncated},
        word_count=validation.word_count,
        acquired_at=now_utc(),
    )
    db.add(document)
    item.status = ItemStatus.acquired
    item.acquisition_error = None
    db.flush()
    return AcquireOutcome(item_id=item.id, status="acquired", document_id=document.id)


def _transient(db: Session, item: Item, error: str, max_attempts: int, run_id: int | None) -> AcquireOutcome:
    if item.acquisition_attempt_count >= max_attempts:
        return _fail_item(db, item, error, run_id)
    db.commit()
    raise TransientAcquisitionError(error)
