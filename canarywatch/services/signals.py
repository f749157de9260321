import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from canarywatch.core.time import now_utc
from canarywatch.models.entities import Document, Item, ItemStatus, Signal, Source
from canarywatch.schemas.extraction import ExtractedClaim, SignalExtraction

logger = logging.getLogger(__name__)

EXTRACTION_KEY = "extraction"


@dataclass
class MapOutcome:
    document_id: int
    signals_created: int = 0
    claims_dropped: int = 0
    already_processed: bool = False


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def adjusted_confidence(claim_confidence: float, trust_weight: float) -> float:
    return clamp(claim_confidence * trust_weight, 0.0, 1.0)


def claim_to_signal(
    claim: ExtractedClaim,
    document_id: int,
    trust_weight: float,
    threshold: float,
    scoring_version: str,
    source_url: str | None = None,
) -> Signal | None:
    """Build a Signal for a claim, or None when it has no axes or falls below the threshold."""
    if not claim.axes_impacted:
        return None
    confidence = adjusted_confidence(claim.confidence, trust_weight)
    if confidence < threshold:
        return None
    citation_url = next((citation.url for citation in claim.citations if citation.url), None)
    return Signal(
        document_id=document_id,
        claim_summary=claim.claim_summary,
        classification=claim.classification,
        axes_impacted=[impact.model_dump() for impact in claim.axes_impacted],
        metric=claim.benchmark.model_dump() if claim.benchmark else None,
        confidence=confidence,
        citations=[citation.model_dump() for citation in claim.citations],
        source_url=source_url or citation_url,
        scoring_version=scoring_version,
        created_at=now_utc(),
    )


def load_extraction(document: Document) -> SignalExtraction:
    raw = (document.extracted_metadata or {}).get(EXTRACTION_KEY) or {}
    return SignalExtraction.model_validate(raw)


def map_document(
    db: Session,
    document_id: int,
    threshold: float,
    scoring_version: str,
) -> MapOutcome:
    document = db.get(Document, document_id)
    if document is None:
        raise LookupError(f"Document {document_id} not found")
    if document.processed_at is not None:
        return MapOutcome(document_id=document.id, already_processed=True)

    item = db.get(Item, document.item_id)
    source = db.get(Source, item.source_id) if item else None
    trust_weight = source.trust_weight if source else 1.0
    extraction = load_extraction(document)

    outcome = MapOutcome(document_id=document.id)
    for claim in extraction.claims:
        signal = claim_to_signal(
            claim,
            document.id,
            trust_weight,
            threshold,
            scoring_version,
            source_url=item.url if item else None,
        )
        if signal is None:
            outcome.claims_dropped += 1
            continue
        db.add(signal)
        outcome.signals_created += 1

    document.processed_at = now_utc()
    if item is not None:
        item.status = ItemStatus.processed
    db.flush()
    logger.info(
        "Mapped document %s: %s signals, %s claims dropped",
        document.id,
        outcome.signals_created,
        outcome.claims_dropped,
    )
    return outcome
