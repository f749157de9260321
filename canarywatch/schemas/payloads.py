from datetime import date

from pydantic import BaseModel, Field

from canarywatch.models.entities import JobType


class DiscoverPayload(BaseModel):
    source_groups: list[str] = Field(default_factory=lambda: ["TIER_0", "TIER_1", "DISCOVERY"])
    dry_run: bool = False


class FetchPayload(BaseModel):
    item_id: int


class ExtractPayload(BaseModel):
    document_id: int


class MapPayload(BaseModel):
    document_id: int


class AggregatePayload(BaseModel):
    date: date


JobPayload = DiscoverPayload | FetchPayload | ExtractPayload | MapPayload | AggregatePayload

PAYLOAD_TYPES: dict[JobType, type[BaseModel]] = {
    JobType.discover: DiscoverPayload,
    JobType.fetch: FetchPayload,
    JobType.extract: ExtractPayload,
    JobType.map: MapPayload,
    JobType.aggregate: AggregatePayload,
}


def parse_payload(job_type: JobType, payload: dict | None) -> JobPayload:
    return PAYLOAD_TYPES[JobType(job_type)].model_validate(payload or {})


def dump_payload(payload: BaseModel) -> dict:
    return payload.model_dump(mode="json")
