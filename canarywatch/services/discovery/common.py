from datetime import datetime
from typing import Protocol

import httpx
from pydantic import BaseModel, Field
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from canarywatch.models.entities import SourceTier, SourceType

USER_AGENT = "CanaryWatch/1.0 (Discovery Pipeline)"


class SourceSpec(BaseModel):
    id: int
    name: str
    url: str
    tier: SourceTier
    source_type: SourceType
    trust_weight: float = 1.0
    query_config: dict = Field(default_factory=dict)

    model_config = {"from_attributes": True}


class DiscoveredItem(BaseModel):
    url: str
    url_hash: str
    title: str | None = None
    published_at: datetime | None = None
    source_id: int


class FetchResult(BaseModel):
    items: list[DiscoveredItem] = Field(default_factory=list)
    error: str | None = None


class Fetcher(Protocol):
    async def __call__(self, source: SourceSpec) -> FetchResult: ...


class TransientHttpError(httpx.HTTPError):
    pass


@retry(
    wait=wait_exponential(multiplier=1, min=1, max=8),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type((httpx.TransportError, TransientHttpError)),
    reraise=True,
)
async def http_get(url: str, timeout: float, accept: str) -> httpx.Response:
    headers = {"User-Agent": USER_AGENT, "Accept": accept}
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        response = await client.get(url, headers=headers)
    if response.status_code == 429 or response.status_code >= 500:
        raise TransientHttpError(f"HTTP {response.status_code}")
    return response


def normalize_text(text: str | None) -> str:
    if not text:
        return ""
    return " ".join(text.split())
