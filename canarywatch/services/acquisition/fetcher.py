from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
import trafilatura
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from canarywatch.core.config import get_settings
from canarywatch.services.acquisition.metadata import extract_metadata
from canarywatch.services.discovery.common import USER_AGENT
from canarywatch.utils.network import HostNotAllowedError, UnsafeUrlError, assert_allowed_url

try:
    from playwright.async_api import async_playwright
except Exception:  # noqa: BLE001
    async_playwright = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

PERMANENT_STATUS_CODES = frozenset({404, 410})


class AcquisitionResult(BaseModel):
    success: bool
    content: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    status_code: int | None = None
    error: str | None = None
    permanent: bool = False


class Acquirer(Protocol):
    async def __call__(self, url: str) -> AcquisitionResult: ...


@retry(
    wait=wait_exponential(multiplier=1, min=1, max=8),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)
async def _fetch(url: str, timeout: float) -> httpx.Response:
    headers = {"User-Agent": USER_AGENT, "Accept": "text/html,application/xhtml+xml"}
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        return await client.get(url, headers=headers)


def _extract_with_bs4(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for node in soup(["script", "style", "nav", "footer", "header", "aside"]):
        node.decompose()
    article = soup.find("article") or soup.find("main") or soup.body or soup
    blocks = [el.get_text(" ", strip=True) for el in article.find_all(["h1", "h2", "h3", "p", "li"])]
    return "\n\n".join(block for block in blocks if block)


def html_to_markdown(html: str) -> str:
    text = trafilatura.extract(html, output_format="markdown", include_comments=False, include_tables=True)
    return text or _extract_with_bs4(html)


async def _fetch_dynamic_html(url: str) -> str | None:
    if async_playwright is None:
        return None
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=True)
        try:
            page = await browser.new_page()
            await page.goto(url, wait_until="domcontentloaded", timeout=15000)
            return await page.content()
        finally:
            await browser.close()


async def acquire_url(url: str) -> AcquisitionResult:
    settings = get_settings()
    try:
        assert_allowed_url(url)
    except (UnsafeUrlError, HostNotAllowedError) as exc:
        return AcquisitionResult(success=False, error=str(exc), permanent=True)

    try:
        response = await _fetch(url, settings.acquisition_timeout_seconds)
    except httpx.HTTPError as exc:
        return AcquisitionResult(success=False, error=str(exc) or exc.__class__.__name__)

    if response.status_code >= 400:
        return AcquisitionResult(
            success=False,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}",
            permanent=response.status_code in PERMANENT_STATUS_CODES,
        )

    html = response.text
    content = html_to_markdown(html)

    # Optional JS fallback.
    if not content:
        dynamic_html = await _fetch_dynamic_html(url)
        if dynamic_html:
            html = dynamic_html
            content = html_to_markdown(dynamic_html)

    return AcquisitionResult(
        success=True,
        content=content,
        metadata=extract_metadata(html, str(response.url)),
        status_code=response.status_code,
    )
