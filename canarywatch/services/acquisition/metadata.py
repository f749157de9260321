from bs4 import BeautifulSoup

META_KEYS = {
    "title": ("og:title", "twitter:title"),
    "description": ("description", "og:description", "twitter:description"),
    "author": ("author", "article:author", "byline"),
    "published_time": ("article:published_time", "datePublished", "date"),
    "site_name": ("og:site_name", "application-name"),
    "language": ("og:locale", "language"),
}


def detect_content_type(url: str, title: str | None = None, description: str | None = None) -> str:
    combined = f"{title or ''} {description or ''}".lower()
    lowered_url = url.lower()
    if "arxiv" in combined or "paper" in combined or "/pdf" in lowered_url or "arxiv.org" in lowered_url:
        return "paper"
    if "report" in combined or "whitepaper" in combined or "analysis" in combined:
        return "report"
    if (
        "blog" in combined
        or "/blog" in lowered_url
        or "medium.com" in lowered_url
        or "substack.com" in lowered_url
    ):
        return "blog"
    return "article"


def _meta_tags(soup: BeautifulSoup) -> dict[str, str]:
    tags: dict[str, str] = {}
    for tag in soup.find_all("meta"):
        key = tag.get("property") or tag.get("name") or tag.get("itemprop")
        value = tag.get("content")
        if key and value and key not in tags:
            tags[key] = value.strip()
    return tags


def extract_metadata(html: str | None, url: str) -> dict:
    """Page metadata from Open Graph, article and standard meta tags."""
    if not html:
        return {"source_url": url, "content_type": detect_content_type(url)}

    soup = BeautifulSoup(html, "html.parser")
    tags = _meta_tags(soup)
    metadata: dict = {"source_url": url}
    for field, keys in META_KEYS.items():
        for key in keys:
            if tags.get(key):
                metadata[field] = tags[key]
                break
    if "title" not in metadata and soup.title and soup.title.string:
        metadata["title"] = soup.title.string.strip()
    if "language" not in metadata and soup.html and soup.html.get("lang"):
        metadata["language"] = soup.html.get("lang")
    metadata["content_type"] = detect_content_type(url, metadata.get("title"), metadata.get("description"))
    return metadata
