from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from canarywatch.utils.hashing import sha256_text

TRACKING_PARAMS = frozenset(
    {
        "fbclid",
        "gclid",
        "gclsrc",
        "dclid",
        "msclkid",
        "mc_cid",
        "mc_eid",
        "_ga",
        "_gl",
        "ref",
        "source",
    }
)


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith("utm_")


def canonicalize_url(raw: str) -> str:
    """Normalize a URL for deduplication.

    http is upgraded to https, the host is lowercased, tracking parameters
    and the fragment are dropped and the remaining query parameters are
    sorted by name. Anything that is not an http(s) URL is returned unchanged.
    """
    candidate = raw.strip()
    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        return raw
    scheme = parts.scheme.lower()
    if scheme not in {"http", "https"} or not parts.hostname:
        return raw

    host = parts.hostname.lower()
    if port is not None and not (port == 443 or (scheme == "http" and port == 80)):
        host = f"{host}:{port}"
    if parts.username:
        credentials = parts.username if parts.password is None else f"{parts.username}:{parts.password}"
        host = f"{credentials}@{host}"

    params = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    params.sort(key=lambda pair: pair[0])
    path = parts.path or "/"
    return urlunsplit(("https", host, path, urlencode(params), ""))


def url_hash(canonical_url: str) -> str:
    return sha256_text(canonical_url)
