import hmac

from fastapi import HTTPException, Request

from canarywatch.core.config import get_settings

API_KEY_HEADER = "X-API-Key"
WRITE_METHODS = frozenset({"POST", "PATCH", "PUT", "DELETE"})


def requires_operator_key(request: Request) -> bool:
    return request.url.path.startswith("/v1") and request.method in WRITE_METHODS


def enforce_api_auth(request: Request) -> None:
    """Ops writes need the shared operator key while auth is enabled; reads stay open."""
    settings = get_settings()
    if not settings.api_auth_enabled or not requires_operator_key(request):
        return

    supplied = request.headers.get(API_KEY_HEADER) or ""
    expected = settings.api_auth_token or ""
    if not expected or not hmac.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Missing or invalid operator API key")
