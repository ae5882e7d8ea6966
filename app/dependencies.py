from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from app.core.config import settings
from app.core.session import CSRF_KEY, bearer_from_header, session_token
from app.services.backend_client import BackendClient
from app.services.cache import TTLCache


def get_token(request: Request) -> Optional[str]:
    token = bearer_from_header(request.headers.get("Authorization"))
    if token:
        return token
    return session_token(getattr(request.state, "session", {}))


def get_cache(request: Request) -> TTLCache:
    cache = getattr(request.app.state, "result_cache", None)
    if cache is None:
        cache = TTLCache()
        request.app.state.result_cache = cache
    return cache


def get_backend_client(
    token: Optional[str] = Depends(get_token),
    cache: TTLCache = Depends(get_cache),
) -> BackendClient:
    # missing tokens are rejected by the client itself, before any I/O
    return BackendClient(token_provider=lambda: token, cache=cache, cache_ttl=settings.series_cache_ttl)


async def csrf_protect(request: Request):
    if request.method not in ("POST", "PUT", "PATCH", "DELETE"):
        return
    if bearer_from_header(request.headers.get("Authorization")):
        # header-authenticated calls carry no ambient credentials
        return
    expected = getattr(request.state, "session", {}).get(CSRF_KEY)
    form_token = request.headers.get("X-CSRF-Token")
    if not expected or not form_token or form_token != expected:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="CSRF token inválido")
