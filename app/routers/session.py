from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from app.core.config import settings
from app.core.session import CSRF_KEY, session_token, store_token
from app.dependencies import csrf_protect

router = APIRouter(tags=["sesion"])


class SessionToken(BaseModel):
    token: str = Field(..., min_length=1)


@router.get("/health")
async def health():
    return {"status": "ok", "environment": settings.environment}


@router.get("/session")
async def session_status(request: Request):
    return {
        "authenticated": bool(session_token(request.state.session)),
        "csrf_token": request.state.session.get(CSRF_KEY),
    }


@router.post("/session")
async def open_session(request: Request, body: SessionToken, csrf=Depends(csrf_protect)):
    # token issued by the backend's login; the cookie is signed, not encrypted
    csrf_token = store_token(request.state.session, body.token)
    request.state.session_changed = True
    return {"success": True, "csrf_token": csrf_token}


@router.post("/logout")
async def logout(request: Request, csrf=Depends(csrf_protect)):
    request.state.session = {}
    request.state.clear_session = True
    return {"success": True}
