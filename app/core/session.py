import secrets
from typing import Dict, Optional

from itsdangerous import BadSignature, URLSafeSerializer
from starlette.requests import Request
from starlette.responses import Response

from app.core.config import settings

serializer = URLSafeSerializer(settings.secret_key, salt="session")

TOKEN_KEY = "access_token"
CSRF_KEY = "csrf_token"


def load_session(request: Request) -> Dict:
    cookie = request.cookies.get(settings.session_cookie_name)
    if not cookie:
        return {}
    try:
        data = serializer.loads(cookie)
    except BadSignature:
        return {}
    return data if isinstance(data, dict) else {}


def save_session(response: Response, session_data: Dict) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=serializer.dumps(session_data),
        httponly=True,
        samesite="lax",
        secure=settings.environment == "production",
    )


def clear_session(response: Response) -> None:
    response.delete_cookie(settings.session_cookie_name)


def bearer_from_header(value: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer ...`` header."""
    if not value:
        return None
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def session_token(session_data: Dict) -> Optional[str]:
    return session_data.get(TOKEN_KEY)


def store_token(session_data: Dict, token: str) -> str:
    """Keep the backend token in the session and issue a fresh CSRF token."""
    session_data[TOKEN_KEY] = token
    session_data[CSRF_KEY] = secrets.token_hex(16)
    return session_data[CSRF_KEY]


def ensure_csrf(session_data: Dict) -> tuple[str, bool]:
    if CSRF_KEY in session_data:
        return session_data[CSRF_KEY], False
    session_data[CSRF_KEY] = secrets.token_hex(16)
    return session_data[CSRF_KEY], True
