from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.session import clear_session, ensure_csrf, load_session, save_session
from app.core.logging import setup_logging
from app.routers import certificates, numbering, session
from app.routers.responses import failed
from app.services.cache import TTLCache
from app.services.errors import VALIDATION

setup_logging()
app = FastAPI(title="Facturación Electrónica SUNAT")
app.state.result_cache = TTLCache()

app.include_router(session.router)
app.include_router(numbering.router)
app.include_router(certificates.router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{field}: {error.get('msg')}" if field else str(error.get("msg")))
    return failed("; ".join(problems) or "Datos inválidos", VALIDATION)


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse({"success": False, "error": exc.detail}, status_code=exc.status_code, headers=exc.headers)


@app.middleware("http")
async def session_middleware(request: Request, call_next):
    session_data = load_session(request)
    request.state.session = session_data
    request.state.session_changed = False
    _, created = ensure_csrf(session_data)
    if created:
        request.state.session_changed = True
    response = await call_next(request)
    if getattr(request.state, "clear_session", False):
        clear_session(response)
    elif getattr(request.state, "session_changed", False):
        save_session(response, request.state.session)
    return response
