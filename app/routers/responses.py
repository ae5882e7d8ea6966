from typing import Any, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from app.services.errors import AUTH, UNKNOWN_ERROR, VALIDATION, describe

STATUS_BY_KIND = {
    AUTH: status.HTTP_401_UNAUTHORIZED,
    VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def ok(data: Any, message: Optional[str] = None) -> JSONResponse:
    body = {"success": True, "data": jsonable_encoder(data)}
    if message:
        body["message"] = message
    return JSONResponse(body)


def failed(error: Optional[str], kind: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": error or UNKNOWN_ERROR},
        status_code=STATUS_BY_KIND.get(kind or "", status.HTTP_502_BAD_GATEWAY),
    )


def failed_from(exc: Exception) -> JSONResponse:
    kind, message = describe(exc)
    return failed(message, kind)
