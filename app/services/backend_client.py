import hashlib
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar, Union

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from app.core.config import settings
from app.schemas.certificates import (
    ActivationResult,
    CertificateConfig,
    CertificateList,
    CertificateRecord,
    Company,
    UploadResult,
    ValidationResult,
)
from app.schemas.numbering import (
    NextNumber,
    NumberingValidation,
    SeriesConfig,
    SeriesCounter,
    SeriesStatistics,
)
from app.services.cache import ResultCache

ModelT = TypeVar("ModelT", bound=BaseModel)
TokenProvider = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]

GENERIC_ERROR = "Error de comunicación con el servidor"


class BackendError(Exception):
    def __init__(self, message: str, status_code: int | None = None, details: Any | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class NotAuthenticatedError(BackendError):
    def __init__(self, message: str = "Usuario no autenticado"):
        super().__init__(message, status_code=401)


def _unwrap(payload: Any) -> Any:
    # {success, data, message} envelope used by the numbering endpoints
    if isinstance(payload, dict) and "data" in payload and ("success" in payload or "message" in payload):
        return payload["data"]
    return payload


def _cache_key(token: str, path: str) -> str:
    # entries are scoped to the caller's token
    scope = hashlib.sha256(token.encode()).hexdigest()[:16]
    return f"{scope}:{path}"


def _error_message(response: httpx.Response) -> tuple[str, Any]:
    try:
        detail = response.json()
    except ValueError:
        return f"Error {response.status_code}: {GENERIC_ERROR}", response.text
    message = None
    if isinstance(detail, dict):
        message = detail.get("message") or detail.get("error") or detail.get("detail")
    if not isinstance(message, str) or not message:
        message = f"Error {response.status_code}: {GENERIC_ERROR}"
    return message, detail


class BackendClient:
    """Authenticated JSON client for the invoicing backend."""

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        cache: ResultCache | None = None,
        cache_ttl: float | None = None,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.token_provider = token_provider
        self.timeout = httpx.Timeout(settings.request_timeout)
        self.transport = transport
        self.cache = cache
        self.cache_ttl = settings.series_cache_ttl if cache_ttl is None else cache_ttl

    async def _token(self) -> str:
        token = self.token_provider()
        if inspect.isawaitable(token):
            token = await token
        if not token:
            raise NotAuthenticatedError()
        return token

    async def _request(self, method: str, path: str, token: str | None = None, **kwargs) -> Any:
        token = token or await self._token()
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.request(method, url, headers=headers, **kwargs)
            except httpx.RequestError as exc:
                logger.warning("HTTP request error to backend {} {}: {}", method, path, exc)
                raise BackendError("No se pudo contactar el servidor", details=str(exc)) from exc

        if response.status_code >= 400:
            message, detail = _error_message(response)
            logger.warning("Backend API error {} on {} {}: {}", response.status_code, method, path, detail)
            raise BackendError(message, status_code=response.status_code, details=detail)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError("Respuesta inesperada del servidor", status_code=response.status_code) from exc

    async def _get_cached(self, path: str) -> Any:
        # the token is checked first so a missing one never reads the cache
        token = await self._token()
        if self.cache is None:
            return await self._request("GET", path, token=token)
        key = _cache_key(token, path)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        data = await self._request("GET", path, token=token)
        self.cache.set(key, data, self.cache_ttl)
        return data

    async def _invalidate(self, prefix: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(_cache_key(await self._token(), prefix))

    @staticmethod
    def _parse(model: Type[ModelT], payload: Any) -> ModelT:
        try:
            return model.model_validate(_unwrap(payload))
        except ValidationError as exc:
            logger.warning("Unexpected {} payload: {}", model.__name__, exc)
            raise BackendError("Respuesta inesperada del servidor", details=str(exc)) from exc

    @classmethod
    def _parse_list(cls, model: Type[ModelT], payload: Any) -> List[ModelT]:
        items = _unwrap(payload)
        if items is None:
            return []
        if not isinstance(items, list):
            raise BackendError("Respuesta inesperada del servidor", details=payload)
        return [cls._parse(model, item) for item in items]

    # numbering

    async def list_series(self) -> List[str]:
        items = _unwrap(await self._get_cached("/numeracion/series")) or []
        codes: List[str] = []
        for item in items:
            # older backends return descriptors instead of bare codes
            code = item.get("serie") if isinstance(item, dict) else item
            if code:
                codes.append(str(code))
        return codes

    async def list_counters(self) -> List[SeriesCounter]:
        return self._parse_list(SeriesCounter, await self._request("GET", "/numeracion/contadores"))

    async def get_counter(self, serie: str) -> SeriesCounter:
        return self._parse(SeriesCounter, await self._request("GET", f"/numeracion/contador/{serie}"))

    async def configure_series(self, config: SeriesConfig) -> SeriesCounter:
        data = await self._request("POST", "/numeracion/configurar", json=config.model_dump(by_alias=True))
        await self._invalidate("/numeracion/series")
        return self._parse(SeriesCounter, data)

    async def configure_series_bulk(self, configs: List[SeriesConfig]) -> List[SeriesCounter]:
        body = {"configuraciones": [c.model_dump(by_alias=True) for c in configs]}
        data = await self._request("POST", "/numeracion/configurar-masiva", json=body)
        await self._invalidate("/numeracion/series")
        return self._parse_list(SeriesCounter, data)

    async def next_number(self, serie: str) -> NextNumber:
        return self._parse(NextNumber, await self._request("GET", f"/numeracion/siguiente/{serie}"))

    async def reset_counter(self, serie: str, new_number: int) -> SeriesCounter:
        data = await self._request("POST", f"/numeracion/resetear/{serie}", json={"nuevo_numero": new_number})
        return self._parse(SeriesCounter, data)

    async def set_series_active(self, serie: str, active: bool) -> SeriesCounter:
        data = await self._request("PATCH", f"/numeracion/contador/{serie}/estado", json={"activo": active})
        return self._parse(SeriesCounter, data)

    async def series_statistics(self, serie: str) -> SeriesStatistics:
        return self._parse(SeriesStatistics, await self._request("GET", f"/numeracion/estadisticas/{serie}"))

    async def validate_series(self, serie: str) -> NumberingValidation:
        return self._parse(NumberingValidation, await self._request("GET", f"/numeracion/validar/{serie}"))

    # companies and certificates

    async def get_company(self, company_id: str) -> Company:
        return self._parse(Company, await self._request("GET", f"/empresas/{company_id}"))

    async def update_certificate_config(self, company_id: str, config: CertificateConfig) -> Dict[str, Any]:
        return await self._request("PUT", f"/empresas/{company_id}", json={"certificado_config": config.to_wire()})

    async def list_certificates(self, company_id: str) -> CertificateList:
        data = await self._request("GET", f"/empresas/{company_id}/certificados")
        return self._parse(CertificateList, data)

    async def upload_certificate(
        self, company_id: str, filename: str, content: bytes, password: str, validate_with_authority: bool = True
    ) -> UploadResult:
        files = {"file": (filename, content, "application/x-pkcs12")}
        form = {"password": password, "validar_sunat": str(validate_with_authority).lower()}
        data = await self._request("POST", f"/empresas/{company_id}/certificados", files=files, data=form)
        return self._parse(UploadResult, data)

    async def activate_certificate(self, company_id: str, cert_id: str, reason: str) -> ActivationResult:
        data = await self._request(
            "PUT", f"/empresas/{company_id}/certificados/{cert_id}/activate", json={"razon": reason}
        )
        return self._parse(ActivationResult, data)

    async def deactivate_certificate(self, company_id: str, cert_id: str) -> Dict[str, Any]:
        return await self._request("PUT", f"/empresas/{company_id}/certificados/{cert_id}/deactivate")

    async def delete_certificate(self, company_id: str, cert_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"/empresas/{company_id}/certificados/{cert_id}")

    async def validate_certificate(self, company_id: str, cert_id: str) -> ValidationResult:
        body = {"validacion_completa": True, "verificar_cadena": True}
        data = await self._request("POST", f"/empresas/{company_id}/certificados/{cert_id}/validate", json=body)
        return self._parse(ValidationResult, data)

    async def expiring_certificates(self, days: int = 30) -> List[CertificateRecord]:
        data = await self._request("GET", "/certificados/expiring", params={"dias": days, "solo_activos": "true"})
        items = data.get("certificados", []) if isinstance(data, dict) else data
        return self._parse_list(CertificateRecord, items)
