from fastapi import APIRouter, Depends

from app.dependencies import csrf_protect, get_backend_client
from app.schemas.numbering import ActiveRequest, BulkSeriesConfig, ResetRequest, SeriesConfig
from app.services.backend_client import BackendClient
from app.services.errors import AUTH
from app.services.numbering_service import NumberingRegistry
from app.routers.responses import failed, ok

router = APIRouter(prefix="/numeracion", tags=["numeracion"])


def get_registry(client: BackendClient = Depends(get_backend_client)):
    registry = NumberingRegistry(client)
    try:
        yield registry
    finally:
        registry.close()


def _result(registry: NumberingRegistry, data, message: str | None = None):
    if data is None:
        return failed(registry.state.error, registry.state.error_kind)
    return ok(data, message)


@router.get("/series")
async def series(registry: NumberingRegistry = Depends(get_registry)):
    codes = await registry.list_series()
    if registry.state.error_kind == AUTH:
        return failed(registry.state.error, AUTH)
    return ok(codes, registry.state.error)


@router.get("/contadores")
async def counters(registry: NumberingRegistry = Depends(get_registry)):
    counters = await registry.list_counters()
    if registry.state.error:
        return failed(registry.state.error, registry.state.error_kind)
    return ok(counters)


@router.post("/configurar")
async def configure(
    body: SeriesConfig, registry: NumberingRegistry = Depends(get_registry), csrf=Depends(csrf_protect)
):
    counter = await registry.configure(body.series_code, body.initial_number, body.active)
    return _result(registry, counter, f"Serie {body.series_code} configurada correctamente")


@router.post("/configurar-masiva")
async def configure_bulk(
    body: BulkSeriesConfig, registry: NumberingRegistry = Depends(get_registry), csrf=Depends(csrf_protect)
):
    counters = await registry.configure_bulk(body.configuraciones)
    if registry.state.error:
        return failed(registry.state.error, registry.state.error_kind)
    return ok(counters, f"{len(counters)} series configuradas correctamente")


@router.get("/siguiente/{serie}")
async def next_number(serie: str, registry: NumberingRegistry = Depends(get_registry)):
    return _result(registry, await registry.next_number(serie))


@router.post("/resetear/{serie}")
async def reset(
    serie: str,
    body: ResetRequest,
    registry: NumberingRegistry = Depends(get_registry),
    csrf=Depends(csrf_protect),
):
    counter = await registry.reset(serie, body.nuevo_numero)
    return _result(registry, counter, f"Contador de serie {serie} reseteado a {body.nuevo_numero}")


@router.patch("/contador/{serie}/estado")
async def set_active(
    serie: str,
    body: ActiveRequest,
    registry: NumberingRegistry = Depends(get_registry),
    csrf=Depends(csrf_protect),
):
    counter = await registry.set_active(serie, body.activo)
    return _result(registry, counter, f"Serie {serie} {'activada' if body.activo else 'desactivada'}")


@router.get("/estadisticas/{serie}")
async def statistics(serie: str, registry: NumberingRegistry = Depends(get_registry)):
    return _result(registry, await registry.get_statistics(serie))


@router.get("/validar/{serie}")
async def validate(serie: str, registry: NumberingRegistry = Depends(get_registry)):
    return _result(registry, await registry.validate_series(serie))
