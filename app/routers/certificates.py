from typing import Optional

from fastapi import APIRouter, Body, Depends
from loguru import logger

from app.core.config import settings
from app.dependencies import csrf_protect, get_backend_client
from app.schemas.certificates import ActivateRequest, CertificateConfig, LegacyCertificate, MigrationRequest
from app.services.backend_client import BackendClient, BackendError
from app.services.certificate_bridge import CertificateBridge, MigrationError
from app.services.certificate_migration import FromLegacy, FromRegistry
from app.services.certificate_service import CertificateRegistry
from app.services.errors import VALIDATION
from app.routers.responses import failed, failed_from, ok

router = APIRouter(prefix="/empresas/{company_id}/certificados", tags=["certificados"])


def _unified_payload(bridge: CertificateBridge) -> dict:
    active = bridge.get_active_unified_certificate()
    if isinstance(active, FromRegistry):
        return {
            "source": active.source,
            "data": active.record,
            "is_active": active.record.active,
            "is_valid": active.record.is_current(bridge.clock()),
            "can_sign": bridge.can_sign_documents(),
        }
    if isinstance(active, FromLegacy):
        return {
            "source": active.source,
            "data": {
                "filename": active.config.legacy_path,
                "path": active.config.legacy_path,
                "password_set": active.config.password_set,
            },
            "is_active": active.config.legacy_active,
            "is_valid": True,
            "can_sign": bridge.can_sign_documents(),
        }
    return {"source": None, "data": None, "is_active": False, "is_valid": False, "can_sign": False}


async def _build_bridge(client: BackendClient, company_id: str) -> CertificateBridge:
    company = await client.get_company(company_id)
    registry = CertificateRegistry(client, company_id)
    if not await registry.load():
        # the legacy view still answers reads while the registry is down
        logger.warning("Registry unavailable for company {}: {}", company_id, registry.error)

    async def persist(config: CertificateConfig) -> None:
        await client.update_certificate_config(company_id, config)

    return CertificateBridge(
        company=company,
        config=company.certificate_config(),
        registry=registry,
        on_config_change=persist,
        prefer_new_system=settings.prefer_new_certificate_system,
        auto_sync=settings.certificate_auto_sync,
    )


@router.get("")
async def list_certificates(company_id: str, client: BackendClient = Depends(get_backend_client)):
    registry = CertificateRegistry(client, company_id)
    if not await registry.load():
        return failed(registry.error, registry.state.error_kind)
    active = registry.active
    return ok({"certificados": registry.certificates, "certificado_activo_id": active.id if active else None})


@router.put("/{cert_id}/activate")
async def activate_certificate(
    company_id: str,
    cert_id: str,
    body: ActivateRequest,
    client: BackendClient = Depends(get_backend_client),
    csrf=Depends(csrf_protect),
):
    registry = CertificateRegistry(client, company_id)
    result = await registry.activate(cert_id, body.razon)
    if result is None:
        return failed(registry.error, registry.state.error_kind)
    return ok(result, result.message or "Certificado activado")


@router.get("/unificado")
async def unified_certificate(company_id: str, client: BackendClient = Depends(get_backend_client)):
    try:
        bridge = await _build_bridge(client, company_id)
    except BackendError as exc:
        return failed_from(exc)
    return ok(_unified_payload(bridge))


@router.get("/migracion")
async def migration_status(company_id: str, client: BackendClient = Depends(get_backend_client)):
    try:
        bridge = await _build_bridge(client, company_id)
    except BackendError as exc:
        return failed_from(exc)
    hybrid = bridge.hybrid_config()
    strategy = bridge.determine_migration_strategy()
    return ok(
        {
            "state": bridge.migration_state().value,
            "strategy": strategy.value,
            "needs_migration": bridge.prepare_legacy_migration() is not None,
            "migration_status": hybrid.migration_status,
            "prefer_new_system": hybrid.prefer_new_system,
            "has_legacy_data": bridge.has_legacy_data,
            "has_new_system_data": bridge.has_new_system_data,
        }
    )


@router.post("/migrar")
async def migrate_legacy(
    company_id: str,
    body: Optional[MigrationRequest] = Body(None),
    client: BackendClient = Depends(get_backend_client),
    csrf=Depends(csrf_protect),
):
    try:
        bridge = await _build_bridge(client, company_id)
    except BackendError as exc:
        return failed_from(exc)
    legacy = None
    if body is not None and body.path and body.password is not None:
        legacy = LegacyCertificate(path=body.path, password=body.password, active=body.active)
    try:
        record = await bridge.execute_migration(legacy)
    except MigrationError as exc:
        return failed(str(exc), VALIDATION)
    except BackendError as exc:
        return failed_from(exc)
    return ok({"certificado": record, "config": bridge.config.to_public()}, "Certificado legacy migrado")


@router.post("/sincronizar")
async def force_sync(
    company_id: str,
    client: BackendClient = Depends(get_backend_client),
    csrf=Depends(csrf_protect),
):
    try:
        bridge = await _build_bridge(client, company_id)
    except BackendError as exc:
        return failed_from(exc)
    if not await bridge.force_sync():
        return failed(bridge.sync_error, bridge.registry.state.error_kind)
    return ok({"sync_status": bridge.sync_status, "config": bridge.config.to_public()})
