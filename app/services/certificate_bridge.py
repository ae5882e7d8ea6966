import inspect
from datetime import datetime
from typing import Any, Awaitable, Callable, List, NoReturn, Optional, Union

from loguru import logger

from app.schemas.certificates import CertificateConfig, CertificateRecord, Company, LegacyCertificate, utcnow
from app.services import certificate_migration as migration
from app.services.certificate_service import CertificateRegistry

ConfigListener = Callable[[CertificateConfig], Union[None, Awaitable[None]]]

IDLE = "idle"
SYNCING = "syncing"
SYNCED = "synced"
ERROR = "error"


class MigrationError(Exception):
    pass


class CertificateBridge:
    """Keeps the legacy certificate fields and the registry consistent.

    The registry is authoritative. Its state is pushed one way into the
    legacy-shaped config through ``on_config_change``; legacy data only
    reaches the registry when ``execute_migration`` is called explicitly.
    """

    def __init__(
        self,
        company: Company,
        config: CertificateConfig,
        registry: CertificateRegistry,
        on_config_change: ConfigListener,
        prefer_new_system: bool = True,
        auto_sync: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.company = company
        self.config = config
        self.registry = registry
        self.on_config_change = on_config_change
        self.prefer_new_system = prefer_new_system
        self.auto_sync = auto_sync
        self.clock = clock
        self.sync_status = IDLE
        self.last_sync_time: Optional[datetime] = None
        self.sync_error: Optional[str] = None

    @property
    def is_loading(self) -> bool:
        return self.registry.state.loading or self.sync_status == SYNCING

    @property
    def records(self) -> List[CertificateRecord]:
        if self.registry.certificates:
            return self.registry.certificates
        return self.config.available

    @property
    def active_record(self) -> Optional[CertificateRecord]:
        return migration.authoritative_record(self.records, self.registry.active, self.clock())

    @property
    def has_legacy_data(self) -> bool:
        return migration.has_legacy_data(self.config)

    @property
    def has_new_system_data(self) -> bool:
        return migration.has_new_system_data(self.config, self.registry.certificates)

    def migration_state(self) -> migration.MigrationState:
        return migration.migration_state(self.has_legacy_data, self.has_new_system_data)

    def determine_migration_strategy(self) -> migration.MigrationStrategy:
        return migration.determine_migration_strategy(
            self.has_legacy_data, self.has_new_system_data, self.prefer_new_system
        )

    def hybrid_config(self) -> migration.HybridCertificateConfig:
        return migration.build_hybrid_config(self.config, self.registry.certificates, self.prefer_new_system)

    def prepare_legacy_migration(self) -> Optional[LegacyCertificate]:
        """Return the legacy certificate to migrate, if there is one."""
        if not self.company.id or not self.config.legacy_path or not self.config.password_set:
            return None
        if self.has_new_system_data:
            return None
        return LegacyCertificate(
            path=self.config.legacy_path,
            password=self.config.legacy_password,
            active=self.config.legacy_active,
        )

    def get_active_unified_certificate(self) -> migration.ActiveCertificate:
        return migration.resolve_active_certificate(
            self.records, self.registry.active, self.config, prefer_new_system=True, now=self.clock()
        )

    def can_sign_documents(self) -> bool:
        return migration.can_sign_documents(self.get_active_unified_certificate(), self.clock())

    async def _publish(self, config: CertificateConfig) -> None:
        result: Any = self.on_config_change(config)
        if inspect.isawaitable(result):
            await result
        self.config = config
        self.last_sync_time = self.clock()
        self.sync_status = SYNCED

    async def execute_migration(self, legacy: Optional[LegacyCertificate] = None) -> CertificateRecord:
        """Copy the legacy certificate into the registry view.

        Running it twice for the same file returns the record created the
        first time. Errors set ``sync_status`` to ``error`` and propagate.
        """
        if not self.company.id:
            self._reject("ID de empresa requerido para migración")
        legacy = legacy or self.prepare_legacy_migration()
        if legacy is None:
            self._reject("No hay certificado legacy para migrar")

        existing = next((r for r in self.records if r.filename == legacy.path), None)
        if existing is not None:
            logger.info("Certificado {} ya migrado para empresa {}", legacy.path, self.company.id)
            if self.config.legacy_active:
                await self._publish_or_fail(migration.migrated_config(self.config, existing))
            return existing

        self.sync_status = SYNCING
        self.sync_error = None
        record = migration.synthesize_migrated_record(self.company, legacy, self.clock())
        await self._publish_or_fail(migration.migrated_config(self.config, record))
        logger.info("Certificado legacy {} migrado para empresa {}", legacy.path, self.company.id)
        return record

    def _reject(self, message: str) -> NoReturn:
        self.sync_error = message
        self.sync_status = ERROR
        raise MigrationError(message)

    async def _publish_or_fail(self, config: CertificateConfig) -> None:
        try:
            await self._publish(config)
        except Exception as exc:
            self.sync_error = str(exc) or "Error en migración"
            self.sync_status = ERROR
            logger.warning("Migración de certificado falló para empresa {}: {}", self.company.id, exc)
            raise

    def registry_active(self) -> Optional[CertificateRecord]:
        # locally synthesized records are not in the registry and never count
        certificates = self.registry.certificates
        return self.registry.active or migration.authoritative_record(certificates, None, self.clock())

    async def sync_new_to_legacy(self, force: bool = False) -> bool:
        """Mirror the registry's active certificate into the legacy fields.

        Without a registry certificate nothing is published. ``force`` skips
        the auto-sync switch and the change check.
        """
        if not force and not self.auto_sync:
            return False
        active = self.registry_active()
        if active is None:
            return False
        updated = migration.registry_to_legacy_config(self.config, self.registry.certificates, active, self.clock())
        if not force and not migration.config_changed(self.config, updated):
            return False
        await self._publish(updated)
        return True

    async def force_sync(self) -> bool:
        self.sync_status = SYNCING
        self.sync_error = None
        try:
            if self.company.id and not await self.registry.refresh():
                raise MigrationError(self.registry.error or "Error en sincronización")
            await self.sync_new_to_legacy(force=True)
            self.last_sync_time = self.clock()
            self.sync_status = SYNCED
        except Exception as exc:  # broad: surfaced as sync_error, caller offers a retry
            self.sync_error = str(exc) or "Error en sincronización"
            self.sync_status = ERROR
            logger.warning("Sincronización de certificados falló para empresa {}: {}", self.company.id, exc)
            return False
        return True
