"""Reconciliation between the legacy certificate fields and the registry.

Everything here is pure: callers pass in what they have loaded and get
back a decision or a new object. Nothing talks to the backend.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, List, Optional, Union

from app.schemas.certificates import (
    CertificateConfig,
    CertificateRecord,
    Company,
    LegacyCertificate,
    utcnow,
)

MIGRATED_VALIDITY = timedelta(days=365)
MIGRATED_ISSUER = "CN=SUNAT CA"


class MigrationStrategy(str, Enum):
    NO_CERTIFICATES = "no_certificates"
    MIGRATE_LEGACY = "migrate_legacy"
    NEW_SYSTEM_ONLY = "new_system_only"
    PREFER_NEW_VALIDATE_LEGACY = "prefer_new_validate_legacy"
    HYBRID_MODE = "hybrid_mode"


class MigrationState(str, Enum):
    NO_CERTIFICATES = "no_certificates"
    LEGACY_ONLY = "legacy_only"
    NEW_SYSTEM_ONLY = "new_system_only"
    BOTH_PRESENT = "both_present"


@dataclass(frozen=True)
class FromRegistry:
    record: CertificateRecord
    source: str = "new_system"

    @property
    def filename(self) -> str:
        return self.record.filename


@dataclass(frozen=True)
class FromLegacy:
    config: CertificateConfig
    source: str = "legacy_system"

    @property
    def filename(self) -> Optional[str]:
        return self.config.legacy_path


ActiveCertificate = Optional[Union[FromRegistry, FromLegacy]]


@dataclass
class HybridCertificateConfig:
    prefer_new_system: bool
    migration_status: str
    legacy_data: Optional[CertificateConfig] = None
    active_filename: Optional[str] = None
    available: List[CertificateRecord] = field(default_factory=list)


def has_legacy_data(config: CertificateConfig) -> bool:
    return bool(config.legacy_path or config.password_set or config.legacy_active)


def has_new_system_data(config: CertificateConfig, records: Iterable[CertificateRecord] = ()) -> bool:
    return bool(list(records) or config.available or config.active_filename)


def determine_migration_strategy(has_legacy: bool, has_new: bool, prefer_new_system: bool = True) -> MigrationStrategy:
    if not has_legacy and not has_new:
        return MigrationStrategy.NO_CERTIFICATES
    if has_legacy and not has_new:
        return MigrationStrategy.MIGRATE_LEGACY
    if not has_legacy and has_new:
        return MigrationStrategy.NEW_SYSTEM_ONLY
    if prefer_new_system:
        return MigrationStrategy.PREFER_NEW_VALIDATE_LEGACY
    return MigrationStrategy.HYBRID_MODE


def migration_state(has_legacy: bool, has_new: bool) -> MigrationState:
    if has_legacy and has_new:
        return MigrationState.BOTH_PRESENT
    if has_legacy:
        return MigrationState.LEGACY_ONLY
    if has_new:
        return MigrationState.NEW_SYSTEM_ONLY
    return MigrationState.NO_CERTIFICATES


def authoritative_record(
    records: Iterable[CertificateRecord],
    active: Optional[CertificateRecord] = None,
    now: Optional[datetime] = None,
) -> Optional[CertificateRecord]:
    if active is not None and active.is_authoritative(now):
        return active
    return next((r for r in records if r.is_authoritative(now)), None)


def resolve_active_certificate(
    records: Iterable[CertificateRecord],
    active: Optional[CertificateRecord],
    legacy: Optional[CertificateConfig],
    prefer_new_system: bool = True,
    now: Optional[datetime] = None,
) -> ActiveCertificate:
    """Pick the certificate used for signing.

    With ``prefer_new_system`` an active, current registry record always
    wins over the legacy fields. Without it (hybrid coexistence) the legacy
    certificate is used while it stays active.
    """
    record = authoritative_record(records, active, now)
    from_registry = FromRegistry(record) if record is not None else None
    from_legacy = None
    if legacy is not None and legacy.legacy_active and legacy.legacy_path:
        from_legacy = FromLegacy(legacy)
    if prefer_new_system:
        return from_registry or from_legacy
    return from_legacy or from_registry


def can_sign_documents(active: ActiveCertificate, now: Optional[datetime] = None) -> bool:
    if isinstance(active, FromRegistry):
        return active.record.is_authoritative(now)
    if isinstance(active, FromLegacy):
        return active.config.legacy_active
    return False


def build_hybrid_config(
    config: CertificateConfig,
    records: Iterable[CertificateRecord] = (),
    prefer_new_system: bool = True,
) -> HybridCertificateConfig:
    records = list(records) or list(config.available)
    legacy = has_legacy_data(config)
    new = has_new_system_data(config, records)
    strategy = determine_migration_strategy(legacy, new, prefer_new_system)
    return HybridCertificateConfig(
        prefer_new_system=prefer_new_system,
        migration_status="completed" if strategy == MigrationStrategy.NEW_SYSTEM_ONLY else "pending",
        legacy_data=config if legacy else None,
        active_filename=config.active_filename if new else None,
        available=records if new else [],
    )


def synthesize_migrated_record(
    company: Company, legacy: LegacyCertificate, now: Optional[datetime] = None
) -> CertificateRecord:
    now = now or utcnow()
    return CertificateRecord(
        id=f"cert_{uuid.uuid4().hex[:16]}",
        owner_company_id=company.id,
        filename=legacy.path,
        subject_dn=f"CN={company.ruc}, O={company.razon_social}",
        issuer_dn=MIGRATED_ISSUER,
        valid_from=now,
        valid_to=now + MIGRATED_VALIDITY,
        ruc=company.ruc,
        algorithm="RSA",
        key_usage="Digital Signature",
        key_size=2048,
        active=True,
        uploaded_at=now,
        activated_at=now,
        current=True,
        days_to_expiry=MIGRATED_VALIDITY.days,
        needs_renewal=False,
        validated_by_authority=True,
    )


def migrated_config(config: CertificateConfig, record: CertificateRecord) -> CertificateConfig:
    others = [r for r in config.available if r.id != record.id]
    return config.model_copy(
        update={
            "legacy_active": False,
            "active_filename": record.filename,
            "available": [record] + others,
        }
    )


def registry_to_legacy_config(
    config: CertificateConfig,
    records: List[CertificateRecord],
    active: CertificateRecord,
    now: Optional[datetime] = None,
) -> CertificateConfig:
    return config.model_copy(
        update={
            "legacy_path": active.filename,
            "legacy_active": active.is_authoritative(now),
            "active_filename": active.filename,
            "available": list(records),
        }
    )


def config_changed(before: CertificateConfig, after: CertificateConfig) -> bool:
    return (
        before.legacy_path != after.legacy_path
        or before.legacy_active != after.legacy_active
        or before.active_filename != after.active_filename
    )
