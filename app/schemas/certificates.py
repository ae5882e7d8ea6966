from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CertificateRecord(BaseModel):
    id: str
    owner_company_id: Optional[str] = Field(None, alias="empresa_id")
    filename: str
    subject_dn: str = ""
    issuer_dn: str = ""
    serial_number: Optional[str] = None
    valid_from: datetime
    valid_to: datetime
    ruc: Optional[str] = Field(None, alias="ruc_certificado")
    algorithm: Optional[str] = Field(None, alias="algoritmo")
    key_usage: Optional[str] = None
    key_size: Optional[int] = Field(None, alias="tamaño_clave")
    active: bool = Field(False, alias="activo")
    uploaded_at: Optional[datetime] = Field(None, alias="fecha_subida")
    activated_at: Optional[datetime] = Field(None, alias="fecha_activacion")
    current: bool = Field(True, alias="vigente")
    days_to_expiry: Optional[int] = Field(None, alias="dias_para_vencer")
    needs_renewal: bool = Field(False, alias="requiere_renovacion")
    validated_by_authority: bool = Field(False, alias="validado_sunat")
    validation_errors: List[str] = Field(default_factory=list, alias="errores_validacion")

    class Config:
        populate_by_name = True

    @field_validator("valid_from", "valid_to", "uploaded_at", "activated_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_current(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self.valid_from <= now <= self.valid_to

    def days_until_expiry(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        return (self.valid_to - now).days

    def is_authoritative(self, now: Optional[datetime] = None) -> bool:
        return self.active and self.is_current(now)


class CertificateConfig(BaseModel):
    """Legacy-shaped certificate block of a company.

    Older screens only understand the ``certificado_digital_*`` fields; the
    new registry is mirrored into ``certificado_activo_filename`` and
    ``certificados_disponibles``.
    """

    legacy_path: Optional[str] = Field(None, alias="certificado_digital_path")
    legacy_password: Optional[SecretStr] = Field(None, alias="certificado_digital_password")
    legacy_active: bool = Field(False, alias="certificado_digital_activo")
    legacy_valid_to: Optional[str] = Field(None, alias="certificado_vigencia_hasta")
    active_filename: Optional[str] = Field(None, alias="certificado_activo_filename")
    available: List[CertificateRecord] = Field(default_factory=list, alias="certificados_disponibles")

    class Config:
        populate_by_name = True

    @property
    def password_set(self) -> bool:
        return bool(self.legacy_password and self.legacy_password.get_secret_value())

    def to_wire(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, mode="json", exclude_none=True)
        if self.legacy_password is not None:
            data["certificado_digital_password"] = self.legacy_password.get_secret_value()
        return data

    def to_public(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, mode="json", exclude={"legacy_password"})
        data["password_set"] = self.password_set
        return data


class LegacyCertificate(BaseModel):
    path: str
    password: SecretStr
    active: bool = True


class Company(BaseModel):
    id: str
    ruc: str
    razon_social: str
    certificado_digital_path: Optional[str] = None
    certificado_digital_password: Optional[SecretStr] = None
    certificado_digital_activo: bool = False
    certificado_vigencia_hasta: Optional[str] = None
    certificado_activo_filename: Optional[str] = None
    certificados_disponibles: List[CertificateRecord] = []

    def certificate_config(self) -> CertificateConfig:
        return CertificateConfig(
            legacy_path=self.certificado_digital_path,
            legacy_password=self.certificado_digital_password,
            legacy_active=self.certificado_digital_activo,
            legacy_valid_to=self.certificado_vigencia_hasta,
            active_filename=self.certificado_activo_filename,
            available=list(self.certificados_disponibles),
        )


class CertificateList(BaseModel):
    certificados: List[CertificateRecord] = []
    certificado_activo_id: Optional[str] = None
    total: Optional[int] = None

    def active(self) -> Optional[CertificateRecord]:
        if not self.certificado_activo_id:
            return None
        return next((c for c in self.certificados if c.id == self.certificado_activo_id), None)


class ActivateRequest(BaseModel):
    razon: str = Field(..., min_length=1)


class ActivationResult(BaseModel):
    success: bool = True
    message: str = ""
    certificado_id: Optional[str] = None
    certificado_anterior_id: Optional[str] = None


class UploadResult(BaseModel):
    success: bool = True
    message: str = ""
    certificado: Optional[CertificateRecord] = None


class ValidationResult(BaseModel):
    success: bool = True
    certificado_id: str
    valido: bool
    errores: List[str] = []
    warnings: List[str] = []
    detalles: Dict[str, bool] = {}
    cumplimiento_sunat: Dict[str, bool] = {}


class MigrationRequest(BaseModel):
    path: Optional[str] = None
    password: Optional[SecretStr] = None
    active: bool = True
