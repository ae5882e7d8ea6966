from dataclasses import dataclass, field
from typing import Awaitable, List, Optional, TypeVar

from loguru import logger

from app.schemas.certificates import (
    ActivationResult,
    CertificateRecord,
    UploadResult,
    ValidationResult,
)
from app.services.backend_client import BackendClient, BackendError
from app.services.errors import VALIDATION, describe

T = TypeVar("T")


@dataclass
class CertificateState:
    certificates: List[CertificateRecord] = field(default_factory=list)
    active: Optional[CertificateRecord] = None
    loaded: bool = False
    loading: bool = False
    uploading: bool = False
    validating: bool = False
    error: Optional[str] = None
    error_kind: Optional[str] = None


class CertificateRegistry:
    """Client-side view of one company's certificate registry."""

    def __init__(self, client: BackendClient, company_id: str):
        self.client = client
        self.company_id = company_id
        self.state = CertificateState()
        self.closed = False

    def close(self) -> None:
        self.closed = True

    @property
    def certificates(self) -> List[CertificateRecord]:
        return self.state.certificates

    @property
    def active(self) -> Optional[CertificateRecord]:
        return self.state.active

    @property
    def error(self) -> Optional[str]:
        return self.state.error

    async def _call(self, operation: str, awaitable: Awaitable[T], flag: str = "loading") -> Optional[T]:
        setattr(self.state, flag, True)
        try:
            result = await awaitable
        except BackendError as exc:
            logger.warning("Certificate {} failed for company {}: {}", operation, self.company_id, exc)
            self._fail(*describe(exc))
            return None
        except Exception as exc:  # broad: surface the message, never crash the caller
            logger.exception("Unexpected error during certificate {}", operation)
            self._fail(*describe(exc))
            return None
        finally:
            setattr(self.state, flag, False)
        if self.closed:
            return None
        self.state.error = None
        self.state.error_kind = None
        return result

    def _fail(self, kind: str, message: str) -> None:
        if self.closed:
            return
        self.state.error = message
        self.state.error_kind = kind

    async def load(self) -> bool:
        if not self.company_id:
            return False
        listing = await self._call("load", self.client.list_certificates(self.company_id))
        if listing is None:
            return False
        self.state.certificates = list(listing.certificados)
        self.state.active = listing.active()
        self.state.loaded = True
        return True

    async def refresh(self) -> bool:
        return await self.load()

    async def upload(
        self, filename: str, content: bytes, password: str, validate_with_authority: bool = True
    ) -> Optional[UploadResult]:
        if not content:
            self._fail(VALIDATION, "El archivo del certificado está vacío")
            return None
        if not password:
            self._fail(VALIDATION, "La contraseña del certificado es obligatoria")
            return None
        result = await self._call(
            "upload",
            self.client.upload_certificate(self.company_id, filename, content, password, validate_with_authority),
            flag="uploading",
        )
        if result is not None:
            logger.info("Certificado {} subido para empresa {}", filename, self.company_id)
            await self.load()
        return result

    async def activate(self, cert_id: str, reason: str) -> Optional[ActivationResult]:
        if not reason.strip():
            self._fail(VALIDATION, "Debe indicar la razón de la activación")
            return None
        result = await self._call("activate", self.client.activate_certificate(self.company_id, cert_id, reason))
        if result is not None:
            logger.info("Certificado {} activado para empresa {}", cert_id, self.company_id)
            await self.load()
        return result

    async def deactivate(self, cert_id: str) -> bool:
        result = await self._call("deactivate", self.client.deactivate_certificate(self.company_id, cert_id))
        if result is None:
            return False
        await self.load()
        return True

    async def delete(self, cert_id: str) -> bool:
        result = await self._call("delete", self.client.delete_certificate(self.company_id, cert_id))
        if result is None:
            return False
        await self.load()
        return True

    async def validate(self, cert_id: str) -> Optional[ValidationResult]:
        return await self._call(
            "validate", self.client.validate_certificate(self.company_id, cert_id), flag="validating"
        )

    async def expiring(self, days: int = 30) -> List[CertificateRecord]:
        records = await self._call("expiring", self.client.expiring_certificates(days))
        return records or []
