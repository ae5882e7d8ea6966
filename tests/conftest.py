import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import pytest

from app.services.backend_client import BackendClient

BASE_URL = "http://backend.test/api/v1"
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def certificate_json(
    cert_id: str, filename: str, active: bool = True, expired: bool = False, now: datetime = NOW
) -> Dict[str, Any]:
    valid_from = now - timedelta(days=30)
    valid_to = now - timedelta(days=1) if expired else now + timedelta(days=300)
    return {
        "id": cert_id,
        "empresa_id": "emp-1",
        "filename": filename,
        "subject_dn": "CN=20123456789, O=Comercial Andina SAC",
        "issuer_dn": "CN=Llama.pe SHA256 Standard CA",
        "serial_number": "4F2A",
        "valid_from": valid_from.isoformat(),
        "valid_to": valid_to.isoformat(),
        "ruc_certificado": "20123456789",
        "algoritmo": "RSA",
        "key_usage": "Digital Signature",
        "tamaño_clave": 2048,
        "activo": active,
        "fecha_subida": valid_from.isoformat(),
        "vigente": not expired,
        "dias_para_vencer": -1 if expired else 300,
        "requiere_renovacion": False,
        "validado_sunat": True,
        "errores_validacion": [],
    }


class FakeAuthority:
    """In-memory stand-in for the invoicing backend."""

    def __init__(self):
        self.counters: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.company: Dict[str, Any] = {
            "id": "emp-1",
            "ruc": "20123456789",
            "razon_social": "Comercial Andina SAC",
            "certificado_digital_activo": False,
        }
        self.certificates: List[Dict[str, Any]] = []
        self.active_certificate_id: Optional[str] = None
        self.saved_configs: List[Dict[str, Any]] = []
        self.failures: Dict[str, httpx.Response] = {}

    def fail(self, method: str, path: str, status_code: int, body: Any = None, text: str | None = None) -> None:
        if text is not None:
            response = httpx.Response(status_code, text=text)
        else:
            response = httpx.Response(status_code, json=body)
        self.failures[f"{method} {path}"] = response

    def _counter_json(self, code: str) -> Dict[str, Any]:
        counter = self.counters[code]
        return {
            "id": f"ctr-{code}",
            "serie": code,
            "numero_actual": counter["numero_actual"],
            "numero_inicial": counter["numero_inicial"],
            "activo": counter["activo"],
            "empresa_id": "emp-1",
        }

    def _configure(self, body: Dict[str, Any]) -> Dict[str, Any]:
        code = body["serie"]
        self.counters[code] = {
            "numero_actual": body["numero_inicial"],
            "numero_inicial": body["numero_inicial"],
            "activo": body.get("activo", True),
        }
        return self._counter_json(code)

    def _not_found(self, what: str) -> httpx.Response:
        return httpx.Response(404, json={"error": "not_found", "message": f"{what} no encontrada"})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api/v1")
        key = f"{request.method} {path}"
        if key in self.failures:
            return self.failures.pop(key)
        body = json.loads(request.content) if request.content and "json" in request.headers.get(
            "content-type", ""
        ) else {}
        parts = path.strip("/").split("/")

        if parts[0] == "numeracion":
            return self._numbering(request.method, parts[1:], body)
        if parts[0] == "empresas":
            return self._companies(request.method, parts[1:], body)
        if parts[0] == "certificados" and parts[1:] == ["expiring"]:
            expiring = [c for c in self.certificates if c["dias_para_vencer"] <= 30]
            return httpx.Response(200, json={"success": True, "certificados": expiring})
        return httpx.Response(404, json={"error": "not_found", "message": "Ruta no encontrada"})

    def _numbering(self, method: str, parts: List[str], body: Dict[str, Any]) -> httpx.Response:
        action = parts[0]
        if method == "GET" and action == "series":
            return httpx.Response(200, json={"success": True, "data": sorted(self.counters), "message": "ok"})
        if method == "GET" and action == "contadores":
            data = [self._counter_json(code) for code in sorted(self.counters)]
            return httpx.Response(200, json={"success": True, "data": data, "message": "ok"})
        if method == "POST" and action == "configurar":
            return httpx.Response(200, json=self._configure(body))
        if method == "POST" and action == "configurar-masiva":
            return httpx.Response(200, json=[self._configure(c) for c in body["configuraciones"]])
        code = parts[1] if len(parts) > 1 else ""
        if code not in self.counters:
            return self._not_found(f"Serie {code}")
        counter = self.counters[code]
        if method == "GET" and action == "siguiente":
            counter["numero_actual"] += 1
            return httpx.Response(200, json={"serie": code, "siguiente_numero": counter["numero_actual"]})
        if method == "POST" and action == "resetear":
            counter["numero_actual"] = body["nuevo_numero"]
            return httpx.Response(200, json=self._counter_json(code))
        if method == "PATCH" and action == "contador":
            counter["activo"] = body["activo"]
            return httpx.Response(200, json=self._counter_json(code))
        if method == "GET" and action == "estadisticas":
            return httpx.Response(
                200,
                json={"serie": code, "total_emitidos": counter["numero_actual"], "ultimo_numero": counter["numero_actual"]},
            )
        if method == "GET" and action == "validar":
            return httpx.Response(
                200,
                json={
                    "serie": code,
                    "es_valida": False,
                    "numero_actual": counter["numero_actual"],
                    "siguiente_numero": counter["numero_actual"] + 1,
                    "numeros_faltantes": [3],
                    "errores": ["Falta el número 3"],
                },
            )
        return self._not_found("Operación")

    def _companies(self, method: str, parts: List[str], body: Dict[str, Any]) -> httpx.Response:
        if parts[0] != self.company["id"]:
            return self._not_found("Empresa")
        if len(parts) == 1 and method == "GET":
            return httpx.Response(200, json=self.company)
        if len(parts) == 1 and method == "PUT":
            self.saved_configs.append(body["certificado_config"])
            return httpx.Response(200, json={"success": True})
        if len(parts) == 1:
            return self._not_found("Operación")
        if parts[1] == "certificados" and len(parts) == 2 and method == "GET":
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "total": len(self.certificates),
                    "certificados": self.certificates,
                    "certificado_activo_id": self.active_certificate_id,
                },
            )
        if parts[1] == "certificados" and len(parts) == 4 and parts[3] == "activate" and method == "PUT":
            cert_id = parts[2]
            previous = self.active_certificate_id
            for cert in self.certificates:
                cert["activo"] = cert["id"] == cert_id
            self.active_certificate_id = cert_id
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "message": "Certificado activado",
                    "certificado_id": cert_id,
                    "certificado_anterior_id": previous,
                },
            )
        if parts[1] == "certificados" and len(parts) == 3 and method == "DELETE":
            self.certificates = [c for c in self.certificates if c["id"] != parts[2]]
            return httpx.Response(200, json={"success": True})
        return self._not_found("Operación")


@pytest.fixture
def authority() -> FakeAuthority:
    return FakeAuthority()


@pytest.fixture
def make_client(authority):
    def factory(token: Optional[str] = "test-token", **kwargs) -> BackendClient:
        return BackendClient(
            token_provider=lambda: token,
            base_url=BASE_URL,
            transport=httpx.MockTransport(authority.handler),
            **kwargs,
        )

    return factory


@pytest.fixture
def client(make_client) -> BackendClient:
    return make_client()
