from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class SeriesCounter(BaseModel):
    id: Optional[str] = None
    series_code: str = Field(..., alias="serie", min_length=1, max_length=10)
    current_number: int = Field(..., alias="numero_actual", ge=0)
    initial_number: int = Field(..., alias="numero_inicial")
    active: bool = Field(True, alias="activo")
    owner_company_id: Optional[str] = Field(None, alias="empresa_id")
    created_at: Optional[datetime] = Field(None, alias="fecha_creacion")
    updated_at: Optional[datetime] = Field(None, alias="fecha_actualizacion")

    class Config:
        populate_by_name = True


class SeriesConfig(BaseModel):
    series_code: str = Field(..., alias="serie", min_length=1, max_length=10)
    initial_number: int = Field(..., alias="numero_inicial", ge=0)
    active: bool = Field(True, alias="activo")

    class Config:
        populate_by_name = True


class BulkSeriesConfig(BaseModel):
    configuraciones: List[SeriesConfig]


class ResetRequest(BaseModel):
    nuevo_numero: int


class ActiveRequest(BaseModel):
    activo: bool


class NextNumber(BaseModel):
    series_code: str = Field(..., alias="serie")
    next_number: int = Field(..., alias="siguiente_numero")
    full_number: Optional[str] = Field(None, alias="numero_completo")

    class Config:
        populate_by_name = True


class SeriesStatistics(BaseModel):
    serie: str
    total_emitidos: int = 0
    ultimo_numero: int = 0
    fecha_ultimo_documento: Optional[datetime] = None
    documentos_pendientes: int = 0
    numeracion_consecutiva: bool = True


class NumberingValidation(BaseModel):
    serie: str
    es_valida: bool
    numero_actual: int
    siguiente_numero: int
    numeros_faltantes: List[int] = []
    errores: List[str] = []
