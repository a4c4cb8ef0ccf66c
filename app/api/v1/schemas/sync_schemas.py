"""
Modelos Pydantic para sincronización, actividad y webhooks.

Los modelos de respuesta se serializan en camelCase (alias) para mantener
el contrato JSON de la API; internamente se usan nombres snake_case.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base con alias camelCase que acepta ambos formatos al validar."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncRequest(CamelModel):
    """
    Filtros opcionales para una sincronización bajo demanda.

    Si se indica from_date/to_date, reemplazan la ventana relativa days_back.
    """

    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    order_status: Optional[str] = None
    days_back: Optional[int] = Field(default=None, ge=1, le=365)

    @field_validator("order_status", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class SyncError(CamelModel):
    order_number: str
    error: str


class SyncResult(CamelModel):
    """Resultado de una corrida de sincronización."""

    success: bool = True
    orders_processed: int = 0
    orders_failed: int = 0
    errors: List[SyncError] = Field(default_factory=list)


class ActivityType(str, Enum):
    SYNC = "sync"
    WEBHOOK = "webhook"
    ERROR = "error"


class ActivityRecord(CamelModel):
    """Entrada del historial de actividad en memoria."""

    id: str
    timestamp: datetime
    type: ActivityType
    success: bool
    orders_processed: int = 0
    orders_failed: int = 0
    # Duración en milisegundos
    duration: float = 0
    message: Optional[str] = None


class Last24HoursStats(CamelModel):
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    orders_processed: int = 0
    orders_failed: int = 0
    last_sync_time: Optional[datetime] = None


class AllTimeStats(CamelModel):
    total_syncs: int = 0
    orders_processed: int = 0
    start_time: datetime


class ActivityStats(CamelModel):
    last_24_hours: Last24HoursStats = Field(alias="last24Hours")
    all_time: AllTimeStats
    recent_activity: List[ActivityRecord] = Field(default_factory=list)


class ShipStationWebhookData(BaseModel):
    """Datos del envío incluidos en el webhook (formato snake_case de ShipStation)."""

    model_config = ConfigDict(extra="allow")

    shipment_id: Optional[str] = None
    order_id: Optional[str] = None
    order_number: str = ""
    order_key: Optional[str] = None
    custom_field1: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier_code: Optional[str] = None
    service_code: Optional[str] = None
    ship_date: Optional[str] = None
    shipment_cost: Optional[float] = None

    @field_validator("shipment_id", "order_id", "order_number", mode="before")
    @classmethod
    def coerce_to_str(cls, v):
        if v is None:
            return v
        return str(v)


class ShipStationWebhookPayload(BaseModel):
    """Cuerpo de un webhook de ShipStation."""

    model_config = ConfigDict(extra="allow")

    resource_url: Optional[str] = None
    resource_type: str = ""
    data: Optional[ShipStationWebhookData] = None


class WebhookResult(BaseModel):
    success: bool
    message: str


class TrackingPollResult(CamelModel):
    """Resultado de un polling de envíos hacia IQR."""

    since: str
    shipments_found: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list)
