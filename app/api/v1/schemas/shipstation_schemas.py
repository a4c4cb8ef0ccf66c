"""
Modelos Pydantic para la API REST de ShipStation.

Los nombres de campo siguen el formato camelCase de la API para poder
serializar con model_dump() sin mapeos adicionales.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ShipStationOrderStatus(str, Enum):
    """Estados de orden en ShipStation."""

    AWAITING_PAYMENT = "awaiting_payment"
    AWAITING_SHIPMENT = "awaiting_shipment"
    SHIPPED = "shipped"
    ON_HOLD = "on_hold"
    CANCELLED = "cancelled"


class WeightUnit(str, Enum):
    POUNDS = "pounds"
    OUNCES = "ounces"
    GRAMS = "grams"


class ShipStationAddress(BaseModel):
    """Dirección (billTo / shipTo)."""

    name: str = ""
    company: Optional[str] = None
    street1: str = ""
    street2: Optional[str] = None
    city: str = ""
    state: str = ""
    postalCode: str = ""
    country: str
    phone: Optional[str] = None


class ShipStationWeight(BaseModel):
    value: float
    units: WeightUnit = WeightUnit.POUNDS


class ShipStationOrderItem(BaseModel):
    """Línea de una orden de ShipStation."""

    sku: str
    name: str
    quantity: float
    unitPrice: float
    weight: Optional[ShipStationWeight] = None


class ShipStationAdvancedOptions(BaseModel):
    storeId: Optional[int] = None
    warehouseId: Optional[int] = None
    customField1: Optional[str] = None
    customField2: Optional[str] = None
    customField3: Optional[str] = None


class ShipStationOrder(BaseModel):
    """
    Orden a crear/actualizar vía /orders/createorder.

    orderKey es la clave de idempotencia: ShipStation actualiza la orden
    existente con el mismo orderKey en lugar de duplicarla.
    """

    orderNumber: str
    orderKey: str
    orderDate: Optional[str] = None
    orderStatus: ShipStationOrderStatus = ShipStationOrderStatus.AWAITING_SHIPMENT
    customerEmail: Optional[str] = None
    billTo: ShipStationAddress
    shipTo: ShipStationAddress
    items: List[ShipStationOrderItem] = Field(default_factory=list)
    amountPaid: Optional[float] = None
    advancedOptions: ShipStationAdvancedOptions = Field(default_factory=ShipStationAdvancedOptions)

    def to_payload(self) -> Dict[str, Any]:
        """Serializa la orden para la API, omitiendo campos nulos."""
        return self.model_dump(mode="json", exclude_none=True)


class ShipStationShipment(BaseModel):
    """Envío devuelto por GET /shipments."""

    model_config = ConfigDict(extra="allow")

    shipmentId: Optional[int] = None
    orderId: Optional[int] = None
    orderNumber: str = ""
    orderKey: Optional[str] = None
    createDate: Optional[str] = None
    shipDate: Optional[str] = None
    trackingNumber: Optional[str] = None
    carrierCode: Optional[str] = None
    serviceCode: Optional[str] = None
    shipmentCost: Optional[float] = None
    advancedOptions: Optional[ShipStationAdvancedOptions] = None


class ShipStationStore(BaseModel):
    """Tienda (store) configurada en ShipStation."""

    model_config = ConfigDict(extra="allow")

    storeId: int
    storeName: str
    marketplaceName: Optional[str] = None
    active: Optional[bool] = None
