"""
Modelos Pydantic para datos de IQ Reseller (IQR).

IQRRawOrder refleja la forma nativa del endpoint GetSOs; IQROrder es la
versión normalizada que consume el resto del pipeline.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class IQRRawLineItem(BaseModel):
    """Línea de detalle (SODetails) de una orden de venta IQR."""

    model_config = ConfigDict(extra="allow")

    item: str = ""
    description: Optional[str] = None
    quantity: float = 0
    unitprice: float = 0
    serialnumber: Optional[str] = None
    mfgr: Optional[str] = None
    condition: Optional[str] = None

    @field_validator("item", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else str(v)

    @field_validator("quantity", "unitprice", mode="before")
    @classmethod
    def none_to_zero(cls, v):
        return 0 if v is None else v


class IQRRawOrder(BaseModel):
    """
    Orden de venta tal como la devuelve IQR.

    Los campos userdefined1-5 son texto libre; uno de ellos suele llevar
    el canal de venta (agent channel).
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    so: int = Field(..., description="Número de orden de venta IQR")
    status: Optional[str] = None
    clientid: Optional[str] = None
    saledate: Optional[str] = None
    total: Optional[float] = None

    shiptocompany: Optional[str] = None
    shiptoaddress1: Optional[str] = None
    shiptoaddress2: Optional[str] = None
    shiptoaddress3: Optional[str] = None
    shiptocity: Optional[str] = None
    shiptostate: Optional[str] = None
    shiptopostalcode: Optional[str] = None
    shiptocountry: Optional[str] = None
    shiptoemail: Optional[str] = None
    shiptocontact: Optional[str] = None
    shiptophone: Optional[str] = None

    details: List[IQRRawLineItem] = Field(default_factory=list, alias="SODetails")

    userdefined1: Optional[str] = None
    userdefined2: Optional[str] = None
    userdefined3: Optional[str] = None
    userdefined4: Optional[str] = None
    userdefined5: Optional[str] = None

    @field_validator("details", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return v or []

    @field_validator("saledate", "clientid", mode="before")
    @classmethod
    def coerce_to_str(cls, v):
        return None if v is None else str(v)

    @property
    def user_defined_fields(self) -> List[Optional[str]]:
        """Campos userdefined1-5 en orden."""
        return [self.userdefined1, self.userdefined2, self.userdefined3, self.userdefined4, self.userdefined5]


class ShippingAddress(BaseModel):
    """Dirección de envío normalizada."""

    street1: str = ""
    street2: Optional[str] = None
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""
    phone: Optional[str] = None


class IQRLineItem(BaseModel):
    """Línea de orden normalizada."""

    sku: str
    name: str
    quantity: float
    unit_price: float
    # IQR no expone peso; None significa desconocido
    weight: Optional[float] = None


class IQROrder(BaseModel):
    """
    Orden IQR normalizada.

    Se deriva de forma determinística de IQRRawOrder y conserva la orden
    original en `raw` para trazabilidad.
    """

    order_id: str
    order_number: str
    order_date: Optional[str] = None
    customer_name: str = ""
    customer_email: Optional[str] = None
    shipping_address: ShippingAddress
    line_items: List[IQRLineItem] = Field(default_factory=list)
    status: str = ""
    raw: IQRRawOrder


class IQRTrackingUpdate(BaseModel):
    """Datos de tracking a escribir de vuelta en una orden IQR."""

    order_id: str
    tracking_number: str
    carrier: str
    ship_date: Optional[str] = None
    shipping_method: Optional[str] = None


class IQRSession(BaseModel):
    """Token de sesión IQR con su expiración local (UTC)."""

    token: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return bool(self.token) and now < self.expires_at
