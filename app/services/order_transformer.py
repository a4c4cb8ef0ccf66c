"""
Order Transformer - maps normalized IQR orders to ShipStation orders.

Pure functions: the same IQROrder always yields the same ShipStationOrder.
The idempotency key "{PREFIX}-{orderId}" is used as the ShipStation orderKey
and duplicated into advancedOptions.customField1 so the tracking writeback
path can recover the IQR order id.
"""

import logging
import re

from app.api.v1.schemas.iqr_schemas import IQRLineItem, IQROrder
from app.api.v1.schemas.shipstation_schemas import (
    ShipStationAddress,
    ShipStationAdvancedOptions,
    ShipStationOrder,
    ShipStationOrderItem,
    ShipStationOrderStatus,
    ShipStationWeight,
    WeightUnit,
)
from app.utils.date_utils import parse_order_date, to_iso

logger = logging.getLogger(__name__)

DEFAULT_ORDER_KEY_PREFIX = "IQR"

COUNTRY_ALIASES = {
    "UNITED STATES": "US",
    "UNITED STATES OF AMERICA": "US",
    "USA": "US",
    "CANADA": "CA",
    "MEXICO": "MX",
    "UNITED KINGDOM": "GB",
    "UK": "GB",
}

# Format written into customField1 by earlier releases of the connector
_LEGACY_CUSTOM_FIELD_RE = re.compile(r"IQR Order ID:\s*(.+)")


def normalize_country_code(country: str | None, default: str = "US", order_number: str | None = None) -> str:
    """
    Canonicalize a country to ISO-2.

    Two-letter values pass through uppercased and known full names map to
    their code. Anything else falls back to `default` so the order stays
    shippable; the fallback is logged so bad source data stays visible.
    """
    normalized = (country or "").strip().upper()

    if len(normalized) == 2:
        return normalized

    if normalized in COUNTRY_ALIASES:
        return COUNTRY_ALIASES[normalized]

    logger.warning(
        f"⚠️ Unrecognized country {country!r} on order {order_number or '?'}, defaulting to {default}",
        extra={"order_number": order_number, "country": country},
    )
    return default


def build_order_key(order_id: str, prefix: str = DEFAULT_ORDER_KEY_PREFIX) -> str:
    """Encode an IQR order id as a ShipStation orderKey."""
    return f"{prefix}-{order_id}"


def parse_order_key(order_key: str | None, prefix: str = DEFAULT_ORDER_KEY_PREFIX) -> str | None:
    """
    Decode an orderKey produced by build_order_key.

    Returns:
        str | None: The IQR order id, or None when the key is not ours
    """
    if not order_key:
        return None

    marker = f"{prefix}-"
    key = order_key.strip()
    if not key.startswith(marker):
        return None

    order_id = key[len(marker) :]
    return order_id or None


def extract_iqr_order_id(
    order_number: str | None,
    custom_field1: str | None = None,
    order_key: str | None = None,
    prefix: str = DEFAULT_ORDER_KEY_PREFIX,
) -> str | None:
    """
    Recover the IQR order id from a ShipStation order or shipment.

    Lookup order: customField1 (current key format, then the legacy
    "IQR Order ID: X" text), the orderKey, and finally an order number
    carrying the key prefix.

    Returns:
        str | None: The IQR order id, or None for orders this connector did not create
    """
    if custom_field1:
        order_id = parse_order_key(custom_field1, prefix)
        if order_id:
            return order_id

        match = _LEGACY_CUSTOM_FIELD_RE.search(custom_field1)
        if match:
            return match.group(1).strip() or None

    order_id = parse_order_key(order_key, prefix)
    if order_id:
        return order_id

    return parse_order_key(order_number, prefix)


def _transform_line_item(item: IQRLineItem) -> ShipStationOrderItem:
    return ShipStationOrderItem(
        sku=item.sku,
        name=item.name,
        quantity=item.quantity,
        unitPrice=item.unit_price,
        weight=ShipStationWeight(value=item.weight, units=WeightUnit.POUNDS) if item.weight else None,
    )


def _format_order_date(value: str | None) -> str | None:
    parsed = parse_order_date(value)
    if parsed is None:
        return value
    return to_iso(parsed)


def transform_order(
    order: IQROrder,
    store_id: int | None = None,
    order_key_prefix: str = DEFAULT_ORDER_KEY_PREFIX,
    default_country: str = "US",
) -> ShipStationOrder:
    """
    Transform one normalized IQR order into a ShipStation order.

    billTo is a copy of shipTo because IQR sales orders carry no separate
    billing address. The ShipStation status is always awaiting_shipment.

    Args:
        order: Normalized IQR order
        store_id: ShipStation store id, omitted when the store was not resolved
        order_key_prefix: Prefix of the idempotency key
        default_country: Country used when the source country is unrecognized

    Returns:
        ShipStationOrder: Order ready for /orders/createorder
    """
    address = order.shipping_address
    country = normalize_country_code(address.country, default_country, order.order_number)
    order_key = build_order_key(order.order_id, order_key_prefix)

    ship_to = ShipStationAddress(
        name=order.customer_name,
        street1=address.street1,
        street2=address.street2,
        city=address.city,
        state=address.state,
        postalCode=address.postal_code,
        country=country,
        phone=address.phone,
    )

    return ShipStationOrder(
        orderNumber=order.order_number,
        orderKey=order_key,
        orderDate=_format_order_date(order.order_date),
        orderStatus=ShipStationOrderStatus.AWAITING_SHIPMENT,
        customerEmail=order.customer_email,
        billTo=ship_to.model_copy(),
        shipTo=ship_to,
        items=[_transform_line_item(item) for item in order.line_items],
        amountPaid=order.raw.total,
        advancedOptions=ShipStationAdvancedOptions(storeId=store_id, customField1=order_key),
    )
