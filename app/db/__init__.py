"""
Clientes HTTP de las APIs externas del conector.

- IQRClient: sesión, órdenes de venta y tracking en IQ Reseller
- ShipStationClient: órdenes, envíos y tiendas en ShipStation
"""

from app.db.iqr_client import IQRClient, close_iqr_client, get_iqr_client, normalize_raw_order
from app.db.shipstation_client import ShipStationClient, close_shipstation_client, get_shipstation_client

__all__ = [
    "IQRClient",
    "get_iqr_client",
    "close_iqr_client",
    "normalize_raw_order",
    "ShipStationClient",
    "get_shipstation_client",
    "close_shipstation_client",
]
