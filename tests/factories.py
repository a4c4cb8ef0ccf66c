"""Fábricas de datos de test compartidas por los módulos de tests."""

from datetime import UTC, datetime

from app.api.v1.schemas.iqr_schemas import IQROrder, IQRRawOrder
from app.core.config import Settings
from app.db.iqr_client import normalize_raw_order

AGENT_CHANNEL = "DPC - Agent Quickbooks"


def build_settings(**overrides) -> Settings:
    """Settings de test: credenciales falsas y sin esperas entre lotes ni reintentos."""
    values = {
        "ENVIRONMENT": "testing",
        "IQR_API_KEY": "iqr-test-key",
        "SHIPSTATION_API_KEY": "ss-key",
        "SHIPSTATION_API_SECRET": "ss-secret",
        "SYNC_BATCH_DELAY_MS": 0,
        "RETRY_INITIAL_DELAY_SECONDS": 0.0,
        "RETRY_MAX_DELAY_SECONDS": 0.0,
        "SHIPSTATION_DEFAULT_RETRY_AFTER": 0,
        "SYNC_AGENT_CHANNEL": AGENT_CHANNEL,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def build_raw_order(so: int = 1001, **overrides) -> dict:
    """Orden de venta con la forma que devuelve GetSOs."""
    order = {
        "so": so,
        "status": "Open",
        "clientid": "CLIENT-1",
        "saledate": datetime.now(UTC).isoformat(),
        "total": 150.0,
        "shiptocompany": "Acme Corp",
        "shiptoaddress1": "1 Main St",
        "shiptoaddress2": "Suite 5",
        "shiptocity": "Austin",
        "shiptostate": "TX",
        "shiptopostalcode": "73301",
        "shiptocountry": "US",
        "shiptoemail": "buyer@acme.test",
        "shiptophone": "555-0100",
        "SODetails": [
            {"item": "SKU-1", "description": "Widget", "quantity": 2, "unitprice": 50.0},
            {"item": "SKU-2", "description": None, "quantity": 1, "unitprice": 50.0},
        ],
        "userdefined5": AGENT_CHANNEL,
    }
    order.update(overrides)
    return order


def build_order(so: int = 1001, **overrides) -> IQROrder:
    return normalize_raw_order(IQRRawOrder.model_validate(build_raw_order(so, **overrides)))
