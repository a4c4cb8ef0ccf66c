"""
Utilidades de fechas para los formatos que devuelve IQR.

IQR expone un servicio WCF, por lo que las fechas pueden llegar como
ISO 8601 o como "/Date(1700000000000-0500)/". Las fechas sin zona se
interpretan como UTC.
"""

import re
from datetime import datetime, timezone
from typing import Optional, Union

_WCF_DATE_RE = re.compile(r"^/Date\((-?\d+)([+-]\d{4})?\)/$")

_FALLBACK_FORMATS = (
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
    "%Y-%m-%d %H:%M:%S",
)


def parse_order_date(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Convierte una fecha de IQR a datetime con zona UTC.

    Args:
        value: Fecha en cualquiera de los formatos soportados

    Returns:
        datetime en UTC, o None si falta o no se puede interpretar
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return ensure_utc(value)

    text = str(value).strip()
    if not text:
        return None

    match = _WCF_DATE_RE.match(text)
    if match:
        # El offset de WCF es informativo: los milisegundos ya están en UTC
        return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)

    try:
        return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    return None


def ensure_utc(value: datetime) -> datetime:
    """Agrega UTC a fechas naive y convierte las demás a UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Formato ISO 8601 con sufijo Z."""
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
