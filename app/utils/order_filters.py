"""
Order filter pipeline.

Three pure, order-preserving predicates over normalized IQR orders, applied
in a fixed order: status, then sale-date window, then channel tag.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Sequence

from app.api.v1.schemas.iqr_schemas import IQROrder
from app.utils.date_utils import ensure_utc, parse_order_date

logger = logging.getLogger(__name__)

DEFAULT_STATUSES = ("Open", "Partial")


def filter_by_status(orders: Sequence[IQROrder], statuses: Sequence[str]) -> list[IQROrder]:
    """
    Keep orders whose status matches the allow-list (case-insensitive).

    Orders with a blank status never match.
    """
    allowed = {status.strip().lower() for status in statuses if status and status.strip()}
    return [order for order in orders if order.status.strip() and order.status.strip().lower() in allowed]


def filter_by_date_range(
    orders: Sequence[IQROrder],
    days_back: int,
    now: datetime | None = None,
) -> list[IQROrder]:
    """
    Keep orders with a sale date on or after `now - days_back` days.

    Orders with a missing or unparseable date are excluded.
    """
    cutoff = ensure_utc(now or datetime.now(UTC)) - timedelta(days=days_back)
    logger.debug(f"Date filter cutoff: {cutoff.isoformat()} ({days_back} days back)")

    kept = []
    for order in orders:
        sale_date = parse_order_date(order.order_date)
        if sale_date is not None and sale_date >= cutoff:
            kept.append(order)
    return kept


def filter_by_window(
    orders: Sequence[IQROrder],
    from_date: datetime | None = None,
    to_date: datetime | None = None,
) -> list[IQROrder]:
    """Keep orders whose sale date falls inside an explicit [from_date, to_date] window."""
    start = ensure_utc(from_date) if from_date else None
    end = ensure_utc(to_date) if to_date else None

    kept = []
    for order in orders:
        sale_date = parse_order_date(order.order_date)
        if sale_date is None:
            continue
        if start and sale_date < start:
            continue
        if end and sale_date > end:
            continue
        kept.append(order)
    return kept


def filter_by_channel(orders: Sequence[IQROrder], channel: str) -> list[IQROrder]:
    """
    Keep orders where any of userdefined1-5 equals the channel (case-insensitive, trimmed).
    """
    wanted = channel.strip().upper()
    return [
        order
        for order in orders
        if any((field or "").strip().upper() == wanted for field in order.raw.user_defined_fields)
    ]


def apply_filters(
    orders: Sequence[IQROrder],
    statuses: Sequence[str] = DEFAULT_STATUSES,
    days_back: int = 1,
    channel: str | None = None,
    now: datetime | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
) -> list[IQROrder]:
    """
    Run the full pipeline: status, then date, then channel.

    An explicit from_date/to_date window replaces the relative days_back window.
    The channel step is skipped when no channel is configured.

    Returns:
        list[IQROrder]: Orders matching every predicate, in input order
    """
    result = filter_by_status(orders, statuses)
    logger.info(f"After status filter ({', '.join(statuses)}): {len(result)} orders")

    if from_date or to_date:
        result = filter_by_window(result, from_date, to_date)
        logger.info(f"After date window filter: {len(result)} orders")
    else:
        result = filter_by_date_range(result, days_back, now)
        logger.info(f"After date filter (last {days_back} days): {len(result)} orders")

    if channel:
        result = filter_by_channel(result, channel)
        logger.info(f'After channel filter ("{channel}"): {len(result)} orders')

    return result
