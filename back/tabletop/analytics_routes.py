from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select

from . import models
from .db import get_session
from .models import OrderStatus
from .security import OwnerProfile

router = APIRouter()

RANGE_DAYS = {"week": 7, "month": 30}
TOP_ITEMS = 5
RECENT_ORDERS = 10


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def range_start(range_name: str, now: datetime) -> datetime | None:
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if range_name == "today":
        return today
    if range_name in RANGE_DAYS:
        return today - timedelta(days=RANGE_DAYS[range_name])
    return None


def summarize(
    orders: list[models.Order],
    items: list[models.OrderItem],
    tables: dict[str, str],
    range_name: str = "all",
    now: datetime | None = None,
) -> dict:
    """Aggregate non-cancelled orders into the owner's dashboard figures."""
    now = now or datetime.now(timezone.utc)
    start = range_start(range_name, now)
    today = range_start("today", now)

    counted = [o for o in orders if o.status != OrderStatus.CANCELLED]
    in_range = [o for o in counted if start is None or _aware(o.created_at) >= start]
    todays = [o for o in counted if _aware(o.created_at) >= today]

    revenue = sum(o.total_cents for o in in_range)
    order_ids = {o.id for o in in_range}

    quantities: Counter = Counter()
    revenue_by_item: Counter = Counter()
    for item in items:
        if item.order_id in order_ids:
            quantities[item.menu_item_name] += item.quantity
            revenue_by_item[item.menu_item_name] += item.quantity * item.price_cents

    recent = sorted(in_range, key=lambda o: _aware(o.created_at), reverse=True)[:RECENT_ORDERS]

    return {
        "range": range_name,
        "total_orders": len(in_range),
        "total_revenue_cents": revenue,
        "average_order_value_cents": revenue // len(in_range) if in_range else 0,
        "today_orders": len(todays),
        "today_revenue_cents": sum(o.total_cents for o in todays),
        "unique_customers": len({o.customer_session for o in in_range}),
        "top_items": [
            {"name": name, "quantity": quantity, "revenue_cents": revenue_by_item[name]}
            for name, quantity in quantities.most_common(TOP_ITEMS)
        ],
        "recent_orders": [
            {
                "id": o.id,
                "table_name": tables.get(o.table_id) if o.table_id else None,
                "status": o.status.value,
                "total_cents": o.total_cents,
                "created_at": o.created_at.isoformat(),
            }
            for o in recent
        ],
    }


@router.get("/analytics")
def get_analytics(
    profile: OwnerProfile,
    range_name: Literal["today", "week", "month", "all"] = Query("all", alias="range"),
    session: Session = Depends(get_session),
) -> dict:
    orders = session.exec(
        select(models.Order).where(models.Order.restaurant_id == profile.restaurant_id)
    ).all()
    order_ids = [o.id for o in orders]
    items = []
    if order_ids:
        items = session.exec(
            select(models.OrderItem).where(models.OrderItem.order_id.in_(order_ids))
        ).all()
    tables = {
        t.id: t.name
        for t in session.exec(
            select(models.Table).where(models.Table.restaurant_id == profile.restaurant_id)
        ).all()
    }
    return summarize(orders, items, tables, range_name)
