from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from . import models, order_lifecycle
from .db import get_session
from .models import OrderStatus
from .permissions import UserRole
from .security import CurrentProfile, RoleChecker
from .order_lifecycle import (
    InvalidOrderError,
    InvalidTransitionError,
    OrderNotEditableError,
    OrderNotFoundError,
    StaleOrderError,
    TransitionNotPermittedError,
)

router = APIRouter()

KitchenProfile = RoleChecker(UserRole.KITCHEN)
BarProfile = RoleChecker(UserRole.BARTENDER)
WaitProfile = RoleChecker(UserRole.WAITSTAFF)
OrderEntryProfile = RoleChecker(UserRole.WAITSTAFF, UserRole.BARTENDER)


def _raise_http(e: order_lifecycle.OrderError):
    if isinstance(e, OrderNotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, TransitionNotPermittedError):
        raise HTTPException(status_code=403, detail=str(e))
    if isinstance(e, (InvalidTransitionError, StaleOrderError, OrderNotEditableError)):
        raise HTTPException(status_code=409, detail=str(e))
    if isinstance(e, InvalidOrderError):
        raise HTTPException(status_code=400, detail=str(e))
    raise HTTPException(status_code=500, detail="Order update failed")


def serialize_order(
    session: Session,
    order: models.Order,
    table: models.Table | None = None,
    role: UserRole | None = None,
) -> dict:
    if table is None and order.table_id:
        table = session.get(models.Table, order.table_id)
    items = order_lifecycle.order_items(session, order.id)

    data = {
        "id": order.id,
        "restaurant_id": order.restaurant_id,
        "table_id": order.table_id,
        "table_name": table.name if table else None,
        "customer_session": order.customer_session,
        "customer_name": order.customer_name,
        "status": order.status.value,
        "total_cents": order.total_cents,
        "special_instructions": order.special_instructions,
        "version": order.version,
        "created_at": order.created_at.isoformat(),
        "updated_at": order.updated_at.isoformat(),
        "items": [
            {
                "id": item.id,
                "menu_item_id": item.menu_item_id,
                "menu_item_name": item.menu_item_name,
                "quantity": item.quantity,
                "price_cents": item.price_cents,
                "special_instructions": item.special_instructions,
            }
            for item in items
        ],
    }
    if role is not None:
        data["next_statuses"] = sorted(s.value for s in order_lifecycle.allowed_targets(order.status, role))
    return data


def _active_orders(session: Session, profile: models.Profile) -> list[dict]:
    return [
        serialize_order(session, order, role=profile.role)
        for order in order_lifecycle.active_orders(session, profile.restaurant_id)
    ]


# ============ STAFF VIEWS ============

@router.get("/kitchen/orders")
def kitchen_orders(
    profile: models.Profile = Depends(KitchenProfile),
    session: Session = Depends(get_session),
) -> list[dict]:
    """Active orders for the kitchen, oldest first."""
    return _active_orders(session, profile)


@router.get("/bar/orders")
def bar_orders(
    profile: models.Profile = Depends(BarProfile),
    session: Session = Depends(get_session),
) -> dict:
    """Active orders grouped into tabs: one per table, or per customer session for bar tabs."""
    orders = _active_orders(session, profile)

    tabs: dict[str, dict] = {}
    for order in orders:
        key = order["table_id"] or order["customer_session"]
        tab = tabs.setdefault(key, {
            "id": key,
            "table_id": order["table_id"],
            "name": order["table_name"] or order["customer_name"] or "Bar tab",
            "order_ids": [],
            "total_cents": 0,
        })
        tab["order_ids"].append(order["id"])
        tab["total_cents"] += order["total_cents"]

    return {"orders": orders, "tabs": list(tabs.values())}


def table_board_status(statuses: list[OrderStatus]) -> str:
    """Board color for a table: the most advanced active order wins."""
    if OrderStatus.READY in statuses:
        return "ready"
    if OrderStatus.PREPARING in statuses:
        return "preparing"
    if OrderStatus.PENDING in statuses:
        return "pending"
    return "empty"


@router.get("/wait/orders")
def wait_orders(
    profile: models.Profile = Depends(WaitProfile),
    session: Session = Depends(get_session),
) -> dict:
    orders = _active_orders(session, profile)
    tables = session.exec(
        select(models.Table)
        .where(
            models.Table.restaurant_id == profile.restaurant_id,
            models.Table.active == True,  # noqa: E712
        )
        .order_by(models.Table.name)
    ).all()

    board = []
    for table in tables:
        table_orders = [o for o in orders if o["table_id"] == table.id]
        board.append({
            "id": table.id,
            "name": table.name,
            "status": table_board_status([OrderStatus(o["status"]) for o in table_orders]),
            "order_count": len(table_orders),
        })
    return {"orders": orders, "tables": board}


# ============ ORDER ACTIONS ============

@router.put("/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    status_update: models.OrderStatusUpdate,
    profile: CurrentProfile,
    session: Session = Depends(get_session),
) -> dict:
    try:
        order = order_lifecycle.change_status(
            session,
            profile.restaurant_id,
            order_id,
            status_update.status,
            profile.role,
            changed_by=profile.id,
            expected_version=status_update.expected_version,
        )
    except order_lifecycle.OrderError as e:
        _raise_http(e)

    return {
        "status": "updated",
        "order_id": order.id,
        "new_status": order.status.value,
        "version": order.version,
    }


@router.post("/orders")
def create_staff_order(
    order_data: models.StaffOrderCreate,
    profile: models.Profile = Depends(OrderEntryProfile),
    session: Session = Depends(get_session),
) -> dict:
    """Manual order entry by staff. Without a table this opens a bar tab."""
    table = None
    if order_data.table_id:
        table = session.exec(
            select(models.Table).where(
                models.Table.id == order_data.table_id,
                models.Table.restaurant_id == profile.restaurant_id,
            )
        ).first()
        if not table:
            raise HTTPException(status_code=404, detail="Table not found")

    instructions = order_data.special_instructions
    if table is None and not instructions and order_data.customer_name:
        instructions = f"Bar tab for {order_data.customer_name}"

    try:
        order = order_lifecycle.create_order(
            session,
            profile.restaurant_id,
            order_data.items,
            table_id=table.id if table else None,
            customer_session=order_data.customer_session,
            customer_name=order_data.customer_name,
            special_instructions=instructions,
            created_by=profile.id,
        )
    except order_lifecycle.OrderError as e:
        _raise_http(e)

    return {"status": "created", "order": serialize_order(session, order, table, role=profile.role)}


@router.put("/orders/{order_id}/items/{item_id}")
def update_order_item(
    order_id: str,
    item_id: str,
    update: models.OrderItemStaffUpdate,
    profile: models.Profile = Depends(WaitProfile),
    session: Session = Depends(get_session),
) -> dict:
    """Change quantity or instructions. Quantity 0 removes the item."""
    try:
        order = order_lifecycle.update_order_item(
            session,
            profile.restaurant_id,
            order_id,
            item_id,
            quantity=update.quantity,
            special_instructions=update.special_instructions,
            changed_by=profile.id,
            expected_version=update.expected_version,
        )
    except order_lifecycle.OrderError as e:
        _raise_http(e)

    return serialize_order(session, order, role=profile.role)


@router.delete("/orders/{order_id}/items/{item_id}")
def remove_order_item(
    order_id: str,
    item_id: str,
    expected_version: int | None = None,
    profile: models.Profile = Depends(WaitProfile),
    session: Session = Depends(get_session),
) -> dict:
    try:
        order = order_lifecycle.remove_order_item(
            session,
            profile.restaurant_id,
            order_id,
            item_id,
            changed_by=profile.id,
            expected_version=expected_version,
        )
    except order_lifecycle.OrderError as e:
        _raise_http(e)

    return serialize_order(session, order, role=profile.role)


@router.get("/orders/{order_id}")
def get_order(
    order_id: str,
    profile: CurrentProfile,
    session: Session = Depends(get_session),
) -> dict:
    try:
        order = order_lifecycle.get_order(session, profile.restaurant_id, order_id)
    except order_lifecycle.OrderError as e:
        _raise_http(e)
    return serialize_order(session, order, role=profile.role)


@router.get("/orders/{order_id}/history")
def get_order_history(
    order_id: str,
    profile: CurrentProfile,
    session: Session = Depends(get_session),
) -> list[dict]:
    try:
        order = order_lifecycle.get_order(session, profile.restaurant_id, order_id)
    except order_lifecycle.OrderError as e:
        _raise_http(e)

    return [
        {
            "old_status": entry.old_status.value if entry.old_status else None,
            "new_status": entry.new_status.value,
            "changed_by": entry.changed_by,
            "created_at": entry.created_at.isoformat(),
        }
        for entry in order_lifecycle.status_history(session, order.id)
    ]
