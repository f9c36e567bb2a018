"""
Order lifecycle.

    PENDING -> PREPARING -> READY -> COMPLETED
        \\          \\          \\
         +-----------+----------+--> CANCELLED

PREPARING -> PENDING and READY -> PREPARING are "back" actions for correcting
mistakes. COMPLETED and CANCELLED are terminal. Every status change goes
through check_transition(), which enforces both the edge and the role allowed
to take it.
"""
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import update
from sqlmodel import Session, select

from . import models
from .models import ACTIVE_STATUSES, OrderStatus
from .permissions import UserRole
from .realtime import publish_order_change

logger = logging.getLogger(__name__)

PREP_ROLES = frozenset({UserRole.KITCHEN, UserRole.BARTENDER})

# (from, to) -> roles allowed to take the edge. OWNER may take any edge.
TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], frozenset[UserRole]] = {
    (OrderStatus.PENDING, OrderStatus.PREPARING): PREP_ROLES,
    (OrderStatus.PREPARING, OrderStatus.READY): PREP_ROLES,
    (OrderStatus.READY, OrderStatus.COMPLETED): PREP_ROLES | {UserRole.WAITSTAFF},
    (OrderStatus.PREPARING, OrderStatus.PENDING): PREP_ROLES,
    (OrderStatus.READY, OrderStatus.PREPARING): PREP_ROLES,
    (OrderStatus.PENDING, OrderStatus.CANCELLED): frozenset({UserRole.KITCHEN, UserRole.WAITSTAFF}),
    (OrderStatus.PREPARING, OrderStatus.CANCELLED): frozenset({UserRole.KITCHEN, UserRole.WAITSTAFF}),
    (OrderStatus.READY, OrderStatus.CANCELLED): frozenset({UserRole.KITCHEN, UserRole.WAITSTAFF}),
}

TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

WRITE_ATTEMPTS = 3


class OrderError(Exception):
    pass


class OrderNotFoundError(OrderError):
    pass


class InvalidTransitionError(OrderError):
    def __init__(self, current: OrderStatus, target: OrderStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from {current.value} to {target.value}")


class TransitionNotPermittedError(OrderError):
    def __init__(self, current: OrderStatus, target: OrderStatus, role: UserRole):
        self.current = current
        self.target = target
        self.role = role
        super().__init__(f"{role.value} may not move order from {current.value} to {target.value}")


class StaleOrderError(OrderError):
    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Order was modified (version {actual}, expected {expected})")


class OrderNotEditableError(OrderError):
    pass


class InvalidOrderError(OrderError):
    pass


def allowed_targets(status: OrderStatus, role: UserRole | None = None) -> set[OrderStatus]:
    """Statuses reachable in one step, optionally limited to what `role` may do."""
    return {
        target for (source, target), roles in TRANSITIONS.items()
        if source == status and (role is None or role == UserRole.OWNER or role in roles)
    }


def check_transition(current: OrderStatus, target: OrderStatus, role: UserRole) -> None:
    roles = TRANSITIONS.get((current, target))
    if roles is None:
        raise InvalidTransitionError(current, target)
    if role != UserRole.OWNER and role not in roles:
        raise TransitionNotPermittedError(current, target, role)


def is_active(status: OrderStatus) -> bool:
    return status in ACTIVE_STATUSES


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _check_version(order: models.Order, expected_version: int | None) -> None:
    # Without an expected version any current version is accepted
    if expected_version is not None and expected_version != order.version:
        raise StaleOrderError(expected_version, order.version)


def write_if_unchanged(
    session: Session,
    order: models.Order,
    read_version: int,
    read_status: OrderStatus,
    changed_by: str | None,
    **values,
) -> bool:
    """
    Apply `values` and bump the version in a single UPDATE that only matches
    while the row still has the version and status the caller read.

    Returns False, with the session rolled back, when another writer got
    there first. Nothing is committed either way.
    """
    result = session.execute(
        update(models.Order)
        .where(
            models.Order.id == order.id,
            models.Order.version == read_version,
            models.Order.status == read_status,
        )
        .values(version=read_version + 1, updated_by=changed_by, updated_at=_now(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        return False
    return True


def get_order(session: Session, restaurant_id: str, order_id: str) -> models.Order:
    order = session.exec(
        select(models.Order).where(
            models.Order.id == order_id,
            models.Order.restaurant_id == restaurant_id,
        )
        .execution_options(populate_existing=True)
    ).first()
    if not order:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


def order_items(session: Session, order_id: str) -> list[models.OrderItem]:
    return session.exec(
        select(models.OrderItem)
        .where(models.OrderItem.order_id == order_id)
        .order_by(models.OrderItem.created_at)
    ).all()


def compute_total(items: list[models.OrderItem]) -> int:
    return sum(item.price_cents * item.quantity for item in items)


def new_customer_session(prefix: str = "customer") -> str:
    return f"{prefix}_{uuid4().hex}"


def create_order(
    session: Session,
    restaurant_id: str,
    items: list[models.OrderItemCreate],
    table_id: str | None = None,
    customer_session: str | None = None,
    customer_name: str | None = None,
    special_instructions: str | None = None,
    created_by: str | None = None,
) -> models.Order:
    """
    Create an order in PENDING with its items.

    Prices and names are read from the menu now and stored on the items, so
    later menu edits never change what an order cost.
    """
    if not items:
        raise InvalidOrderError("Order must have at least one item")

    lines = []
    for item in items:
        if item.quantity < 1:
            raise InvalidOrderError(f"Quantity for {item.menu_item_id} must be at least 1")
        menu_item = session.exec(
            select(models.MenuItem).where(
                models.MenuItem.id == item.menu_item_id,
                models.MenuItem.restaurant_id == restaurant_id,
            )
        ).first()
        if not menu_item:
            raise InvalidOrderError(f"Menu item {item.menu_item_id} not found")
        if not menu_item.available or menu_item.sold_out:
            raise InvalidOrderError(f"{menu_item.name} is not available")
        lines.append((menu_item, item))

    if customer_session is None:
        customer_session = new_customer_session("customer" if table_id else "bar_tab")

    order = models.Order(
        restaurant_id=restaurant_id,
        table_id=table_id,
        customer_session=customer_session,
        customer_name=customer_name,
        status=OrderStatus.PENDING,
        special_instructions=(special_instructions or "").strip() or None,
        created_by=created_by,
        updated_by=created_by,
    )
    session.add(order)
    session.flush()

    order_lines = [
        models.OrderItem(
            order_id=order.id,
            menu_item_id=menu_item.id,
            menu_item_name=menu_item.name,
            quantity=item.quantity,
            price_cents=menu_item.price_cents,
            special_instructions=(item.special_instructions or "").strip() or None,
        )
        for menu_item, item in lines
    ]
    session.add_all(order_lines)
    order.total_cents = compute_total(order_lines)

    session.add(models.OrderStatusHistory(
        order_id=order.id,
        old_status=None,
        new_status=OrderStatus.PENDING,
        changed_by=created_by,
    ))
    session.commit()
    session.refresh(order)

    logger.info(f"Order {order.id} created for restaurant {restaurant_id} ({len(order_lines)} items)")
    publish_order_change(restaurant_id, "new_order", order.id, order.table_id, order.status.value)
    return order


def change_status(
    session: Session,
    restaurant_id: str,
    order_id: str,
    target: OrderStatus,
    role: UserRole,
    changed_by: str | None = None,
    expected_version: int | None = None,
) -> models.Order:
    """
    Move an order to `target`. Raises without touching the order when it is
    missing, out of the caller's restaurant, stale, or the edge is not allowed
    for `role`.

    The edge is checked against the status that was read, and the write only
    lands if the row still has that status and version. If another request
    got there first the order is re-read and checked again, so a finished
    order can never be reopened by a late writer.
    """
    for _ in range(WRITE_ATTEMPTS):
        order = get_order(session, restaurant_id, order_id)
        _check_version(order, expected_version)
        current, read_version = order.status, order.version
        check_transition(current, target, role)
        if write_if_unchanged(session, order, read_version, current, changed_by, status=target):
            break
        logger.info(f"Order {order_id} changed while moving to {target.value}, re-reading")
    else:
        raise StaleOrderError(read_version, order.version)

    session.add(models.OrderStatusHistory(
        order_id=order.id,
        old_status=current,
        new_status=target,
        changed_by=changed_by,
    ))
    session.commit()
    session.refresh(order)

    logger.info(f"Order {order.id}: {current.value} -> {target.value} by {role.value}")
    publish_order_change(restaurant_id, "status_update", order.id, order.table_id, order.status.value)
    return order


def _editable_item(
    session: Session,
    restaurant_id: str,
    order_id: str,
    item_id: str,
    expected_version: int | None,
) -> tuple[models.Order, models.OrderItem]:
    order = get_order(session, restaurant_id, order_id)
    _check_version(order, expected_version)
    if not is_active(order.status):
        raise OrderNotEditableError(f"Order is {order.status.value.lower()} and can no longer be edited")

    item = session.exec(
        select(models.OrderItem).where(
            models.OrderItem.id == item_id,
            models.OrderItem.order_id == order.id,
        )
    ).first()
    if not item:
        raise OrderNotFoundError(f"Order item {item_id} not found")
    return order, item


def _edit_item(
    session: Session,
    restaurant_id: str,
    order_id: str,
    item_id: str,
    edit: Callable[[models.OrderItem], None],
    changed_by: str | None,
    expected_version: int | None,
) -> models.Order:
    # The item change and the order's new total commit together, or not at all
    for _ in range(WRITE_ATTEMPTS):
        order, item = _editable_item(session, restaurant_id, order_id, item_id, expected_version)
        read_version, read_status = order.version, order.status
        edit(item)
        session.flush()
        total = compute_total(order_items(session, order.id))
        if write_if_unchanged(session, order, read_version, read_status, changed_by, total_cents=total):
            break
        logger.info(f"Order {order_id} changed while editing item {item_id}, re-reading")
    else:
        raise StaleOrderError(read_version, order.version)

    session.commit()
    session.refresh(order)
    return order


def update_order_item(
    session: Session,
    restaurant_id: str,
    order_id: str,
    item_id: str,
    quantity: int | None = None,
    special_instructions: str | None = None,
    changed_by: str | None = None,
    expected_version: int | None = None,
) -> models.Order:
    """Change an item's quantity or instructions. A quantity of 0 or less removes the line."""
    if quantity is not None and quantity <= 0:
        return remove_order_item(
            session, restaurant_id, order_id, item_id,
            changed_by=changed_by, expected_version=expected_version,
        )

    def edit(item: models.OrderItem) -> None:
        if quantity is not None:
            item.quantity = quantity
        if special_instructions is not None:
            item.special_instructions = special_instructions.strip() or None
        item.updated_by = changed_by
        item.updated_at = _now()
        session.add(item)

    order = _edit_item(session, restaurant_id, order_id, item_id, edit, changed_by, expected_version)
    publish_order_change(restaurant_id, "item_updated", order.id, order.table_id, order.status.value)
    return order


def remove_order_item(
    session: Session,
    restaurant_id: str,
    order_id: str,
    item_id: str,
    changed_by: str | None = None,
    expected_version: int | None = None,
) -> models.Order:
    """Delete one line. Removing the last line leaves an empty order in place."""
    order = _edit_item(session, restaurant_id, order_id, item_id, session.delete, changed_by, expected_version)

    logger.info(f"Item {item_id} removed from order {order.id}")
    publish_order_change(restaurant_id, "item_removed", order.id, order.table_id, order.status.value)
    return order


def active_orders(session: Session, restaurant_id: str) -> list[models.Order]:
    """Orders still being worked (PENDING, PREPARING, READY), oldest first."""
    return session.exec(
        select(models.Order)
        .where(
            models.Order.restaurant_id == restaurant_id,
            models.Order.status.in_(ACTIVE_STATUSES),
        )
        .order_by(models.Order.created_at)
    ).all()


def status_history(session: Session, order_id: str) -> list[models.OrderStatusHistory]:
    return session.exec(
        select(models.OrderStatusHistory)
        .where(models.OrderStatusHistory.order_id == order_id)
        .order_by(models.OrderStatusHistory.created_at)
    ).all()
