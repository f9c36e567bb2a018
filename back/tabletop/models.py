from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlmodel import Field, SQLModel

from .permissions import UserRole


def _uuid() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PREPARING = "PREPARING"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


ACTIVE_STATUSES = (OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY)


class Restaurant(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    name: str
    slug: str = Field(unique=True, index=True)
    description: str | None = None
    primary_color: str | None = None  # Hex color for the customer menu
    owner_id: str | None = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class User(SQLModel, table=True):
    """Authentication principal. Restaurant and role live on the linked Profile."""
    id: str = Field(default_factory=_uuid, primary_key=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    token_version: int = Field(default=0)  # Bump to revoke issued tokens
    created_at: datetime = Field(default_factory=_now)


class Profile(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    user_id: str = Field(foreign_key="user.id", unique=True, index=True)
    restaurant_id: str = Field(foreign_key="restaurant.id", index=True)
    role: UserRole
    name: str | None = None
    email: str  # Copy of the principal's email for staff listings
    created_at: datetime = Field(default_factory=_now)


class RestaurantMixin(SQLModel):
    restaurant_id: str = Field(foreign_key="restaurant.id", index=True)


class Category(RestaurantMixin, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    name: str
    sort_order: int = Field(default=0)
    created_at: datetime = Field(default_factory=_now)


class MenuItem(RestaurantMixin, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    category_id: str = Field(foreign_key="category.id", index=True)
    name: str
    description: str | None = None
    price_cents: int
    image_url: str | None = None
    available: bool = Field(default=True)
    sold_out: bool = Field(default=False)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class Table(RestaurantMixin, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    name: str  # e.g., "T1"
    token: str | None = None  # Latest issued QR token; older tokens stay valid until expiry
    active: bool = Field(default=True)
    qr_generated_at: datetime | None = None
    created_at: datetime = Field(default_factory=_now)


class Order(RestaurantMixin, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    table_id: str | None = Field(default=None, foreign_key="table.id", index=True)  # None for tabs
    customer_session: str = Field(index=True)
    customer_name: str | None = None
    status: OrderStatus = Field(default=OrderStatus.PENDING, index=True)
    total_cents: int = Field(default=0)
    special_instructions: str | None = None
    version: int = Field(default=1)  # Bumped by every guarded write in order_lifecycle
    created_by: str | None = None  # Profile id for staff-entered orders
    updated_by: str | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class OrderItem(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    order_id: str = Field(foreign_key="order.id", index=True)
    menu_item_id: str = Field(foreign_key="menuitem.id")
    menu_item_name: str  # Snapshot of the name at order time
    quantity: int
    price_cents: int  # Snapshot of price at order time
    special_instructions: str | None = None
    updated_by: str | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class OrderStatusHistory(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True)
    order_id: str = Field(foreign_key="order.id", index=True)
    old_status: OrderStatus | None = None
    new_status: OrderStatus
    changed_by: str | None = None
    created_at: datetime = Field(default_factory=_now)


# Request/Response Models
class RestaurantRegister(SQLModel):
    restaurant_name: str
    slug: str
    email: str
    password: str
    name: str | None = None
    description: str | None = None


class RestaurantUpdate(SQLModel):
    name: str | None = None
    description: str | None = None
    primary_color: str | None = None


class CategoryCreate(SQLModel):
    name: str
    sort_order: int | None = None


class MenuItemCreate(SQLModel):
    category_id: str
    name: str
    price_cents: int
    description: str | None = None
    image_url: str | None = None
    available: bool = True


class MenuItemUpdate(SQLModel):
    category_id: str | None = None
    name: str | None = None
    price_cents: int | None = None
    description: str | None = None
    image_url: str | None = None
    available: bool | None = None
    sold_out: bool | None = None


class TableCreate(SQLModel):
    name: str


class OrderItemCreate(SQLModel):
    menu_item_id: str
    quantity: int
    special_instructions: str | None = None


class OrderCreate(SQLModel):
    items: list[OrderItemCreate]
    special_instructions: str | None = None
    customer_session: str | None = None
    customer_name: str | None = None


class StaffOrderCreate(OrderCreate):
    table_id: str | None = None  # None opens a tab


class OrderStatusUpdate(SQLModel):
    status: OrderStatus
    expected_version: int | None = None


class OrderItemStaffUpdate(SQLModel):
    quantity: int | None = None
    special_instructions: str | None = None
    expected_version: int | None = None


class StaffCreate(SQLModel):
    email: str
    role: str
    restaurant_id: str
    name: str | None = None
