"""
Customer cart and client session state.

State is held in explicit objects that the caller owns and passes around,
and survives reloads through a JSON round trip (`dumps` / `loads`).
"""
from sqlmodel import Field, SQLModel

from . import models


class CartMenuItem(SQLModel):
    """The menu item fields a cart needs, captured when the item is added."""
    id: str
    name: str
    price_cents: int
    category_id: str | None = None

    @classmethod
    def from_menu_item(cls, menu_item: models.MenuItem) -> "CartMenuItem":
        return cls(
            id=menu_item.id,
            name=menu_item.name,
            price_cents=menu_item.price_cents,
            category_id=menu_item.category_id,
        )


class CartItem(SQLModel):
    menu_item: CartMenuItem
    quantity: int = 1
    special_instructions: str | None = None

    @property
    def line_total_cents(self) -> int:
        return self.menu_item.price_cents * self.quantity


class Cart(SQLModel):
    """Lines keyed by menu item id. Quantities never drop below 1; a line at 0 is removed."""
    items: list[CartItem] = Field(default_factory=list)

    def _find(self, menu_item_id: str) -> CartItem | None:
        for item in self.items:
            if item.menu_item.id == menu_item_id:
                return item
        return None

    def add(
        self,
        menu_item: "CartMenuItem | models.MenuItem",
        quantity: int = 1,
        special_instructions: str | None = None,
    ) -> CartItem:
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        if isinstance(menu_item, models.MenuItem):
            menu_item = CartMenuItem.from_menu_item(menu_item)

        existing = self._find(menu_item.id)
        if existing:
            existing.quantity += quantity
            if special_instructions is not None:
                existing.special_instructions = special_instructions
            return existing

        item = CartItem(menu_item=menu_item, quantity=quantity, special_instructions=special_instructions)
        self.items.append(item)
        return item

    def remove(self, menu_item_id: str) -> None:
        self.items = [item for item in self.items if item.menu_item.id != menu_item_id]

    def set_quantity(self, menu_item_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove(menu_item_id)
            return
        item = self._find(menu_item_id)
        if item:
            item.quantity = quantity

    def increment(self, menu_item_id: str) -> None:
        item = self._find(menu_item_id)
        if item:
            item.quantity += 1

    def decrement(self, menu_item_id: str) -> None:
        item = self._find(menu_item_id)
        if item:
            self.set_quantity(menu_item_id, item.quantity - 1)

    def update_instructions(self, menu_item_id: str, special_instructions: str | None) -> None:
        item = self._find(menu_item_id)
        if item:
            item.special_instructions = (special_instructions or "").strip() or None

    def clear(self) -> None:
        self.items = []

    @property
    def total_cents(self) -> int:
        return sum(item.line_total_cents for item in self.items)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def is_empty(self) -> bool:
        return not self.items

    def to_order_items(self) -> list[models.OrderItemCreate]:
        return [
            models.OrderItemCreate(
                menu_item_id=item.menu_item.id,
                quantity=item.quantity,
                special_instructions=item.special_instructions,
            )
            for item in self.items
        ]

    def to_order_create(
        self,
        special_instructions: str | None = None,
        customer_session: str | None = None,
        customer_name: str | None = None,
    ) -> models.OrderCreate:
        return models.OrderCreate(
            items=self.to_order_items(),
            special_instructions=special_instructions,
            customer_session=customer_session,
            customer_name=customer_name,
        )

    def dumps(self) -> str:
        return self.model_dump_json()

    @classmethod
    def loads(cls, data: str | None) -> "Cart":
        if not data:
            return cls()
        return cls.model_validate_json(data)


class AppState(SQLModel):
    """
    Client state for one browser session: who is signed in, which table the
    customer scanned, and the cart. Only these fields are persisted.
    """
    user_id: str | None = None
    role: str | None = None
    restaurant_id: str | None = None
    table_token: str | None = None
    cart: Cart = Field(default_factory=Cart)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def sign_in(self, user_id: str, role: str, restaurant_id: str) -> None:
        self.user_id = user_id
        self.role = role
        self.restaurant_id = restaurant_id

    def sign_out(self) -> None:
        self.user_id = None
        self.role = None
        self.restaurant_id = None

    def scan_table(self, token: str) -> None:
        """A different table starts with an empty cart."""
        if token != self.table_token:
            self.cart.clear()
        self.table_token = token

    def order_placed(self) -> None:
        self.cart.clear()

    def dumps(self) -> str:
        return self.model_dump_json()

    @classmethod
    def loads(cls, data: str | None) -> "AppState":
        if not data:
            return cls()
        return cls.model_validate_json(data)
