"""
Seed a demo restaurant with staff, tables, a menu and one placed order.

Accounts (password "demo1234"):
    owner@demo.test     OWNER
    kitchen@demo.test   KITCHEN
    wait@demo.test      WAITSTAFF
    bar@demo.test       BARTENDER

Usage:
    python -m tabletop.seeds.demo
"""

from sqlmodel import Session, select

from tabletop import models, order_lifecycle
from tabletop.cart import Cart
from tabletop.db import create_db_and_tables, engine
from tabletop.permissions import UserRole
from tabletop.security import get_password_hash
from tabletop.settings import settings
from tabletop.table_tokens import encode_table_token

DEMO_SLUG = "demo-bistro"
DEMO_PASSWORD = "demo1234"

DEMO_STAFF = [
    ("owner@demo.test", "Olivia Owner", UserRole.OWNER),
    ("kitchen@demo.test", "Kai Kitchen", UserRole.KITCHEN),
    ("wait@demo.test", "Wren Wait", UserRole.WAITSTAFF),
    ("bar@demo.test", "Bo Bar", UserRole.BARTENDER),
]

DEMO_TABLES = ["T1", "T2", "T3", "T4", "Patio 1"]

# Category -> [(name, description, price_cents)]
DEMO_MENU = {
    "Starters": [
        ("Bruschetta", "Tomato, basil, garlic on toasted bread", 750),
        ("Soup of the Day", None, 650),
    ],
    "Mains": [
        ("Margherita Pizza", "Tomato, mozzarella, basil", 1200),
        ("Grilled Salmon", "With seasonal vegetables", 1850),
        ("Mushroom Risotto", None, 1450),
    ],
    "Desserts": [
        ("Tiramisu", None, 700),
    ],
    "Drinks": [
        ("House Lemonade", None, 400),
        ("Espresso", None, 250),
    ],
}


def seed_demo() -> dict[str, int | str]:
    """Create the demo restaurant unless it already exists."""
    create_db_and_tables()
    with Session(engine) as session:
        existing = session.exec(
            select(models.Restaurant).where(models.Restaurant.slug == DEMO_SLUG)
        ).first()
        if existing:
            print(f"Demo restaurant already exists: {existing.id}")
            return {"restaurant_id": existing.id, "created": 0}

        users = [
            (models.User(email=email, hashed_password=get_password_hash(DEMO_PASSWORD)), name, role)
            for email, name, role in DEMO_STAFF
        ]
        session.add_all([user for user, _, _ in users])
        session.flush()

        restaurant = models.Restaurant(
            name="Demo Bistro",
            slug=DEMO_SLUG,
            description="A small neighbourhood bistro",
            primary_color="#c45d35",
            owner_id=users[0][0].id,
        )
        session.add(restaurant)
        session.flush()

        session.add_all([
            models.Profile(
                user_id=user.id,
                restaurant_id=restaurant.id,
                role=role,
                name=name,
                email=user.email,
            )
            for user, name, role in users
        ])

        tables = []
        for table_name in DEMO_TABLES:
            table = models.Table(name=table_name, restaurant_id=restaurant.id)
            table.token = encode_table_token(table.id, restaurant.id, table.name)
            tables.append(table)
        session.add_all(tables)

        menu_items = []
        for sort_order, (category_name, items) in enumerate(DEMO_MENU.items()):
            category = models.Category(
                name=category_name, sort_order=sort_order, restaurant_id=restaurant.id
            )
            session.add(category)
            session.flush()
            for name, description, price_cents in items:
                item = models.MenuItem(
                    restaurant_id=restaurant.id,
                    category_id=category.id,
                    name=name,
                    description=description,
                    price_cents=price_cents,
                )
                session.add(item)
                menu_items.append(item)
        session.commit()

        # One order placed the way a customer's cart would submit it
        cart = Cart()
        cart.add(menu_items[2], quantity=2)
        cart.add(menu_items[6], special_instructions="No ice")
        order_data = cart.to_order_create(customer_name="Demo guest")
        order = order_lifecycle.create_order(
            session,
            restaurant.id,
            order_data.items,
            table_id=tables[0].id,
            customer_name=order_data.customer_name,
        )

        print(f"Created restaurant {restaurant.name} ({restaurant.id})")
        for table in tables:
            print(f"  {table.name}: {settings.public_base_url.rstrip('/')}/order/{table.token}")

        return {
            "restaurant_id": restaurant.id,
            "created": 1,
            "tables": len(tables),
            "menu_items": len(menu_items),
            "order_id": order.id,
        }


if __name__ == "__main__":
    print("Seeding demo restaurant...")
    result = seed_demo()
    print(f"\nComplete!")
    print(f"  Restaurant: {result['restaurant_id']}")
