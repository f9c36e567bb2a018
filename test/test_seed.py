from sqlmodel import select

from tabletop import models
from tabletop.seeds.demo import DEMO_SLUG, seed_demo


def test_demo_seed_is_idempotent(session, redis_stub):
    first = seed_demo()
    second = seed_demo()

    assert first["created"] == 1
    assert second == {"restaurant_id": first["restaurant_id"], "created": 0}

    restaurant = session.exec(select(models.Restaurant).where(models.Restaurant.slug == DEMO_SLUG)).one()
    order = session.get(models.Order, first["order_id"])
    assert order.restaurant_id == restaurant.id
    assert order.total_cents == 2 * 1200 + 400
    assert redis_stub.events(f"orders:restaurant:{restaurant.id}")[0]["type"] == "new_order"
