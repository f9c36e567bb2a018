import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from . import models
from .db import get_session
from .security import OwnerProfile
from .validation import validate_menu_item

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_category(session: Session, restaurant_id: str, category_id: str) -> models.Category:
    category = session.exec(
        select(models.Category).where(
            models.Category.id == category_id,
            models.Category.restaurant_id == restaurant_id,
        )
    ).first()
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


def _get_menu_item(session: Session, restaurant_id: str, item_id: str) -> models.MenuItem:
    item = session.exec(
        select(models.MenuItem).where(
            models.MenuItem.id == item_id,
            models.MenuItem.restaurant_id == restaurant_id,
        )
    ).first()
    if not item:
        raise HTTPException(status_code=404, detail="Menu item not found")
    return item


# ============ CATEGORIES ============

@router.get("/categories")
def list_categories(
    profile: OwnerProfile,
    session: Session = Depends(get_session),
) -> list[models.Category]:
    return session.exec(
        select(models.Category)
        .where(models.Category.restaurant_id == profile.restaurant_id)
        .order_by(models.Category.sort_order, models.Category.name)
    ).all()


@router.post("/categories")
def create_category(
    category_data: models.CategoryCreate,
    profile: OwnerProfile,
    session: Session = Depends(get_session),
) -> models.Category:
    name = category_data.name.strip()
    if not name:
        raise HTTPException(
            status_code=400,
            detail={"errors": [{"field": "name", "message": "Category name is required"}]},
        )

    sort_order = category_data.sort_order
    if sort_order is None:
        # Append after the existing categories
        existing = session.exec(
            select(models.Category).where(models.Category.restaurant_id == profile.restaurant_id)
        ).all()
        sort_order = max((c.sort_order for c in existing), default=-1) + 1

    category = models.Category(name=name, sort_order=sort_order, restaurant_id=profile.restaurant_id)
    session.add(category)
    session.commit()
    session.refresh(category)
    return category


@router.delete("/categories/{category_id}")
def delete_category(
    category_id: str,
    profile: OwnerProfile,
    session: Session = Depends(get_session),
) -> dict:
    category = _get_category(session, profile.restaurant_id, category_id)
    in_use = session.exec(
        select(models.MenuItem).where(models.MenuItem.category_id == category.id)
    ).first()
    if in_use:
        raise HTTPException(status_code=409, detail="Category still has menu items")

    session.delete(category)
    session.commit()
    return {"status": "deleted", "id": category_id}


# ============ MENU ITEMS ============

@router.get("/menu-items")
def list_menu_items(
    profile: OwnerProfile,
    session: Session = Depends(get_session),
) -> list[models.MenuItem]:
    """All items including unavailable and sold out ones."""
    return session.exec(
        select(models.MenuItem)
        .where(models.MenuItem.restaurant_id == profile.restaurant_id)
        .order_by(models.MenuItem.name)
    ).all()


@router.post("/menu-items")
def create_menu_item(
    item_data: models.MenuItemCreate,
    profile: OwnerProfile,
    session: Session = Depends(get_session),
) -> models.MenuItem:
    result = validate_menu_item(
        item_data.name, item_data.price_cents, item_data.category_id, item_data.description
    )
    if not result.is_valid:
        raise HTTPException(status_code=400, detail={"errors": result.errors})
    _get_category(session, profile.restaurant_id, item_data.category_id)

    item = models.MenuItem(
        restaurant_id=profile.restaurant_id,
        category_id=item_data.category_id,
        name=item_data.name.strip(),
        description=(item_data.description or "").strip() or None,
        price_cents=item_data.price_cents,
        image_url=item_data.image_url,
        available=item_data.available,
    )
    session.add(item)
    session.commit()
    session.refresh(item)
    logger.info(f"Menu item {item.name} created for restaurant {profile.restaurant_id}")
    return item


@router.put("/menu-items/{item_id}")
def update_menu_item(
    item_id: str,
    item_update: models.MenuItemUpdate,
    profile: OwnerProfile,
    session: Session = Depends(get_session),
) -> models.MenuItem:
    item = _get_menu_item(session, profile.restaurant_id, item_id)
    update = item_update.model_dump(exclude_unset=True)

    result = validate_menu_item(
        update.get("name", item.name),
        update.get("price_cents", item.price_cents),
        update.get("category_id", item.category_id),
        update.get("description", item.description),
    )
    if not result.is_valid:
        raise HTTPException(status_code=400, detail={"errors": result.errors})
    if "category_id" in update:
        _get_category(session, profile.restaurant_id, update["category_id"])

    for key, value in update.items():
        if isinstance(value, str):
            value = value.strip() or None if key in ("description", "image_url") else value.strip()
        setattr(item, key, value)
    item.updated_at = datetime.now(timezone.utc)

    session.add(item)
    session.commit()
    session.refresh(item)
    return item


@router.delete("/menu-items/{item_id}")
def delete_menu_item(
    item_id: str,
    profile: OwnerProfile,
    session: Session = Depends(get_session),
) -> dict:
    item = _get_menu_item(session, profile.restaurant_id, item_id)
    ordered = session.exec(
        select(models.OrderItem).where(models.OrderItem.menu_item_id == item.id)
    ).first()
    if ordered:
        # Past orders reference it; hide it from the menu instead
        item.available = False
        item.updated_at = datetime.now(timezone.utc)
        session.add(item)
        session.commit()
        return {"status": "hidden", "id": item_id}

    session.delete(item)
    session.commit()
    return {"status": "deleted", "id": item_id}
