import logging
from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import models, order_lifecycle, security
from .analytics_routes import router as analytics_router
from .db import check_db_connection, create_db_and_tables, get_session
from .menu_routes import router as menu_router
from .models import ACTIVE_STATUSES
from .orders_routes import router as orders_router, serialize_order
from .permissions import UserRole, home_path
from .qr import QRGenerationError, build_order_url, generate_table_qr, render_qr_png
from .settings import settings
from .staff_routes import router as staff_router
from .table_tokens import decode_table_token
from .validation import validate_color, validate_restaurant

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

INVALID_TOKEN_DETAIL = "Invalid or expired QR code. Please scan a new QR code."


app = FastAPI(
    title="Tabletop API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Parse CORS origins from environment (comma-separated)
cors_origins_list = [
    origin.strip()
    for origin in settings.cors_origins.split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(menu_router, tags=["Menu"])
app.include_router(orders_router, tags=["Orders"])
app.include_router(staff_router, tags=["Staff"])
app.include_router(analytics_router, tags=["Analytics"])


@app.on_event("startup")
def on_startup() -> None:
    logger.info("Starting application...")
    create_db_and_tables()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/health/db")
def health_db() -> dict:
    """Check database connection."""
    try:
        check_db_connection()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        raise HTTPException(status_code=503, detail=f"Database error: {e}")
    return {"status": "ok", "database": "connected"}


# ============ AUTH ============

@app.post("/register")
def register(
    data: models.RestaurantRegister,
    session: Session = Depends(get_session)
) -> dict:
    """Create a restaurant together with its owner account."""
    result = validate_restaurant(data.restaurant_name, data.slug, data.description)
    if not result.is_valid:
        raise HTTPException(status_code=400, detail={"errors": result.errors})

    email = data.email.strip().lower()
    if session.exec(select(models.User).where(models.User.email == email)).first():
        raise HTTPException(status_code=400, detail="Email already registered")
    if session.exec(select(models.Restaurant).where(models.Restaurant.slug == data.slug)).first():
        raise HTTPException(
            status_code=400,
            detail={"errors": [{"field": "slug", "message": "URL slug is already taken"}]},
        )

    user = models.User(email=email, hashed_password=security.get_password_hash(data.password))
    restaurant = models.Restaurant(
        name=data.restaurant_name.strip(),
        slug=data.slug,
        description=(data.description or "").strip() or None,
        owner_id=user.id,
    )
    profile = models.Profile(
        user_id=user.id,
        restaurant_id=restaurant.id,
        role=UserRole.OWNER,
        name=data.name,
        email=email,
    )
    try:
        # Flush in foreign key order
        session.add(user)
        session.flush()
        session.add(restaurant)
        session.flush()
        session.add(profile)
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning(f"Registration failed for {email}: {e}")
        raise HTTPException(status_code=400, detail="Restaurant could not be created")

    logger.info(f"Registered restaurant {restaurant.slug} for {email}")
    return {
        "status": "created",
        "restaurant_id": restaurant.id,
        "slug": restaurant.slug,
        "email": email,
    }


@app.post("/token")
def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    session: Session = Depends(get_session)
):
    email = form_data.username.strip().lower()
    user = session.exec(select(models.User).where(models.User.email == email)).first()

    if not user or not security.verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    profile = session.exec(select(models.Profile).where(models.Profile.user_id == user.id)).first()
    if not profile:
        raise HTTPException(status_code=403, detail="No restaurant profile for this account")

    access_token = security.create_access_token(
        data={
            "sub": user.email,
            "restaurant_id": profile.restaurant_id,
            "role": profile.role.value,
            "token_version": user.token_version,
        },
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes)
    )

    response = JSONResponse(content={
        "status": "success",
        "access_token": access_token,
        "token_type": "bearer",
        "role": profile.role.value,
        "restaurant_id": profile.restaurant_id,
        "redirect": home_path(profile.role),
    })
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
        max_age=settings.access_token_expire_minutes * 60
    )
    return response


@app.post("/logout")
def logout():
    response = JSONResponse(content={"status": "success", "message": "Logged out"})
    response.delete_cookie(key="access_token", path="/")
    return response


@app.get("/users/me")
def read_users_me(
    profile: security.CurrentProfile,
    session: Session = Depends(get_session)
) -> dict:
    restaurant = session.get(models.Restaurant, profile.restaurant_id)
    return {
        "id": profile.user_id,
        "email": profile.email,
        "name": profile.name,
        "role": profile.role.value,
        "restaurant_id": profile.restaurant_id,
        "restaurant": restaurant.model_dump() if restaurant else None,
        "home": home_path(profile.role),
    }


# ============ RESTAURANT SETTINGS ============

@app.get("/restaurant/settings")
def get_restaurant_settings(
    profile: security.OwnerProfile,
    session: Session = Depends(get_session)
) -> models.Restaurant:
    restaurant = session.get(models.Restaurant, profile.restaurant_id)
    if not restaurant:
        raise HTTPException(status_code=404, detail="Restaurant not found")
    return restaurant


@app.put("/restaurant/settings")
def update_restaurant_settings(
    update: models.RestaurantUpdate,
    profile: security.OwnerProfile,
    session: Session = Depends(get_session)
) -> models.Restaurant:
    restaurant = session.get(models.Restaurant, profile.restaurant_id)
    if not restaurant:
        raise HTTPException(status_code=404, detail="Restaurant not found")

    name = update.name if update.name is not None else restaurant.name
    result = validate_restaurant(name, restaurant.slug, update.description)
    result.errors.extend(validate_color(update.primary_color).errors)
    if not result.is_valid:
        raise HTTPException(status_code=400, detail={"errors": result.errors})

    if update.name is not None:
        restaurant.name = update.name.strip()
    if update.description is not None:
        restaurant.description = update.description.strip() or None
    if update.primary_color is not None:
        restaurant.primary_color = update.primary_color or None
    restaurant.updated_at = datetime.now(timezone.utc)

    session.add(restaurant)
    session.commit()
    session.refresh(restaurant)
    return restaurant


# ============ TABLES ============

def _get_table(session: Session, restaurant_id: str, table_id: str) -> models.Table:
    table = session.exec(
        select(models.Table).where(
            models.Table.id == table_id,
            models.Table.restaurant_id == restaurant_id
        )
    ).first()
    if not table:
        raise HTTPException(status_code=404, detail="Table not found")
    return table


def _issue_table_token(session: Session, table: models.Table) -> dict:
    try:
        token, _ = generate_table_qr(table.id, table.restaurant_id, table.name, settings.public_base_url)
    except QRGenerationError as e:
        # Table keeps its previous token; the owner can regenerate
        raise HTTPException(status_code=502, detail=str(e))

    table.token = token
    table.qr_generated_at = datetime.now(timezone.utc)
    session.add(table)
    session.commit()
    session.refresh(table)
    return _table_dict(table)


def _table_dict(table: models.Table) -> dict:
    data = table.model_dump()
    data["order_url"] = build_order_url(table.token, settings.public_base_url) if table.token else None
    return data


@app.get("/tables")
def list_tables(
    profile: security.OwnerProfile,
    session: Session = Depends(get_session)
) -> list[dict]:
    tables = session.exec(
        select(models.Table)
        .where(models.Table.restaurant_id == profile.restaurant_id)
        .order_by(models.Table.name)
    ).all()
    return [_table_dict(table) for table in tables]


@app.post("/tables")
def create_table(
    table_data: models.TableCreate,
    profile: security.OwnerProfile,
    session: Session = Depends(get_session)
) -> dict:
    if not table_data.name.strip():
        raise HTTPException(
            status_code=400,
            detail={"errors": [{"field": "name", "message": "Table name is required"}]},
        )
    table = models.Table(name=table_data.name.strip(), restaurant_id=profile.restaurant_id)
    session.add(table)
    session.commit()
    session.refresh(table)
    return _issue_table_token(session, table)


@app.post("/tables/{table_id}/qr")
def regenerate_table_qr(
    table_id: str,
    profile: security.OwnerProfile,
    session: Session = Depends(get_session)
) -> dict:
    """Issue a new token. Previously printed codes keep working until they expire."""
    table = _get_table(session, profile.restaurant_id, table_id)
    return _issue_table_token(session, table)


@app.get("/tables/{table_id}/qr.png")
def get_table_qr_image(
    table_id: str,
    profile: security.OwnerProfile,
    session: Session = Depends(get_session)
) -> Response:
    table = _get_table(session, profile.restaurant_id, table_id)
    if not table.token:
        raise HTTPException(status_code=404, detail="No QR code generated for this table")
    try:
        png = render_qr_png(table.token, settings.public_base_url)
    except QRGenerationError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return Response(
        content=png,
        media_type="image/png",
        headers={"Content-Disposition": f'inline; filename="table-{table.name}-qr-code.png"'},
    )


@app.delete("/tables/{table_id}")
def delete_table(
    table_id: str,
    profile: security.OwnerProfile,
    session: Session = Depends(get_session)
) -> dict:
    table = _get_table(session, profile.restaurant_id, table_id)
    in_use = session.exec(
        select(models.Order).where(models.Order.table_id == table.id)
    ).first()
    if in_use:
        # Keep order history intact
        table.active = False
        session.add(table)
        session.commit()
        return {"status": "deactivated", "id": table_id}

    session.delete(table)
    session.commit()
    return {"status": "deleted", "id": table_id}


# ============ INTERNAL VALIDATION (token check for services without the codec) ============

@app.get("/internal/validate-table/{table_token}")
def validate_table_token(table_token: str) -> dict:
    """Payload-only check, no database lookup."""
    payload = decode_table_token(table_token)
    if not payload:
        raise HTTPException(status_code=404, detail=INVALID_TOKEN_DETAIL)
    return {
        "table_id": payload.table_id,
        "restaurant_id": payload.restaurant_id,
        "valid": True
    }


# ============ PUBLIC MENU ============

def _menu_for(session: Session, restaurant: models.Restaurant, include_unavailable: bool = False) -> dict:
    categories = session.exec(
        select(models.Category)
        .where(models.Category.restaurant_id == restaurant.id)
        .order_by(models.Category.sort_order, models.Category.name)
    ).all()
    statement = select(models.MenuItem).where(models.MenuItem.restaurant_id == restaurant.id)
    if not include_unavailable:
        statement = statement.where(models.MenuItem.available == True)  # noqa: E712
    items = session.exec(statement.order_by(models.MenuItem.name)).all()

    return {
        "restaurant": {
            "id": restaurant.id,
            "name": restaurant.name,
            "slug": restaurant.slug,
            "description": restaurant.description,
            "primary_color": restaurant.primary_color,
        },
        "categories": [
            {
                "id": category.id,
                "name": category.name,
                "sort_order": category.sort_order,
                "items": [
                    {
                        "id": item.id,
                        "name": item.name,
                        "description": item.description,
                        "price_cents": item.price_cents,
                        "image_url": item.image_url,
                        "sold_out": item.sold_out,
                    }
                    for item in items if item.category_id == category.id
                ],
            }
            for category in categories
        ],
    }


@app.get("/menu/{slug}")
def get_public_menu(slug: str, session: Session = Depends(get_session)) -> dict:
    """Public read-only menu by restaurant slug."""
    restaurant = session.exec(select(models.Restaurant).where(models.Restaurant.slug == slug)).first()
    if not restaurant:
        raise HTTPException(status_code=404, detail="Restaurant not found")
    return _menu_for(session, restaurant)


def _table_from_token(session: Session, token: str) -> tuple[models.Restaurant, models.Table]:
    payload = decode_table_token(token)
    if not payload:
        raise HTTPException(status_code=404, detail=INVALID_TOKEN_DETAIL)

    restaurant = session.get(models.Restaurant, payload.restaurant_id)
    table = session.exec(
        select(models.Table).where(
            models.Table.id == payload.table_id,
            models.Table.restaurant_id == payload.restaurant_id,
        )
    ).first()
    if not restaurant or not table or not table.active:
        logger.info(f"Token for unknown table {payload.table_id} in restaurant {payload.restaurant_id}")
        raise HTTPException(status_code=404, detail=INVALID_TOKEN_DETAIL)
    return restaurant, table


@app.get("/order/{table_token}")
def get_table_menu(table_token: str, session: Session = Depends(get_session)) -> dict:
    """Public endpoint - menu for the table a QR code points at."""
    restaurant, table = _table_from_token(session, table_token)
    menu = _menu_for(session, restaurant)
    menu["table"] = {"id": table.id, "name": table.name}
    return menu


@app.post("/order/{table_token}")
def place_order(
    table_token: str,
    order_data: models.OrderCreate,
    session: Session = Depends(get_session)
) -> dict:
    """Public endpoint - place an order for the scanned table."""
    restaurant, table = _table_from_token(session, table_token)
    try:
        order = order_lifecycle.create_order(
            session,
            restaurant.id,
            order_data.items,
            table_id=table.id,
            customer_session=order_data.customer_session,
            customer_name=order_data.customer_name,
            special_instructions=order_data.special_instructions,
        )
    except order_lifecycle.InvalidOrderError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "status": "created",
        "order": serialize_order(session, order, table),
    }


@app.get("/order/{table_token}/orders")
def get_table_orders(
    table_token: str,
    customer_session: str | None = None,
    session: Session = Depends(get_session),
) -> list[dict]:
    """
    Public endpoint - what the order status page refetches when the table
    socket signals a refresh. Without `customer_session` it lists the table's
    active orders; with it, every order of that session including finished ones.
    """
    restaurant, table = _table_from_token(session, table_token)
    statement = select(models.Order).where(
        models.Order.restaurant_id == restaurant.id,
        models.Order.table_id == table.id,
    )
    if customer_session:
        statement = statement.where(models.Order.customer_session == customer_session)
    else:
        statement = statement.where(models.Order.status.in_(ACTIVE_STATUSES))

    orders = []
    for order in session.exec(statement.order_by(models.Order.created_at)).all():
        data = serialize_order(session, order, table)
        # Not shared between diners at the table
        data.pop("customer_session")
        orders.append(data)
    return orders
