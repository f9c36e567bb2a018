import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from . import models, security
from .db import get_session
from .permissions import UserRole
from .security import OwnerProfile
from .settings import settings
from .validation import validate_staff_user

logger = logging.getLogger(__name__)

router = APIRouter()


def _profile_dict(profile: models.Profile) -> dict:
    return {
        "id": profile.id,
        "user_id": profile.user_id,
        "restaurant_id": profile.restaurant_id,
        "email": profile.email,
        "name": profile.name,
        "role": profile.role.value,
        "created_at": profile.created_at.isoformat(),
    }


def _create_profile(session: Session, user: models.User, data: models.StaffCreate) -> models.Profile:
    profile = models.Profile(
        user_id=user.id,
        restaurant_id=data.restaurant_id,
        role=UserRole(data.role),
        name=(data.name or "").strip() or None,
        email=user.email,
    )
    session.add(profile)
    session.commit()
    session.refresh(profile)
    return profile


def _delete_user(session: Session, user_id: str) -> None:
    session.rollback()
    user = session.get(models.User, user_id)
    if user is not None:
        session.delete(user)
        session.commit()


@router.get("/staff")
def list_staff(
    profile: OwnerProfile,
    session: Session = Depends(get_session),
) -> list[dict]:
    profiles = session.exec(
        select(models.Profile)
        .where(models.Profile.restaurant_id == profile.restaurant_id)
        .order_by(models.Profile.created_at)
    ).all()
    return [_profile_dict(p) for p in profiles]


@router.post("/staff")
def create_staff(
    data: models.StaffCreate,
    profile: OwnerProfile,
    session: Session = Depends(get_session),
) -> dict:
    """
    Provision a staff account with a temporary password.

    The principal is created first, then the profile. If the profile cannot be
    written the principal is deleted again so no orphan login remains.
    """
    if data.restaurant_id != profile.restaurant_id:
        raise HTTPException(status_code=403, detail="Cannot add staff to another restaurant")

    result = validate_staff_user(data.email, data.role)
    if not result.is_valid:
        raise HTTPException(status_code=400, detail={"errors": result.errors})

    email = data.email.strip().lower()
    if session.exec(select(models.User).where(models.User.email == email)).first():
        raise HTTPException(status_code=400, detail="Email already registered")

    temp_password = security.generate_temp_password()
    user = models.User(email=email, hashed_password=security.get_password_hash(temp_password))
    try:
        session.add(user)
        session.commit()
        session.refresh(user)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to create user {email}: {e}")
        raise HTTPException(status_code=400, detail="Could not create user")

    user_id = user.id
    try:
        staff_profile = _create_profile(session, user, data)
    except SQLAlchemyError as e:
        logger.error(f"Profile creation failed for {email}, removing user {user_id}: {e}")
        _delete_user(session, user_id)
        raise HTTPException(status_code=400, detail="Could not create staff profile")

    logger.info(f"Provisioned {staff_profile.role.value} {email} for restaurant {profile.restaurant_id}")
    return {
        "profile": _profile_dict(staff_profile),
        "temp_password": temp_password,
        "login_url": settings.public_base_url.rstrip("/") + settings.login_path,
    }
