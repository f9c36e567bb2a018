import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Annotated

import bcrypt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlmodel import Session, select

from .db import get_session
from .models import Profile, User
from .permissions import UserRole, can_access
from .settings import settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"), hashed_password.encode("utf-8")
        )
    except (ValueError, TypeError):
        return False


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def generate_temp_password() -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "temp-" + "".join(secrets.choice(alphabet) for _ in range(8))


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict | None:
    """Return the claims of a valid access token, or None."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if payload.get("sub") is None or payload.get("restaurant_id") is None:
        return None
    return payload


async def get_token_from_cookie(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)]
) -> str:
    """
    Get token from cookie (primary) or Authorization header (fallback).
    """
    cookie_token = request.cookies.get("access_token")
    if cookie_token:
        return cookie_token

    if token:
        return token

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
    )


def get_current_user(
    token: Annotated[str, Depends(get_token_from_cookie)],
    session: Annotated[Session, Depends(get_session)],
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )
    payload = decode_access_token(token)
    if payload is None:
        raise credentials_exception

    user = session.exec(select(User).where(User.email == payload["sub"])).first()
    if user is None:
        raise credentials_exception

    # Token version check supports revocation
    if user.token_version != payload.get("token_version", 0):
        raise credentials_exception

    return user


def get_current_profile(
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_session)],
) -> Profile:
    profile = session.exec(select(Profile).where(Profile.user_id == current_user.id)).first()
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": "No restaurant profile", "redirect": settings.login_path},
        )
    return profile


class RoleChecker:
    """
    Access gate dependency: the caller's role must be one of `roles`
    (OWNER always passes). Failing callers are sent back to login.
    """

    def __init__(self, *roles: UserRole):
        self.roles = roles

    def __call__(
        self,
        profile: Annotated[Profile, Depends(get_current_profile)],
    ) -> Profile:
        if not can_access(profile.role, self.roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"message": "Not authorized", "redirect": settings.login_path},
            )
        return profile


CurrentProfile = Annotated[Profile, Depends(get_current_profile)]
OwnerProfile = Annotated[Profile, Depends(RoleChecker(UserRole.OWNER))]
