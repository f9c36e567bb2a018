from enum import Enum
from typing import Iterable

from .settings import settings


class UserRole(str, Enum):
    OWNER = "OWNER"
    KITCHEN = "KITCHEN"
    WAITSTAFF = "WAITSTAFF"
    BARTENDER = "BARTENDER"


STAFF_ROLES = (UserRole.KITCHEN, UserRole.WAITSTAFF, UserRole.BARTENDER)


# Required role(s) per staff-facing view
VIEW_ROLES: dict[str, tuple[UserRole, ...]] = {
    "kitchen": (UserRole.KITCHEN,),
    "bar": (UserRole.BARTENDER,),
    "wait": (UserRole.WAITSTAFF,),
    "dashboard": (UserRole.OWNER,),
    "analytics": (UserRole.OWNER,),
    "staff": (UserRole.OWNER,),
    "tables": (UserRole.OWNER,),
    "settings": (UserRole.OWNER,),
    "menu": (UserRole.OWNER,),
}

_HOME_PATHS = {
    UserRole.OWNER: "/dashboard",
    UserRole.KITCHEN: "/kitchen",
    UserRole.WAITSTAFF: "/wait",
    UserRole.BARTENDER: "/bar",
}


def _as_role(value: "UserRole | str") -> UserRole | None:
    try:
        return UserRole(value)
    except ValueError:
        return None


def can_access(user_role: "UserRole | str", required: "UserRole | str | Iterable[UserRole | str]") -> bool:
    """Check a role against the role(s) a view requires. OWNER passes every check."""
    role = _as_role(user_role)
    if role is None:
        return False
    if role == UserRole.OWNER:
        return True

    if isinstance(required, (str, UserRole)):
        required = [required]
    return role in {_as_role(r) for r in required}


def can_access_view(user_role: "UserRole | str", view: str) -> bool:
    """Unknown views are closed to everyone but the owner."""
    return can_access(user_role, VIEW_ROLES.get(view, (UserRole.OWNER,)))


def home_path(user_role: "UserRole | str | None") -> str:
    role = _as_role(user_role) if user_role is not None else None
    return _HOME_PATHS.get(role, settings.login_path)
