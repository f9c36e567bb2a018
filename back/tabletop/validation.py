import re
from dataclasses import dataclass, field

from .permissions import STAFF_ROLES

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
SLUG_RE = re.compile(r"^[a-z0-9-]+$")
HEX_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")
MAX_PRICE_CENTS = 999_999


@dataclass
class ValidationResult:
    errors: list[dict] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add(self, field_name: str, message: str) -> None:
        self.errors.append({"field": field_name, "message": message})


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email or ""))


def is_valid_slug(slug: str) -> bool:
    return bool(SLUG_RE.match(slug or "")) and 3 <= len(slug) <= 50


def is_valid_price(price_cents: int | None) -> bool:
    return isinstance(price_cents, int) and 0 <= price_cents <= MAX_PRICE_CENTS


def _length_ok(value: str, low: int, high: int) -> bool:
    return low <= len(value.strip()) <= high


def validate_restaurant(name: str | None, slug: str | None, description: str | None = None) -> ValidationResult:
    result = ValidationResult()
    if not (name or "").strip():
        result.add("name", "Restaurant name is required")
    elif not _length_ok(name, 2, 100):
        result.add("name", "Restaurant name must be between 2 and 100 characters")

    if not (slug or "").strip():
        result.add("slug", "URL slug is required")
    elif not is_valid_slug(slug):
        result.add("slug", "URL slug must be 3-50 lowercase letters, numbers, and hyphens")

    if description and not _length_ok(description, 0, 1000):
        result.add("description", "Description must be less than 1000 characters")
    return result


def validate_menu_item(
    name: str | None,
    price_cents: int | None,
    category_id: str | None,
    description: str | None = None,
) -> ValidationResult:
    result = ValidationResult()
    if not (name or "").strip():
        result.add("name", "Item name is required")
    elif not _length_ok(name, 2, 100):
        result.add("name", "Item name must be between 2 and 100 characters")

    if not is_valid_price(price_cents):
        result.add("price_cents", "Price must be between 0 and 9999.99")

    if description and not _length_ok(description, 0, 500):
        result.add("description", "Description must be less than 500 characters")

    if not (category_id or "").strip():
        result.add("category_id", "Category is required")
    return result


def validate_staff_user(email: str | None, role: str | None) -> ValidationResult:
    result = ValidationResult()
    if not (email or "").strip():
        result.add("email", "Email is required")
    elif not is_valid_email(email.strip()):
        result.add("email", "Please enter a valid email address")

    if role not in {r.value for r in STAFF_ROLES}:
        result.add("role", "Please select a valid role")
    return result


def validate_color(color: str | None) -> ValidationResult:
    result = ValidationResult()
    if color and not HEX_COLOR_RE.match(color):
        result.add("primary_color", "Color must be a hex value like #c45d35")
    return result
