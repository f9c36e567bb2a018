"""
Table tokens embedded in QR codes.

A token is base64-encoded JSON: {"table_id", "restaurant_id", "table_name", "exp"}.
It is not signed. Anyone who knows the format can build one, so a token only
ever opens the public menu/ordering flow for a table, never a staff session.
"""
import base64
import binascii
import json
import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import unquote

from pydantic import BaseModel, ValidationError

from .settings import settings

logger = logging.getLogger(__name__)


class TableTokenPayload(BaseModel):
    table_id: str
    restaurant_id: str
    table_name: str
    exp: int  # Seconds since epoch

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.exp <= int(now.timestamp())


def encode_table_token(
    table_id: str,
    restaurant_id: str,
    table_name: str,
    now: datetime | None = None,
) -> str:
    now = now or datetime.now(timezone.utc)
    expires = now + timedelta(hours=settings.table_token_ttl_hours)
    payload = {
        "table_id": table_id,
        "restaurant_id": restaurant_id,
        "table_name": table_name,
        "exp": int(expires.timestamp()),
    }
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    # URL-safe alphabet so the token can sit in a path segment as-is
    return base64.urlsafe_b64encode(raw).decode("ascii")


def _b64decode(token: str) -> bytes:
    padded = token + "=" * (-len(token) % 4)
    if "-" in padded or "_" in padded:
        return base64.urlsafe_b64decode(padded)
    # Standard alphabet, as issued by older QR codes
    return base64.b64decode(padded, validate=True)


def decode_table_token(token: str | None, now: datetime | None = None) -> TableTokenPayload | None:
    """
    Decode a table token. Returns None for anything that is not a well-formed,
    unexpired token; never raises.
    """
    if not token:
        return None

    try:
        data = json.loads(_b64decode(unquote(token.strip())).decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        logger.info("Rejected malformed table token")
        return None

    if not isinstance(data, dict):
        return None
    for field in ("table_id", "restaurant_id", "table_name"):
        if not isinstance(data.get(field), str) or not data[field]:
            logger.info(f"Rejected table token missing {field}")
            return None

    try:
        payload = TableTokenPayload(**data)
    except (ValidationError, TypeError):
        logger.info("Rejected table token with invalid expiry")
        return None

    if payload.is_expired(now):
        logger.info(f"Rejected expired table token for table {payload.table_id}")
        return None

    return payload
