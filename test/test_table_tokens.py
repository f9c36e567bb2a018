"""
Table tokens: encoding, decoding and rejection of anything malformed or expired.
"""
import base64
import json
from datetime import datetime, timedelta, timezone
from urllib.parse import quote

import pytest

from tabletop.table_tokens import TableTokenPayload, decode_table_token, encode_table_token

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _raw_token(payload, urlsafe: bool = False) -> str:
    raw = json.dumps(payload).encode("utf-8")
    encoder = base64.urlsafe_b64encode if urlsafe else base64.b64encode
    return encoder(raw).decode("ascii")


@pytest.mark.parametrize("table_name", ["T1", "Patio 4", "Terrasse Süd", "Bar / Window"])
def test_decode_returns_encoded_fields(table_name):
    token = encode_table_token("table-1", "restaurant-1", table_name, now=NOW)

    payload = decode_table_token(token, now=NOW)

    assert payload is not None
    assert payload.table_id == "table-1"
    assert payload.restaurant_id == "restaurant-1"
    assert payload.table_name == table_name


def test_token_expires_after_24_hours():
    token = encode_table_token("table-1", "restaurant-1", "T1", now=NOW)

    payload = decode_table_token(token, now=NOW)
    assert payload.expires_at == NOW + timedelta(hours=24)

    assert decode_table_token(token, now=NOW + timedelta(hours=23, minutes=59)) is not None
    assert decode_table_token(token, now=NOW + timedelta(hours=24)) is None


def test_token_is_url_safe():
    token = encode_table_token("a" * 40, "b" * 40, "Table ??>>", now=NOW)
    assert "/" not in token
    assert "+" not in token


def test_standard_base64_token_is_accepted():
    exp = int((NOW + timedelta(hours=1)).timestamp())
    token = _raw_token({"table_id": "t", "restaurant_id": "r", "table_name": "T1", "exp": exp})

    payload = decode_table_token(token, now=NOW)

    assert payload == TableTokenPayload(table_id="t", restaurant_id="r", table_name="T1", exp=exp)


def test_url_quoted_token_is_accepted():
    token = encode_table_token("table-1", "restaurant-1", "T1", now=NOW)
    assert decode_table_token(quote(token, safe=""), now=NOW) is not None


def _valid_token() -> str:
    return encode_table_token("table-1", "restaurant-1", "T1", now=NOW)


@pytest.mark.parametrize("token", [
    None,
    "",
    "   ",
    "not-a-token",
    "%%%%",
    _valid_token()[:-6],
    "A" + _valid_token()[1:],
    base64.b64encode(b"hello world").decode(),
    _raw_token(["table-1", "restaurant-1"]),
    _raw_token({"restaurant_id": "r", "table_name": "T1", "exp": 9999999999}),
    _raw_token({"table_id": "", "restaurant_id": "r", "table_name": "T1", "exp": 9999999999}),
    _raw_token({"table_id": 5, "restaurant_id": "r", "table_name": "T1", "exp": 9999999999}),
    _raw_token({"table_id": "t", "restaurant_id": "r", "table_name": "T1", "exp": "soon"}),
    _raw_token({"table_id": "t", "restaurant_id": "r", "table_name": "T1"}),
])
def test_invalid_tokens_are_rejected(token):
    assert decode_table_token(token, now=NOW) is None
