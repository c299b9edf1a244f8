from __future__ import annotations

from typing import Any

from storefront.errors import InvalidRequest


# Maximum quantity or amount accepted from clients: $9,999,999.99 (999,999,999 cents)
MAX_INT_INPUT = 999_999_999

ADDRESS_FIELDS = (
    "full_name", "line1", "line2", "city", "region", "postal_code", "country", "phone", "email",
)


def coerce_int(key: str, value: Any, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion for JSON/query input.

    Rejects bools, floats, decimals and scientific notation so "12.5" or "1e3"
    never silently becomes a quantity or an amount in cents.
    """
    if isinstance(value, bool):
        raise InvalidRequest(f"{key} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise InvalidRequest(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise InvalidRequest(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise InvalidRequest(f"{key} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise InvalidRequest(f"{key} must be an integer")
    elif isinstance(value, float):
        raise InvalidRequest(f"{key} must be an integer, not a decimal")
    else:
        raise InvalidRequest(f"{key} must be an integer")

    if abs(result) > MAX_INT_INPUT:
        raise InvalidRequest(f"{key} is out of range")
    if minimum is not None and result < minimum:
        raise InvalidRequest(f"{key} must be >= {minimum}")
    return result


def json_object(body: Any) -> dict:
    """Request body as a dict; a missing body is empty, arrays and scalars are rejected."""
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return body


def require_int(data: dict, key: str, *, minimum: int | None = None) -> int:
    if data.get(key) is None:
        raise InvalidRequest(f"{key} is required")
    return coerce_int(key, data[key], minimum=minimum)


def optional_int(data: dict, key: str, *, minimum: int | None = None) -> int | None:
    value = data.get(key)
    if value is None or value == "":
        return None
    return coerce_int(key, value, minimum=minimum)


def optional_str(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidRequest(f"{key} must be a string")
    return value.strip() or None


def normalize_address(value: Any, key: str = "address") -> dict | None:
    """
    Keep the known address fields; country/region are upper-cased.

    Accepts country_code/region_code as aliases.
    """
    if value is None:
        return None
    if not isinstance(value, dict):
        raise InvalidRequest(f"{key} must be an object")

    address = {}
    for field in ADDRESS_FIELDS:
        raw = value.get(field)
        if raw is None and field in ("country", "region"):
            raw = value.get(f"{field}_code")
        if raw is None:
            continue
        if not isinstance(raw, str):
            raise InvalidRequest(f"{key}.{field} must be a string")
        raw = raw.strip()
        if raw:
            address[field] = raw.upper() if field in ("country", "region") else raw
    return address


def address_country_region(address: dict | None) -> tuple[str | None, str | None]:
    if not address:
        return None, None
    country = address.get("country") or address.get("country_code")
    region = address.get("region") or address.get("region_code")
    return (
        country.strip().upper() if country else None,
        region.strip().upper() if region else None,
    )
