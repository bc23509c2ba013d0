"""
Field mapping — turn one remote company object into a ``company_data`` row.

None of the parsers raise: anything absent or malformed becomes ``None``.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def parse_number(value: Any) -> Optional[float]:
    """``"1250000.5"`` → 1250000.5; absent, blank or non-numeric → None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_int(value: Any) -> Optional[int]:
    number = parse_number(value)
    return int(number) if number is not None else None


def build_location(city: Optional[str], country: Optional[str]) -> Optional[str]:
    """Join as ``"Paris, France"`` when both are present, either one alone, else None."""
    city = city.strip() if isinstance(city, str) and city.strip() else None
    country = country.strip() if isinstance(country, str) and country.strip() else None
    if city and country:
        return f"{city}, {country}"
    return city or country


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse ISO-8601 strings (``Z`` suffix allowed) or epoch milliseconds.

    Naive values are taken as UTC.  Unparseable input → None.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().isdigit()):
            return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
        if not isinstance(value, str) or not value.strip():
            return None
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def map_company(
    remote: Dict[str, Any],
    *,
    user_id: str,
    source: str,
    synced_at: datetime,
) -> Optional[Dict[str, Any]]:
    """
    Map a HubSpot company object to the local schema.

    Returns ``None`` for objects without an id (they cannot be keyed).
    The full ``properties`` payload is kept verbatim for fields we do not
    map yet.
    """
    remote_id = _text(remote.get("id"))
    if remote_id is None:
        return None
    props = remote.get("properties") or {}
    if not isinstance(props, dict):
        props = {}

    return {
        "user_id": user_id,
        "remote_id": remote_id,
        "source": source,
        "name": _text(props.get("name")),
        "domain": _text(props.get("domain")),
        "industry": _text(props.get("industry")),
        "annual_revenue": parse_number(props.get("annualrevenue")),
        "size": parse_int(props.get("numberofemployees")),
        "location": build_location(props.get("city"), props.get("country")),
        "created_date": parse_timestamp(props.get("hs_created_date") or props.get("createdate")),
        "last_modified_date": parse_timestamp(props.get("hs_lastmodifieddate")),
        "properties": props,
        "synced_at": synced_at,
    }
