"""Tolerant field extraction for upstream payloads."""

from __future__ import annotations

import re
from typing import Any, Mapping

RANGE_MARKERS = {"variable", "range", "open"}
DISCONTINUED_STATUSES = {"discontinued", "decommissioned", "retired"}


def first_present(raw: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return default


def to_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None


def rands_to_cents(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return round(float(value) * 100)
    except (TypeError, ValueError):
        return None


def to_float(value: Any, default: float | None = None) -> float | None:
    if value in (None, ""):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def cents_list(values: Any, *, convert=to_int) -> list[int]:
    if not isinstance(values, (list, tuple)):
        return []
    cents = (convert(v) for v in values)
    return [c for c in cents if c is not None and c > 0]


def is_active(raw: Mapping[str, Any]) -> bool:
    status = str(raw.get("status") or "").lower()
    return raw.get("isActive") is not False and status not in {"inactive"} | DISCONTINUED_STATUSES


def is_discontinued(raw: Mapping[str, Any]) -> bool:
    status = str(raw.get("status") or "").lower()
    return status in DISCONTINUED_STATUSES or raw.get("isDiscontinued") is True


def range_constraints(raw: Mapping[str, Any]) -> dict[str, Any]:
    marker = str(first_present(raw, "amountType", "priceType", default="")).lower()
    if marker in RANGE_MARKERS:
        return {"type": "range"}
    return {}


def provider_key(provider: str | None) -> str:
    return re.sub(r"[^a-z0-9]", "", (provider or "").lower())
