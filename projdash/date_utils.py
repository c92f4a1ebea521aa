"""Shared date normalization helpers."""
from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _format_datetime_utc(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt.isoformat().replace("+00:00", "Z")


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%Y-%m-%d %H:%M:%S %z", "%Y-%m-%d %H:%M:%S"):
        try:
            parsed = datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def utc_now_iso() -> str:
    return _format_datetime_utc(datetime.now(timezone.utc))


def epoch_to_iso(epoch: float) -> str:
    return _format_datetime_utc(datetime.fromtimestamp(float(epoch), timezone.utc))


def normalize_iso_date(value: Any) -> str:
    """Convert mixed date inputs into comparable UTC ISO strings."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return _format_datetime_utc(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        token = value.strip()
        if not token:
            return ""
        if _DATE_ONLY_RE.match(token):
            try:
                return date.fromisoformat(token).isoformat()
            except ValueError:
                return ""
        parsed_dt = _parse_datetime_token(token)
        if parsed_dt:
            return _format_datetime_utc(parsed_dt)
        return ""
    return ""


def iso_to_epoch(value: str) -> float:
    token = normalize_iso_date(value)
    if not token:
        return 0.0
    if _DATE_ONLY_RE.match(token):
        return datetime.fromisoformat(token).replace(tzinfo=timezone.utc).timestamp()
    parsed_dt = _parse_datetime_token(token)
    if not parsed_dt:
        return 0.0
    dt = parsed_dt if parsed_dt.tzinfo else parsed_dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).timestamp()
