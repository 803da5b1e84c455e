from __future__ import annotations

import calendar
import re
from datetime import date, datetime, time, timedelta
from typing import Any

from flask import abort, g, jsonify, request
from sqlalchemy.orm import Query

from app.academy.models import User

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


class ConflictError(ValueError):
    """A write that collides with an existing row (e.g. duplicate email); maps to 409."""


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def json_error(message: str, status: int = 400, **extra: Any):
    body: dict[str, Any] = {"error": message}
    body.update(extra)
    return jsonify(body), status


def get_json_payload() -> dict:
    """Request body as a dict. Anything else (array, scalar, invalid JSON) is a 400."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        abort(400, description="Request body must be a JSON object.")
    payload.pop("csrf_token", None)
    return payload


def payload_text(payload: dict, key: str) -> str:
    """String field of a JSON body; missing or null is "". Any other type is a 400."""
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        abort(400, description=f"{key} must be a string.")
    return value


def parse_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    v = str(value).strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return None


def parse_int(value: Any, default: int, *, minimum: int | None = None, maximum: int | None = None) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        n = default
    if minimum is not None and n < minimum:
        n = minimum
    if maximum is not None and n > maximum:
        n = maximum
    return n


def parse_page_args(*, default_limit: int, max_limit: int = 100) -> tuple[int, int]:
    page = parse_int(request.args.get("page"), 1, minimum=1)
    limit = parse_int(request.args.get("limit"), default_limit, minimum=1, maximum=max_limit)
    return page, limit


def paginate(q: Query, page: int, limit: int) -> tuple[list, int]:
    total = q.order_by(None).count()
    items = q.offset((page - 1) * limit).limit(limit).all()
    return items, total


def total_pages(total: int, limit: int) -> int:
    return (total + limit - 1) // limit if limit else 0


def iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def month_starts(now: datetime, months: int = 12) -> list[datetime]:
    """First day of each of the last `months` months, oldest first, ending with the current month."""
    year, month = now.year, now.month
    out: list[datetime] = []
    for _ in range(months):
        out.append(datetime(year, month, 1))
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return list(reversed(out))


def month_key(dt: datetime) -> str:
    """e.g. 'Jan 25'."""
    return dt.strftime("%b %y")


ANALYTICS_RANGES = ("7d", "30d", "90d", "6m", "1y")


def months_before(dt: datetime, months: int) -> datetime:
    """Same day `months` calendar months earlier, clamped to the month's last day."""
    index = dt.year * 12 + (dt.month - 1) - months
    year, month0 = divmod(index, 12)
    day = min(dt.day, calendar.monthrange(year, month0 + 1)[1])
    return dt.replace(year=year, month=month0 + 1, day=day)


def parse_analytics_window(args: Any, now: datetime) -> tuple[datetime, datetime]:
    """
    Reporting window from query args:
    - startDate / endDate: YYYY-MM-DD, whole days, inclusive
    - dateRange: one of ANALYTICS_RANGES counted back from the end (default 30d)
    Raises ValueError on bad input.
    """
    raw_start = (args.get("startDate") or "").strip()
    raw_end = (args.get("endDate") or "").strip()
    try:
        end = datetime.combine(date.fromisoformat(raw_end), time.max) if raw_end else now
        start = datetime.combine(date.fromisoformat(raw_start), time.min) if raw_start else None
    except ValueError as e:
        raise ValueError("startDate and endDate must be YYYY-MM-DD") from e
    if start is None:
        date_range = (args.get("dateRange") or "30d").strip()
        if date_range not in ANALYTICS_RANGES:
            raise ValueError(f"dateRange must be one of: {', '.join(ANALYTICS_RANGES)}")
        if date_range.endswith("d"):
            start = end - timedelta(days=int(date_range[:-1]))
        else:
            start = months_before(end, 6 if date_range == "6m" else 12)
    if start > end:
        raise ValueError("startDate must be on or before endDate")
    return start, end


def parse_id_csv(raw: str | None, name: str) -> list[int]:
    """'3,5' -> [3, 5]; empty -> []."""
    out: list[int] = []
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise ValueError(f"{name} must be a comma-separated list of ids")
        out.append(int(part))
    return out
