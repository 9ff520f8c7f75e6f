import calendar
import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import false
from sqlalchemy.sql.elements import ColumnElement


_MONTH_TOKEN = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def resolve_month(token: Optional[str]) -> Optional[Period]:
    """Turn a ``YYYY-MM`` token into the calendar month it names.

    Returns ``None`` for an empty token. Anything else that is not a valid
    month raises ``ValueError``.
    """
    if not token:
        return None
    match = _MONTH_TOKEN.match(token.strip())
    if not match:
        raise ValueError(f"Invalid month {token!r}, expected YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if year < 1 or not 1 <= month <= 12:
        raise ValueError(f"Invalid month {token!r}, expected YYYY-MM")

    first = date(year, month, 1)
    end = first.replace(day=calendar.monthrange(year, month)[1])
    return Period(f"{year:04d}-{month:02d}", first, end)


def month_predicate(column, token: Optional[str]) -> ColumnElement[bool]:
    period = resolve_month(token)
    if period is None:
        # no month selected: nothing matches
        return false()
    return column.between(period.start, period.end)
