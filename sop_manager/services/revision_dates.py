"""Revision-date rules for documents.

The next revision must fall at least ``REVISION_INTERVAL_MONTHS`` (default 3)
calendar months after the last one.  When only the last revision date
changes, the next one is filled in at exactly that interval.
"""

import calendar
from datetime import date

from sop_manager.core.exceptions import ValidationError

DEFAULT_INTERVAL_MONTHS = 3


def add_months(value: date, months: int) -> date:
    """Calendar-month arithmetic; the day is clamped to the target month's end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def earliest_next_revision(last_revision: date, months: int = DEFAULT_INTERVAL_MONTHS) -> date:
    return add_months(last_revision, months)


def validate_revision_dates(last_revision: date | None, next_revision: date | None,
                            months: int = DEFAULT_INTERVAL_MONTHS) -> None:
    """Raise ValidationError when next_revision is earlier than allowed."""
    if last_revision is None or next_revision is None:
        return
    minimum = earliest_next_revision(last_revision, months)
    if next_revision < minimum:
        raise ValidationError(
            "Next revision date must be at least "
            f"{months} months after the last revision date",
            details={
                "next_revision_date": f"must be on or after {minimum.isoformat()}",
            },
        )


def resolve_revision_dates(
    current_last: date | None,
    current_next: date | None,
    new_last: date | None = None,
    new_next: date | None = None,
    months: int = DEFAULT_INTERVAL_MONTHS,
) -> tuple[date | None, date | None]:
    """
    Work out the (last, next) pair to store after an update.

    An explicit ``new_next`` always wins and is validated.  Without one,
    a changed last revision date re-derives next = last + interval.
    """
    last = new_last if new_last is not None else current_last
    if new_next is not None:
        nxt = new_next
    elif new_last is not None and new_last != current_last:
        nxt = earliest_next_revision(new_last, months)
    elif current_next is None and last is not None:
        nxt = earliest_next_revision(last, months)
    else:
        nxt = current_next
    validate_revision_dates(last, nxt, months)
    return last, nxt
