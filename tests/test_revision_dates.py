"""Revision date rules."""

from datetime import date, timedelta

import pytest

from sop_manager.core.exceptions import ValidationError
from sop_manager.services.revision_dates import (
    add_months,
    resolve_revision_dates,
    validate_revision_dates,
)


class TestAddMonths:
    @pytest.mark.parametrize("start,months,expected", [
        (date(2024, 1, 15), 3, date(2024, 4, 15)),
        (date(2024, 11, 30), 3, date(2025, 2, 28)),
        (date(2023, 11, 30), 3, date(2024, 2, 29)),
        (date(2024, 8, 31), 1, date(2024, 9, 30)),
        (date(2024, 12, 1), 12, date(2025, 12, 1)),
    ])
    def test_calendar_months(self, start, months, expected):
        assert add_months(start, months) == expected


class TestValidate:
    last = date(2024, 1, 15)

    def test_exactly_three_months_accepted(self):
        validate_revision_dates(self.last, date(2024, 4, 15))

    def test_later_accepted(self):
        validate_revision_dates(self.last, date(2025, 1, 1))

    def test_one_day_early_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_revision_dates(self.last, date(2024, 4, 15) - timedelta(days=1))
        assert "next_revision_date" in exc.value.details

    def test_missing_dates_skip(self):
        validate_revision_dates(None, date(2020, 1, 1))
        validate_revision_dates(self.last, None)


class TestResolve:
    def test_changed_last_rederives_next(self):
        last, nxt = resolve_revision_dates(date(2024, 1, 1), date(2024, 6, 1), new_last=date(2024, 2, 10))
        assert (last, nxt) == (date(2024, 2, 10), date(2024, 5, 10))

    def test_explicit_next_wins(self):
        last, nxt = resolve_revision_dates(None, None, new_last=date(2024, 2, 10), new_next=date(2024, 12, 1))
        assert nxt == date(2024, 12, 1)

    def test_explicit_next_too_early(self):
        with pytest.raises(ValidationError):
            resolve_revision_dates(None, None, new_last=date(2024, 2, 10), new_next=date(2024, 3, 1))

    def test_missing_next_auto_filled(self):
        assert resolve_revision_dates(date(2024, 1, 31), None)[1] == date(2024, 4, 30)

    def test_untouched_dates_kept(self):
        assert resolve_revision_dates(date(2024, 1, 1), date(2024, 9, 1)) == (date(2024, 1, 1), date(2024, 9, 1))
