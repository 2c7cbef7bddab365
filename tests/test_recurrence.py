"""Tests for habitflow.core.recurrence — is an item due today?"""

from datetime import date, timedelta

from habitflow.core.recurrence import is_due_today, weekday_index
from habitflow.data.models import Habit, Recurrence, Task


def _habit(**kwargs) -> Habit:
    kwargs.setdefault("id", "h1")
    kwargs.setdefault("owner_id", "u1")
    kwargs.setdefault("title", "Read")
    return Habit(**kwargs)


class TestWeekdayIndex:
    def test_sunday_is_zero(self):
        assert weekday_index(date(2024, 3, 17)) == 0  # Sunday

    def test_monday_is_one(self):
        assert weekday_index(date(2024, 3, 18)) == 1

    def test_saturday_is_six(self):
        assert weekday_index(date(2024, 3, 16)) == 6


class TestOnce:
    def test_due_on_scheduled_date(self):
        item = Task(id="t1", owner_id="u1", title="Dentist",
                    recurrence=Recurrence.ONCE, scheduled_date=date(2024, 3, 15))
        assert is_due_today(item, date(2024, 3, 15)) is True

    def test_not_due_on_other_days(self):
        item = Task(id="t1", owner_id="u1", title="Dentist",
                    recurrence=Recurrence.ONCE, scheduled_date=date(2024, 3, 15))
        assert is_due_today(item, date(2024, 3, 14)) is False
        assert is_due_today(item, date(2024, 3, 16)) is False
        # Same day and month, different year
        assert is_due_today(item, date(2025, 3, 15)) is False
        # Same weekday a week later
        assert is_due_today(item, date(2024, 3, 22)) is False

    def test_no_scheduled_date_never_due(self):
        item = _habit(recurrence=Recurrence.ONCE)
        assert is_due_today(item, date(2024, 3, 15)) is False


class TestDaily:
    def test_always_due(self):
        item = _habit(recurrence=Recurrence.DAILY)
        start = date(2024, 1, 1)
        for offset in range(366):
            assert is_due_today(item, start + timedelta(days=offset)) is True


class TestWeekly:
    def test_due_on_listed_weekdays(self):
        item = _habit(recurrence=Recurrence.WEEKLY, week_days=[1, 3])  # Mon, Wed
        assert is_due_today(item, date(2024, 3, 18)) is True   # Monday
        assert is_due_today(item, date(2024, 3, 20)) is True   # Wednesday

    def test_not_due_on_other_weekdays(self):
        item = _habit(recurrence=Recurrence.WEEKLY, week_days=[1, 3])
        for day in (17, 19, 21, 22, 23):  # Sun, Tue, Thu, Fri, Sat
            assert is_due_today(item, date(2024, 3, day)) is False

    def test_empty_weekdays_never_due(self):
        item = _habit(recurrence=Recurrence.WEEKLY, week_days=[])
        assert is_due_today(item, date(2024, 3, 18)) is False


class TestMonthly:
    def test_due_on_month_day(self):
        item = _habit(recurrence=Recurrence.MONTHLY, month_day=15)
        assert is_due_today(item, date(2024, 3, 15)) is True
        assert is_due_today(item, date(2024, 4, 15)) is True

    def test_not_due_on_other_days(self):
        item = _habit(recurrence=Recurrence.MONTHLY, month_day=15)
        assert is_due_today(item, date(2024, 3, 14)) is False

    def test_day_31_never_due_in_april(self):
        # Known limitation: month_day is not clamped to the month's length.
        item = _habit(recurrence=Recurrence.MONTHLY, month_day=31)
        for day in range(1, 31):
            assert is_due_today(item, date(2024, 4, day)) is False

    def test_day_31_due_in_march(self):
        item = _habit(recurrence=Recurrence.MONTHLY, month_day=31)
        assert is_due_today(item, date(2024, 3, 31)) is True
