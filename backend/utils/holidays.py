"""
South African public holidays and working-day arithmetic.

Holidays are the ten fixed month-day pairs plus Good Friday and Family Day,
which float with Easter. A fixed holiday falling on a weekend is not moved
to the Monday: only the listed dates count.
"""
from datetime import date, datetime, timedelta, timezone
from functools import lru_cache
from typing import Dict, Optional

# South Africa Standard Time, no daylight saving
SAST = timezone(timedelta(hours=2), name="SAST")

FIXED_HOLIDAYS = {
    (1, 1): "New Year's Day",
    (3, 21): "Human Rights Day",
    (4, 27): "Freedom Day",
    (5, 1): "Workers' Day",
    (6, 16): "Youth Day",
    (8, 9): "National Women's Day",
    (9, 24): "Heritage Day",
    (12, 16): "Day of Reconciliation",
    (12, 25): "Christmas Day",
    (12, 26): "Day of Goodwill",
}


def easter_sunday(year: int) -> date:
    """Anonymous Gregorian (Meeus/Jones/Butcher) Easter algorithm"""
    a = year % 19
    b = year // 100
    c = year % 100
    d = b // 4
    e = b % 4
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i = c // 4
    k = c % 4
    l = (32 + 2 * e + 2 * i - h - k) % 7
    m = (a + 11 * h + 22 * l) // 451
    month = (h + l - 7 * m + 114) // 31
    day = (h + l - 7 * m + 114) % 31 + 1
    return date(year, month, day)


@lru_cache(maxsize=64)
def public_holidays(year: int) -> Dict[date, str]:
    """All public holidays for a year, keyed by date"""
    holidays = {date(year, month, day): name for (month, day), name in FIXED_HOLIDAYS.items()}
    easter = easter_sunday(year)
    holidays[easter - timedelta(days=2)] = "Good Friday"
    holidays[easter + timedelta(days=1)] = "Family Day"
    return holidays


def holiday_name(day: date) -> Optional[str]:
    return public_holidays(day.year).get(day)


def is_public_holiday(day: date) -> bool:
    return day in public_holidays(day.year)


def is_working_day(day: date) -> bool:
    """Weekdays that are not public holidays"""
    if day.weekday() >= 5:
        return False
    return not is_public_holiday(day)


def working_days_between(start: date, end: date) -> int:
    """
    Count working days in the inclusive range [start, end].

    Walks day by day since the holiday set is irregular. Returns 0 when
    start is after end.
    """
    count = 0
    current = start
    while current <= end:
        if is_working_day(current):
            count += 1
        current += timedelta(days=1)
    return count


def date_reaching_working_days(start: date, target: int) -> date:
    """First date d >= start for which working_days_between(start, d) >= target"""
    if target <= 0:
        return start
    count = 0
    current = start
    while True:
        if is_working_day(current):
            count += 1
            if count >= target:
                return current
        current += timedelta(days=1)


def to_sast(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(SAST)


def sast_today(now: Optional[datetime] = None) -> date:
    """Today's date in South Africa"""
    return to_sast(now or datetime.now(timezone.utc)).date()


def at_sast_hour(day: date, hour: int) -> datetime:
    """The given SAST wall-clock hour on a day, as an aware UTC datetime"""
    return datetime(day.year, day.month, day.day, hour, tzinfo=SAST).astimezone(timezone.utc)


def is_planned_downtime(now: Optional[datetime] = None) -> bool:
    """SAPS takes the enquiry service down daily between 00:00 and 00:30 SAST"""
    local = to_sast(now or datetime.now(timezone.utc))
    return local.hour == 0 and local.minute < 30
