"""Time-of-day arithmetic and the school clock.

Times travel as "HH:MM" or "HH:MM:SS" strings and are always compared as
minutes since midnight. Anything that needs "now" takes a ``SchoolClock``.
"""
import re
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from errors import InvalidFormat, InvalidRange, NotConfigured

TIME_FORMATS = ('%H:%M:%S', '%H:%M')
TIME_PATTERN = re.compile(r'\d{2}:\d{2}(:\d{2})?')
MINUTES_PER_DAY = 24 * 60
DEFAULT_TIMEZONE = 'Asia/Tashkent'  # UTC+5, no DST


def _parse(t) -> time:
    if isinstance(t, time):
        return t
    if not isinstance(t, str):
        raise InvalidFormat(f'Time must be a string, got {t!r}')
    t = t.strip()
    # strptime alone would take '8:5' as 08:05
    if not TIME_PATTERN.fullmatch(t):
        raise InvalidFormat(f'Invalid time {t!r}, expected HH:MM or HH:MM:SS')
    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(t, fmt).time()
        except ValueError:
            continue
    raise InvalidFormat(f'Invalid time {t!r}, expected HH:MM or HH:MM:SS')


def time_to_minutes(t) -> int:
    """'08:30' or '08:30:00' -> 510. Seconds are ignored."""
    parsed = _parse(t)
    return parsed.hour * 60 + parsed.minute


def minutes_to_time(m: int) -> str:
    if not 0 <= m < MINUTES_PER_DAY:
        raise InvalidRange(f'{m} minutes is outside a single day')
    return f'{m // 60:02d}:{m % 60:02d}:00'


def normalize_time(t) -> str:
    return minutes_to_time(time_to_minutes(t))


def format_time_display(t) -> str:
    return normalize_time(t)[:5]


def calculate_duration(start, end) -> int:
    # negative when end is before start; callers reject that
    return time_to_minutes(end) - time_to_minutes(start)


def is_time_in_range(t, start, end) -> bool:
    return time_to_minutes(start) <= time_to_minutes(t) < time_to_minutes(end)


def parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise InvalidFormat(f'Invalid date {value!r}, expected YYYY-MM-DD')


def week_start(d: date) -> date:
    return d - timedelta(days=d.weekday())


def week_end(d: date) -> date:
    return week_start(d) + timedelta(days=6)


# --- CLOCK ---

class SchoolClock:
    """Current time in the school's timezone.

    ``now_fn`` lets tests pin the clock; it may return a naive datetime
    (taken as school-local) or an aware one (converted).
    """

    def __init__(self, tz=DEFAULT_TIMEZONE, now_fn=None):
        try:
            self.tz = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError):
            raise NotConfigured(f'Unknown timezone {tz!r}')
        self._now_fn = now_fn

    @classmethod
    def from_config(cls, config):
        return cls(config.get('SCHOOL_TIMEZONE', DEFAULT_TIMEZONE))

    def now(self) -> datetime:
        if self._now_fn is None:
            return datetime.now(self.tz)
        value = self._now_fn()
        if value.tzinfo is None:
            return value.replace(tzinfo=self.tz)
        return value.astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    def minutes_now(self) -> int:
        current = self.now()
        return current.hour * 60 + current.minute


def get_current_time(clock: SchoolClock) -> datetime:
    return clock.now()


def is_ongoing(lesson_date, start, end, clock: SchoolClock) -> bool:
    now = clock.now()
    if parse_date(lesson_date) != now.date():
        return False
    current = now.hour * 60 + now.minute
    return time_to_minutes(start) <= current < time_to_minutes(end)


def is_past(lesson_date, end, clock: SchoolClock) -> bool:
    now = clock.now()
    d = parse_date(lesson_date)
    if d != now.date():
        return d < now.date()
    return now.hour * 60 + now.minute >= time_to_minutes(end)


def lesson_state(lesson_date, start, end, clock: SchoolClock) -> str:
    if is_past(lesson_date, end, clock):
        return 'past'
    if is_ongoing(lesson_date, start, end, clock):
        return 'ongoing'
    return 'upcoming'
