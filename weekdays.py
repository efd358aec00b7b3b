"""Day-of-week conversions. Internally Monday=1 .. Sunday=7 (``isoweekday``);
the wire uses lowercase names and the week grid counts from 0=Monday.
"""
from datetime import date
from enum import IntEnum

from errors import InvalidFormat


class Weekday(IntEnum):
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6
    SUNDAY = 7

    @property
    def wire_name(self):
        return self.name.lower()


SCHOOL_WEEK = [Weekday(d) for d in range(1, 7)]  # Mon-Sat

WIRE_NAMES = [d.wire_name for d in Weekday]


def from_date(d: date) -> Weekday:
    return Weekday(d.isoweekday())


def from_wire(name: str) -> Weekday:
    try:
        return Weekday[str(name).strip().upper()]
    except KeyError:
        raise InvalidFormat(f'Unknown day_of_week: {name!r}', expected=WIRE_NAMES)


def to_wire(day) -> str:
    return coerce(day).wire_name


def from_zero_based(index: int) -> Weekday:
    if not 0 <= int(index) <= 6:
        raise InvalidFormat(f'Day index out of range: {index!r}')
    return Weekday(int(index) + 1)


def to_zero_based(day) -> int:
    return coerce(day) - 1


def coerce(value) -> Weekday:
    """Accept a Weekday, an ISO weekday number or a wire name."""
    if isinstance(value, Weekday):
        return value
    if isinstance(value, bool):
        raise InvalidFormat(f'Invalid day_of_week: {value!r}')
    if isinstance(value, int):
        try:
            return Weekday(value)
        except ValueError:
            raise InvalidFormat(f'Day number out of range: {value!r}')
    if isinstance(value, str):
        if value.strip().isdigit():
            return coerce(int(value))
        return from_wire(value)
    raise InvalidFormat(f'Invalid day_of_week: {value!r}')
