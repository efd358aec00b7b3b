"""Grouping helpers for laying lessons out in a week grid."""

from collections import OrderedDict

from time_utils import format_time_display, normalize_time, parse_date, time_to_minutes
import weekdays


def time_slot_key(start, end) -> str:
    return f'{normalize_time(start)}-{normalize_time(end)}'


def group_by_day_and_slot(lessons):
    """{Weekday: {"HH:MM:SS-HH:MM:SS": [lesson, ...]}}.

    Monday to Saturday are always present; Sunday only when a lesson
    falls on it. Lessons keep their input order inside a cell.
    """
    grouped = OrderedDict((day, {}) for day in weekdays.SCHOOL_WEEK)
    for lesson in lessons:
        day = weekdays.from_date(parse_date(lesson['date']))
        key = time_slot_key(lesson['start_time'], lesson['end_time'])
        grouped.setdefault(day, {}).setdefault(key, []).append(lesson)
    return grouped


def extract_distinct_time_slots(lessons):
    slots = {}
    for lesson in lessons:
        key = time_slot_key(lesson['start_time'], lesson['end_time'])
        if key not in slots:
            slots[key] = {
                'start_time': normalize_time(lesson['start_time']),
                'end_time': normalize_time(lesson['end_time']),
                'label': f"{format_time_display(lesson['start_time'])} - {format_time_display(lesson['end_time'])}",
            }
    return sorted(slots.values(), key=lambda s: (time_to_minutes(s['start_time']), time_to_minutes(s['end_time'])))


def sort_lessons_by_class(lessons):
    return sorted(lessons, key=lambda l: l.get('class_name') or '')
