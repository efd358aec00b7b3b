"""Lesson grid of one school day, built from branch settings."""

from typing import List, Optional

from models import BranchScheduleSettings, DaySlot
from time_utils import SchoolClock, minutes_to_time, time_to_minutes

LUNCH_LABEL = 'Tushlik'


def lesson_label(number: int) -> str:
    return f'{number}-dars'


def _lunch_slot(settings, day_start):
    # a lunch that began before lessons start is cut at day_start
    return DaySlot(
        start=minutes_to_time(max(settings.lunch_start_minutes, day_start)),
        end=settings.lunch_break_end,
        label=LUNCH_LABEL,
        is_lunch_break=True,
    )


def generate_day_slots(settings: BranchScheduleSettings) -> List[DaySlot]:
    """Lessons back to back with a fixed break; lunch replaces the lesson
    that would run into it and the day resumes at lunch end.
    """
    slots: List[DaySlot] = []
    duration = settings.lesson_duration_minutes
    if duration <= 0:
        return slots

    day_start = cursor = settings.day_start_minutes
    end = settings.day_end_minutes

    lunch_pending = (
        settings.has_lunch
        and settings.lunch_end_minutes > cursor
        and settings.lunch_start_minutes < end
    )

    number = 1
    while cursor < end:
        slot_end = cursor + duration
        if slot_end > end:
            break  # no partial trailing lesson

        if lunch_pending and settings.lunch_start_minutes < slot_end:
            slots.append(_lunch_slot(settings, day_start))
            lunch_pending = False
            cursor = max(cursor, settings.lunch_end_minutes)
            continue

        slots.append(DaySlot(
            start=minutes_to_time(cursor),
            end=minutes_to_time(slot_end),
            label=lesson_label(number),
            lesson_number=number,
        ))
        number += 1
        cursor = slot_end + settings.break_duration_minutes

    if lunch_pending:
        slots.append(_lunch_slot(settings, day_start))

    return slots


def current_lesson_number(settings: BranchScheduleSettings, clock: SchoolClock) -> Optional[int]:
    """Lesson in progress right now; None during lunch, breaks and off hours."""
    now = clock.minutes_now()
    for slot in generate_day_slots(settings):
        if slot.is_lunch_break:
            continue
        if time_to_minutes(slot.start) <= now < time_to_minutes(slot.end):
            return slot.lesson_number
    return None
