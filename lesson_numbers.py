"""lesson_number is never typed in; it is always looked up from a start time here."""

from typing import Iterable, List, Optional

from day_slots import generate_day_slots
from errors import InvalidRange, NotConfigured, NotFound, UnknownSlot
from models import BranchScheduleSettings, DaySlot, LessonSlotDefinition
from time_utils import normalize_time, time_to_minutes
import weekdays


# Standard 8-period day: 45 min lessons, 10 min breaks, lunch 12:25-13:00
STANDARD_TIME_SLOTS = [
    LessonSlotDefinition(1, '08:00:00', '08:45:00', 'Period 1'),
    LessonSlotDefinition(2, '08:55:00', '09:40:00', 'Period 2'),
    LessonSlotDefinition(3, '09:50:00', '10:35:00', 'Period 3'),
    LessonSlotDefinition(4, '10:45:00', '11:30:00', 'Period 4'),
    LessonSlotDefinition(5, '11:40:00', '12:25:00', 'Period 5'),
    LessonSlotDefinition(6, '13:00:00', '13:45:00', 'Period 6'),
    LessonSlotDefinition(7, '13:55:00', '14:40:00', 'Period 7'),
    LessonSlotDefinition(8, '14:50:00', '15:35:00', 'Period 8'),
]


class LessonNumberMapping:
    def __init__(self, definitions: Iterable[LessonSlotDefinition]):
        slots = [
            LessonSlotDefinition(
                d.lesson_number,
                normalize_time(d.start_time),
                normalize_time(d.end_time),
                d.label,
            )
            for d in definitions
        ]
        previous = None
        for slot in slots:
            if slot.lesson_number < 1:
                raise NotConfigured(f'lesson_number must be positive, got {slot.lesson_number}')
            if time_to_minutes(slot.end_time) <= time_to_minutes(slot.start_time):
                raise NotConfigured(f'Slot {slot.lesson_number} ends before it starts')
            if previous is not None:
                if slot.lesson_number <= previous.lesson_number:
                    raise NotConfigured('lesson numbers must be strictly increasing')
                if time_to_minutes(slot.start_time) < time_to_minutes(previous.end_time):
                    raise NotConfigured(
                        f'Slot {slot.lesson_number} overlaps slot {previous.lesson_number}'
                    )
            previous = slot

        self._slots = slots
        self._by_number = {s.lesson_number: s for s in slots}
        self._by_start = {s.start_time: s for s in slots}

    @classmethod
    def from_day_slots(cls, day_slots: Iterable[DaySlot]):
        return cls(
            LessonSlotDefinition(s.lesson_number, s.start, s.end, s.label)
            for s in day_slots
            if not s.is_lunch_break
        )

    @property
    def slots(self) -> List[LessonSlotDefinition]:
        return list(self._slots)

    def __len__(self):
        return len(self._slots)

    # exact lookups

    def slot_by_start_time(self, start) -> LessonSlotDefinition:
        slot = self._by_start.get(normalize_time(start))
        if slot is None:
            raise NotFound(f'No lesson starts at {start}')
        return slot

    def exact_slot_lookup(self, start) -> LessonSlotDefinition:
        try:
            return self.slot_by_start_time(start)
        except NotFound:
            raise UnknownSlot(f'{start} is not the start of any lesson', start_time=str(start))

    def lesson_number_from_start_time(self, start) -> int:
        return self.exact_slot_lookup(start).lesson_number

    def slot_by_lesson_number(self, number: int) -> LessonSlotDefinition:
        slot = self._by_number.get(number)
        if slot is None:
            raise NotFound(f'No lesson number {number}')
        return slot

    def is_valid_range(self, start, end) -> bool:
        slot = self._by_start.get(normalize_time(start))
        return slot is not None and slot.end_time == normalize_time(end)

    def next_slot(self, number: int) -> LessonSlotDefinition:
        return self.slot_by_lesson_number(number + 1)

    def previous_slot(self, number: int) -> LessonSlotDefinition:
        return self.slot_by_lesson_number(number - 1)

    # snapping, for rendering only

    def nearest_slot_lookup(self, start, max_distance_minutes: Optional[int] = None) -> LessonSlotDefinition:
        """Closest slot by start time. Ties go to the earlier slot.

        Never use this to build API payloads; it can return a slot whose
        times differ from ``start``.
        """
        target = time_to_minutes(start)
        best = None
        best_diff = None
        for slot in self._slots:
            diff = abs(time_to_minutes(slot.start_time) - target)
            if best_diff is None or diff < best_diff:
                best, best_diff = slot, diff
        if best is None or (max_distance_minutes is not None and best_diff > max_distance_minutes):
            raise NotFound(f'No lesson near {start}')
        return best


STANDARD_MAPPING = LessonNumberMapping(STANDARD_TIME_SLOTS)


def mapping_for_settings(settings: Optional[BranchScheduleSettings]) -> LessonNumberMapping:
    if settings is None:
        return STANDARD_MAPPING
    return LessonNumberMapping.from_day_slots(generate_day_slots(settings))


# --- WIRE PAYLOAD ---

def build_slot_payload(mapping: LessonNumberMapping, timetable, class_obj, class_subject,
                       day_of_week, start_time, end_time, room=None) -> dict:
    """Timetable slot payload in the exact field layout the API expects."""
    lesson_number = mapping.lesson_number_from_start_time(start_time)
    if not mapping.is_valid_range(start_time, end_time):
        slot = mapping.slot_by_lesson_number(lesson_number)
        raise InvalidRange(
            f'Lesson {lesson_number} runs {slot.start_time}-{slot.end_time}, not {start_time}-{end_time}'
        )

    payload = {
        'timetable': timetable,
        'class_obj': class_obj,
        'class_subject': class_subject,
        'day_of_week': weekdays.to_wire(day_of_week),
        'lesson_number': lesson_number,
        'start_time': normalize_time(start_time),
        'end_time': normalize_time(end_time),
    }
    if room:
        payload['room'] = room
    return payload
