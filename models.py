from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from errors import NotConfigured, InvalidFormat
from time_utils import normalize_time, time_to_minutes


# --- BRANCH SETTINGS ---

SETTINGS_FIELDS = (
    'school_start_time',
    'school_end_time',
    'daily_lesson_start_time',
    'daily_lesson_end_time',
    'lesson_duration_minutes',
    'break_duration_minutes',
    'lunch_break_start',
    'lunch_break_end',
)


@dataclass
class BranchScheduleSettings:
    """
    Schooling-hours configuration of one branch.

    daily_lesson_start_time / daily_lesson_end_time narrow the lesson day
    when set; otherwise the school opening hours are used.
    """

    school_start_time: str
    school_end_time: str
    lesson_duration_minutes: int
    break_duration_minutes: int = 0
    daily_lesson_start_time: Optional[str] = None
    daily_lesson_end_time: Optional[str] = None
    lunch_break_start: Optional[str] = None
    lunch_break_end: Optional[str] = None

    def __post_init__(self):
        self.school_start_time = normalize_time(self.school_start_time)
        self.school_end_time = normalize_time(self.school_end_time)
        for name in ('daily_lesson_start_time', 'daily_lesson_end_time',
                     'lunch_break_start', 'lunch_break_end'):
            value = getattr(self, name)
            setattr(self, name, normalize_time(value) if value else None)

        if bool(self.lunch_break_start) != bool(self.lunch_break_end):
            raise NotConfigured('Lunch break needs both lunch_break_start and lunch_break_end')
        if self.has_lunch and self.lunch_start_minutes >= self.lunch_end_minutes:
            raise NotConfigured('lunch_break_start must be before lunch_break_end')
        if self.break_duration_minutes < 0:
            raise NotConfigured('break_duration_minutes cannot be negative')

    @classmethod
    def from_mapping(cls, data):
        if not data:
            raise NotConfigured('Branch schedule settings are not configured')
        missing = [k for k in ('school_start_time', 'school_end_time', 'lesson_duration_minutes')
                   if data.get(k) in (None, '')]
        if missing:
            raise NotConfigured('Missing schedule settings: ' + ', '.join(missing))
        try:
            return cls(
                school_start_time=data['school_start_time'],
                school_end_time=data['school_end_time'],
                lesson_duration_minutes=int(data['lesson_duration_minutes']),
                break_duration_minutes=int(data.get('break_duration_minutes') or 0),
                daily_lesson_start_time=data.get('daily_lesson_start_time') or None,
                daily_lesson_end_time=data.get('daily_lesson_end_time') or None,
                lunch_break_start=data.get('lunch_break_start') or None,
                lunch_break_end=data.get('lunch_break_end') or None,
            )
        except InvalidFormat:
            raise
        except (TypeError, ValueError) as e:
            raise InvalidFormat(f'Invalid schedule settings: {e}')

    @property
    def has_lunch(self) -> bool:
        return self.lunch_break_start is not None

    @property
    def day_start_minutes(self) -> int:
        return time_to_minutes(self.daily_lesson_start_time or self.school_start_time)

    @property
    def day_end_minutes(self) -> int:
        return time_to_minutes(self.daily_lesson_end_time or self.school_end_time)

    @property
    def lunch_start_minutes(self) -> Optional[int]:
        return time_to_minutes(self.lunch_break_start) if self.has_lunch else None

    @property
    def lunch_end_minutes(self) -> Optional[int]:
        return time_to_minutes(self.lunch_break_end) if self.has_lunch else None

    def as_dict(self):
        return asdict(self)


# --- SLOTS ---

@dataclass(frozen=True)
class LessonSlotDefinition:
    lesson_number: int
    start_time: str   # '08:00:00'
    end_time: str     # '08:45:00'
    label: str = ''

    def as_dict(self):
        return asdict(self)


@dataclass
class DaySlot:
    """One row of a generated school day: a numbered lesson or the lunch break."""

    start: str
    end: str
    label: str
    is_lunch_break: bool = False
    lesson_number: Optional[int] = None

    def as_dict(self):
        return {
            'start': self.start,
            'end': self.end,
            'label': self.label,
            'is_lunch_break': self.is_lunch_break,
            'lesson_number': self.lesson_number,
        }


# --- AVAILABILITY ---

@dataclass
class ScheduleConflict:
    type: str        # 'class' / 'teacher' / 'room'
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self):
        return {'type': self.type, 'message': self.message, 'details': self.details}


@dataclass
class ScheduleAvailabilityResult:
    available_subjects: List[Dict[str, Any]] = field(default_factory=list)
    available_rooms: List[Dict[str, Any]] = field(default_factory=list)
    conflicts: List[ScheduleConflict] = field(default_factory=list)

    @property
    def is_free(self) -> bool:
        return not self.conflicts

    def as_dict(self):
        return {
            'available_subjects': self.available_subjects,
            'available_rooms': self.available_rooms,
            'conflicts': [c.as_dict() for c in self.conflicts],
        }


# --- BULK GENERATION ---

@dataclass
class GenerationResult:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def as_dict(self):
        return asdict(self)
