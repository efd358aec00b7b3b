"""Which subjects and rooms are free for a class, and what clashes."""

from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from errors import Conflict, InvalidRange, NotFound
from models import ScheduleAvailabilityResult, ScheduleConflict
from time_utils import parse_date, time_to_minutes
import weekdays


def intervals_overlap(s1: int, e1: int, s2: int, e2: int) -> bool:
    # Overlap if Start1 < End2 and Start2 < End1
    return s1 < e2 and s2 < e1


def _booking(row):
    # lesson rows carry class_id, slot rows class_obj
    return {
        'id': row.get('id'),
        'class_id': row.get('class_id', row.get('class_obj')),
        'teacher_id': row.get('teacher_id'),
        'room_id': row.get('room'),
        'start_time': row['start_time'],
        'end_time': row['end_time'],
        'class_name': row.get('class_name'),
        'subject_name': row.get('subject_name'),
        'teacher_name': row.get('teacher_name'),
        'room_name': row.get('room_name'),
    }


def _describe(booking):
    return {
        'existing_id': booking['id'],
        'class_name': booking['class_name'],
        'subject_name': booking['subject_name'],
        'teacher_name': booking['teacher_name'],
        'room_name': booking['room_name'],
        'start_time': booking['start_time'],
        'end_time': booking['end_time'],
    }


def find_availability(
    class_id,
    start,
    end,
    bookings: Iterable[Dict[str, Any]],
    class_subjects: Iterable[Dict[str, Any]],
    rooms: Iterable[Dict[str, Any]],
    class_subject_id=None,
    room_id=None,
    ignore_id=None,
) -> ScheduleAvailabilityResult:
    """Free subjects and rooms for ``class_id`` over ``start``-``end``.

    Class clashes are always listed. Teacher and room clashes are listed
    only for the proposed ``class_subject_id`` / ``room_id``, once per
    booking in another class.
    """
    start_m, end_m = time_to_minutes(start), time_to_minutes(end)
    if end_m <= start_m:
        raise InvalidRange(f'End time {end} is not after start time {start}')

    busy = []
    for row in bookings:
        b = _booking(row)
        if ignore_id is not None and b['id'] == ignore_id:
            continue
        if intervals_overlap(start_m, end_m, time_to_minutes(b['start_time']), time_to_minutes(b['end_time'])):
            busy.append(b)

    busy_teachers = defaultdict(list)
    busy_rooms = defaultdict(list)
    for b in busy:
        busy_teachers[b['teacher_id']].append(b)
        if b['room_id'] is not None:
            busy_rooms[b['room_id']].append(b)

    class_subjects = [cs for cs in class_subjects if cs['class_id'] == class_id]
    rooms = list(rooms)

    result = ScheduleAvailabilityResult()
    result.available_subjects = [
        {
            'id': cs['id'],
            'subject_name': cs['subject_name'],
            'teacher_id': cs['teacher_id'],
            'teacher_name': cs['teacher_name'],
        }
        for cs in class_subjects
        if cs['teacher_id'] not in busy_teachers
    ]
    result.available_rooms = [
        {'id': r['id'], 'name': r['name'], 'capacity': r.get('capacity', 0)}
        for r in rooms
        if r['id'] not in busy_rooms
    ]

    for b in busy:
        if b['class_id'] == class_id:
            result.conflicts.append(ScheduleConflict(
                'class',
                f"{b['class_name']} already has {b['subject_name']} at {b['start_time']}-{b['end_time']}",
                _describe(b),
            ))

    if class_subject_id is not None:
        proposed = next((cs for cs in class_subjects if cs['id'] == class_subject_id), None)
        if proposed is None:
            raise NotFound(f'Subject {class_subject_id} is not taught in class {class_id}')
        for b in busy_teachers.get(proposed['teacher_id'], []):
            if b['class_id'] != class_id:
                result.conflicts.append(ScheduleConflict(
                    'teacher',
                    f"{proposed['teacher_name']} is teaching {b['class_name']} at {b['start_time']}-{b['end_time']}",
                    _describe(b),
                ))

    if room_id is not None:
        room = next((r for r in rooms if r['id'] == room_id), None)
        if room is None:
            raise NotFound(f'Room {room_id} not found')
        for b in busy_rooms.get(room_id, []):
            if b['class_id'] != class_id:
                result.conflicts.append(ScheduleConflict(
                    'room',
                    f"Room {room['name']} is used by {b['class_name']} at {b['start_time']}-{b['end_time']}",
                    _describe(b),
                ))

    return result


def check_availability(store, branch_id, class_id, date, start, end,
                       class_subject_id=None, room_id=None, ignore_lesson_id=None) -> ScheduleAvailabilityResult:
    lessons = [
        l for l in store.list_instances(branch_id, date=parse_date(date))
        if l['status'] != 'cancelled'
    ]
    return find_availability(
        class_id, start, end,
        bookings=lessons,
        class_subjects=store.list_class_subjects(branch_id, class_id),
        rooms=store.list_rooms(branch_id),
        class_subject_id=class_subject_id,
        room_id=room_id,
        ignore_id=ignore_lesson_id,
    )


def check_template_availability(store, timetable_id, class_id, day_of_week, start, end,
                                class_subject_id=None, room_id=None, ignore_slot_id=None) -> ScheduleAvailabilityResult:
    template = store.get_template(timetable_id)
    branch_id = template['branch_id']
    return find_availability(
        class_id, start, end,
        bookings=store.list_slots(timetable_id, weekdays.coerce(day_of_week)),
        class_subjects=store.list_class_subjects(branch_id, class_id),
        rooms=store.list_rooms(branch_id),
        class_subject_id=class_subject_id,
        room_id=room_id,
        ignore_id=ignore_slot_id,
    )


def assert_available(result: ScheduleAvailabilityResult):
    if result.conflicts:
        raise Conflict(
            'The requested time is already occupied.',
            conflicts=[c.as_dict() for c in result.conflicts],
        )


# --- TEMPLATE SLOT CLASHES ---

def slot_conflicts(existing_slots, candidate, ignore_slot_id=None) -> List[ScheduleConflict]:
    """Same class, teacher or room twice on one (day, lesson_number)."""
    day = weekdays.to_wire(candidate['day_of_week'])
    conflicts = []
    for s in existing_slots:
        if ignore_slot_id is not None and s['id'] == ignore_slot_id:
            continue
        if weekdays.to_wire(s['day_of_week']) != day or s['lesson_number'] != candidate['lesson_number']:
            continue
        where = f"{day} lesson {s['lesson_number']}"
        if s['class_obj'] == candidate['class_obj']:
            conflicts.append(ScheduleConflict(
                'class', f"{s.get('class_name') or 'Class'} already has {s.get('subject_name')} on {where}",
                {'existing_slot_id': s['id']},
            ))
        if s['teacher_id'] == candidate['teacher_id']:
            conflicts.append(ScheduleConflict(
                'teacher', f"{s.get('teacher_name') or 'Teacher'} already teaches {s.get('class_name')} on {where}",
                {'existing_slot_id': s['id']},
            ))
        if candidate.get('room') is not None and s.get('room') == candidate['room']:
            conflicts.append(ScheduleConflict(
                'room', f"Room {s.get('room_name') or s['room']} is taken on {where}",
                {'existing_slot_id': s['id']},
            ))
    return conflicts


def validate_slot(existing_slots, candidate, ignore_slot_id: Optional[int] = None):
    conflicts = slot_conflicts(existing_slots, candidate, ignore_slot_id)
    if conflicts:
        raise Conflict(
            'Slot clashes with the timetable.',
            conflicts=[c.as_dict() for c in conflicts],
        )
