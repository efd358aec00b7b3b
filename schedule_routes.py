from flask import Blueprint, current_app, jsonify, request
import logging

from availability import (
    assert_available,
    check_availability,
    check_template_availability,
    validate_slot,
)
from day_slots import current_lesson_number, generate_day_slots
from errors import Conflict, InvalidFormat, InvalidRange, NotConfigured, NotFound
from grouping import extract_distinct_time_slots, group_by_day_and_slot, sort_lessons_by_class
from lesson_generator import generate_lessons
from lesson_numbers import build_slot_payload, mapping_for_settings
from models import BranchScheduleSettings
from storage import get_store
from time_utils import SchoolClock, lesson_state, normalize_time, parse_date, week_end, week_start
import weekdays

logger = logging.getLogger(__name__)

schedule_bp = Blueprint('schedule_bp', __name__, url_prefix='/api/branches/<int:branch_id>')


# --- HELPERS ---

def _json():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidFormat('Request body must be a JSON object')
    return data


def _require(data, *keys):
    missing = [k for k in keys if data.get(k) in (None, '')]
    if missing:
        raise InvalidFormat('Missing fields: ' + ', '.join(missing), missing=missing)
    return [data[k] for k in keys]


def _int(value, name):
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidFormat(f'{name} must be an integer')


def _clock():
    return SchoolClock.from_config(current_app.config)


def _settings(store, branch_id):
    row = store.get_settings(branch_id)
    return BranchScheduleSettings.from_mapping(row) if row else None


def _mapping(store, branch_id):
    return mapping_for_settings(_settings(store, branch_id))


def _template(store, branch_id, timetable_id):
    template = store.get_template(timetable_id)
    if template['branch_id'] != branch_id:
        raise NotFound(f'Timetable {timetable_id} not found')
    return template


def _lesson(store, branch_id, lesson_id):
    lesson = store.get_instance(lesson_id)
    if lesson['branch_id'] != branch_id:
        raise NotFound(f'Lesson {lesson_id} not found')
    return lesson


def _class_subject(store, branch_id, class_subject_id, class_id=None):
    cs = store.get_class_subject(_int(class_subject_id, 'class_subject'))
    if cs['branch_id'] != branch_id:
        raise NotFound(f'Class subject {class_subject_id} not found')
    if class_id is not None and cs['class_id'] != class_id:
        raise InvalidFormat(f'{cs["subject_name"]} is not taught in class {class_id}')
    return cs


def _with_state(lesson, clock):
    lesson = dict(lesson)
    lesson['state'] = lesson_state(lesson['date'], lesson['start_time'], lesson['end_time'], clock)
    lesson['is_auto_generated'] = bool(lesson['is_auto_generated'])
    return lesson


# --- SETTINGS & DAY STRUCTURE ---

@schedule_bp.route('/settings', methods=['GET'])
def get_settings(branch_id):
    store = get_store()
    settings = _settings(store, branch_id)
    if settings is None:
        raise NotConfigured(f'Branch {branch_id} has no schedule settings')
    return jsonify(settings.as_dict())


@schedule_bp.route('/settings', methods=['PUT'])
def put_settings(branch_id):
    store = get_store()
    store.get_branch(branch_id)
    settings = BranchScheduleSettings.from_mapping(_json())
    store.save_settings(branch_id, settings)
    return jsonify(settings.as_dict())


@schedule_bp.route('/day-slots', methods=['GET'])
def day_slots(branch_id):
    store = get_store()
    settings = _settings(store, branch_id)
    if settings is None:
        raise NotConfigured(f'Branch {branch_id} has no schedule settings')
    return jsonify({
        'slots': [s.as_dict() for s in generate_day_slots(settings)],
        'current_lesson_number': current_lesson_number(settings, _clock()),
    })


@schedule_bp.route('/lesson-numbers', methods=['GET'])
def lesson_numbers(branch_id):
    mapping = _mapping(get_store(), branch_id)
    start_time = request.args.get('start_time')
    if start_time:
        slot = mapping.exact_slot_lookup(start_time)
        return jsonify(slot.as_dict())
    return jsonify({'slots': [s.as_dict() for s in mapping.slots]})


# --- TIMETABLE TEMPLATES ---

@schedule_bp.route('/timetables', methods=['GET'])
def list_timetables(branch_id):
    return jsonify({'results': get_store().list_templates(branch_id)})


@schedule_bp.route('/timetables', methods=['POST'])
def create_timetable(branch_id):
    data = _json()
    _require(data, 'name')
    store = get_store()
    store.get_branch(branch_id)
    template = store.create_template(branch_id, data)
    return jsonify(template), 201


@schedule_bp.route('/timetables/<int:timetable_id>', methods=['GET'])
def get_timetable(branch_id, timetable_id):
    store = get_store()
    template = _template(store, branch_id, timetable_id)
    template['slots'] = store.list_slots(timetable_id)
    return jsonify(template)


@schedule_bp.route('/timetables/<int:timetable_id>', methods=['PATCH'])
def update_timetable(branch_id, timetable_id):
    store = get_store()
    _template(store, branch_id, timetable_id)
    return jsonify(store.update_template(timetable_id, _json()))


@schedule_bp.route('/timetables/<int:timetable_id>', methods=['DELETE'])
def delete_timetable(branch_id, timetable_id):
    store = get_store()
    _template(store, branch_id, timetable_id)
    store.delete_template(timetable_id)
    return jsonify({'status': 'success', 'message': 'Timetable deleted.'})


# --- TIMETABLE SLOTS ---

def _slot_payload(store, branch_id, timetable_id, data):
    class_id, class_subject_id, day, start_time, end_time = _require(
        data, 'class_obj', 'class_subject', 'day_of_week', 'start_time', 'end_time')
    class_id = _int(class_id, 'class_obj')
    cs = _class_subject(store, branch_id, class_subject_id, class_id)
    room = _int(data.get('room'), 'room')
    if room is not None:
        store.get_room(room)
    payload = build_slot_payload(_mapping(store, branch_id), timetable_id, class_id, cs['id'],
                                 weekdays.coerce(day), start_time, end_time, room)
    return payload, cs['teacher_id']


@schedule_bp.route('/timetables/<int:timetable_id>/slots', methods=['GET'])
def list_slots(branch_id, timetable_id):
    store = get_store()
    _template(store, branch_id, timetable_id)
    day = request.args.get('day')
    slots = store.list_slots(timetable_id, weekdays.coerce(day) if day else None)
    return jsonify({'results': slots})


@schedule_bp.route('/timetables/<int:timetable_id>/slots', methods=['POST'])
def create_slot(branch_id, timetable_id):
    store = get_store()
    _template(store, branch_id, timetable_id)
    payload, teacher_id = _slot_payload(store, branch_id, timetable_id, _json())
    existing = store.list_slots(timetable_id, payload['day_of_week'])
    validate_slot(existing, dict(payload, teacher_id=teacher_id))
    slot = store.create_slot(payload, teacher_id)
    return jsonify(slot), 201


@schedule_bp.route('/timetables/<int:timetable_id>/slots/<int:slot_id>', methods=['PATCH'])
def update_slot(branch_id, timetable_id, slot_id):
    """Edit or move (drag and drop) a slot; the clash checks run again."""
    store = get_store()
    _template(store, branch_id, timetable_id)
    current = store.get_slot(slot_id)
    if current['timetable'] != timetable_id:
        raise NotFound(f'Slot {slot_id} not found')

    data = {k: current[k] for k in ('class_obj', 'class_subject', 'day_of_week', 'start_time', 'end_time', 'room')}
    data.update(_json())
    payload, teacher_id = _slot_payload(store, branch_id, timetable_id, data)
    existing = store.list_slots(timetable_id, payload['day_of_week'])
    validate_slot(existing, dict(payload, teacher_id=teacher_id), ignore_slot_id=slot_id)

    slot = store.update_slot(slot_id, {
        'class_id': payload['class_obj'],
        'class_subject_id': payload['class_subject'],
        'teacher_id': teacher_id,
        'day_of_week': payload['day_of_week'],
        'lesson_number': payload['lesson_number'],
        'start_time': payload['start_time'],
        'end_time': payload['end_time'],
        'room_id': payload.get('room'),
    })
    return jsonify(slot)


@schedule_bp.route('/timetables/<int:timetable_id>/slots/<int:slot_id>', methods=['DELETE'])
def delete_slot(branch_id, timetable_id, slot_id):
    store = get_store()
    _template(store, branch_id, timetable_id)
    if store.get_slot(slot_id)['timetable'] != timetable_id:
        raise NotFound(f'Slot {slot_id} not found')
    store.delete_slot(slot_id)
    return jsonify({'status': 'success', 'message': 'Slot deleted.'})


@schedule_bp.route('/timetables/<int:timetable_id>/availability', methods=['GET'])
def timetable_availability(branch_id, timetable_id):
    store = get_store()
    _template(store, branch_id, timetable_id)
    args = request.args
    class_id, day, start_time, end_time = _require(args, 'class_id', 'day', 'start_time', 'end_time')
    result = check_template_availability(
        store, timetable_id, _int(class_id, 'class_id'), weekdays.coerce(day), start_time, end_time,
        class_subject_id=_int(args.get('class_subject_id'), 'class_subject_id'),
        room_id=_int(args.get('room_id'), 'room_id'),
        ignore_slot_id=_int(args.get('ignore_slot_id'), 'ignore_slot_id'),
    )
    return jsonify(result.as_dict())


# --- LESSON INSTANCES ---

@schedule_bp.route('/lessons', methods=['GET'])
def list_lessons(branch_id):
    args = request.args
    store = get_store()
    lessons = store.list_instances(
        branch_id,
        class_id=_int(args.get('class_id'), 'class_id'),
        date=parse_date(args['date']) if args.get('date') else None,
        date_from=parse_date(args['date_from']) if args.get('date_from') else None,
        date_to=parse_date(args['date_to']) if args.get('date_to') else None,
    )
    clock = _clock()
    return jsonify({'results': [_with_state(l, clock) for l in lessons]})


def _checked_lesson_fields(store, branch_id, data, ignore_lesson_id=None):
    """Derive lesson_number and make sure class, teacher and room are free."""
    class_subject_id, lesson_date, start_time, end_time = _require(
        data, 'class_subject', 'date', 'start_time', 'end_time')
    cs = _class_subject(store, branch_id, class_subject_id)
    lesson_date = parse_date(lesson_date)
    room = _int(data.get('room'), 'room')

    mapping = _mapping(store, branch_id)
    lesson_number = mapping.lesson_number_from_start_time(start_time)
    if not mapping.is_valid_range(start_time, end_time):
        raise InvalidRange(f'{start_time}-{end_time} is not a lesson period')

    result = check_availability(store, branch_id, cs['class_id'], lesson_date, start_time, end_time,
                                class_subject_id=cs['id'], room_id=room,
                                ignore_lesson_id=ignore_lesson_id)
    assert_available(result)
    return {
        'class_id': cs['class_id'],
        'class_subject_id': cs['id'],
        'teacher_id': cs['teacher_id'],
        'room_id': room,
        'date': lesson_date.isoformat(),
        'lesson_number': lesson_number,
        'start_time': normalize_time(start_time),
        'end_time': normalize_time(end_time),
    }


@schedule_bp.route('/lessons', methods=['POST'])
def create_lesson(branch_id):
    data = _json()
    store = get_store()
    fields = _checked_lesson_fields(store, branch_id, data)
    for key in ('topic', 'homework', 'teacher_notes'):
        if data.get(key):
            fields[key] = data[key]
    fields.update(status='planned', is_auto_generated=0)
    lesson = store.create_instance(branch_id, fields)
    logger.info('Lesson %s created for class %s on %s lesson %s', lesson['id'], lesson['class_id'],
                lesson['date'], lesson['lesson_number'])
    return jsonify(_with_state(lesson, _clock())), 201


@schedule_bp.route('/lessons/<int:lesson_id>', methods=['GET'])
def get_lesson(branch_id, lesson_id):
    return jsonify(_with_state(_lesson(get_store(), branch_id, lesson_id), _clock()))


@schedule_bp.route('/lessons/<int:lesson_id>', methods=['PATCH'])
def update_lesson(branch_id, lesson_id):
    store = get_store()
    current = _lesson(store, branch_id, lesson_id)
    data = _json()
    fields = {k: data[k] for k in ('topic', 'homework', 'teacher_notes') if k in data}

    moved = any(k in data for k in ('class_subject', 'date', 'start_time', 'end_time', 'room'))
    if moved:
        merged = {k: current[k] for k in ('class_subject', 'date', 'start_time', 'end_time', 'room')}
        merged.update({k: data[k] for k in merged if k in data})
        fields.update(_checked_lesson_fields(store, branch_id, merged, ignore_lesson_id=lesson_id))

    lesson = store.update_instance(lesson_id, fields)
    return jsonify(_with_state(lesson, _clock()))


@schedule_bp.route('/lessons/<int:lesson_id>', methods=['DELETE'])
def delete_lesson(branch_id, lesson_id):
    store = get_store()
    _lesson(store, branch_id, lesson_id)
    store.delete_instance(lesson_id)
    logger.info('Lesson %s deleted', lesson_id)
    return jsonify({'status': 'success', 'message': 'Lesson deleted.'})


@schedule_bp.route('/lessons/<int:lesson_id>/complete', methods=['POST'])
def complete_lesson(branch_id, lesson_id):
    store = get_store()
    lesson = _lesson(store, branch_id, lesson_id)
    if lesson['status'] != 'planned':
        raise Conflict(f'Lesson is already {lesson["status"]}.')
    data = _json()
    fields = {k: data[k] for k in ('topic', 'homework', 'teacher_notes') if data.get(k)}
    fields['status'] = 'completed'
    return jsonify(_with_state(store.update_instance(lesson_id, fields), _clock()))


@schedule_bp.route('/lessons/<int:lesson_id>/cancel', methods=['POST'])
def cancel_lesson(branch_id, lesson_id):
    store = get_store()
    lesson = _lesson(store, branch_id, lesson_id)
    if lesson['status'] != 'planned':
        raise Conflict(f'Lesson is already {lesson["status"]}.')
    reason = _json().get('reason')
    lesson = store.update_instance(lesson_id, {'status': 'cancelled', 'cancel_reason': reason})
    return jsonify(_with_state(lesson, _clock()))


@schedule_bp.route('/lessons/week', methods=['GET'])
def lessons_week(branch_id):
    args = request.args
    clock = _clock()
    day = parse_date(args['date']) if args.get('date') else clock.today()
    start, end = week_start(day), week_end(day)
    lessons = [
        _with_state(l, clock)
        for l in get_store().list_instances(
            branch_id, class_id=_int(args.get('class_id'), 'class_id'), date_from=start, date_to=end)
    ]
    grouped = group_by_day_and_slot(sort_lessons_by_class(lessons))
    return jsonify({
        'week_start': start.isoformat(),
        'week_end': end.isoformat(),
        'days': {d.wire_name: cells for d, cells in grouped.items()},
        'time_slots': extract_distinct_time_slots(lessons),
    })


@schedule_bp.route('/availability', methods=['GET'])
def availability(branch_id):
    args = request.args
    class_id, lesson_date, start_time, end_time = _require(args, 'class_id', 'date', 'start_time', 'end_time')
    result = check_availability(
        get_store(), branch_id, _int(class_id, 'class_id'), lesson_date, start_time, end_time,
        class_subject_id=_int(args.get('class_subject_id'), 'class_subject_id'),
        room_id=_int(args.get('room_id'), 'room_id'),
        ignore_lesson_id=_int(args.get('ignore_lesson_id'), 'ignore_lesson_id'),
    )
    return jsonify(result.as_dict())


@schedule_bp.route('/lessons/generate', methods=['POST'])
def generate(branch_id):
    data = _json()
    template_id, start_date, end_date = _require(data, 'template_id', 'start_date', 'end_date')
    skip_existing = data.get('skip_existing', True)
    if not isinstance(skip_existing, bool):
        raise InvalidFormat('skip_existing must be true or false')
    store = get_store()
    _template(store, branch_id, _int(template_id, 'template_id'))
    result = generate_lessons(
        store, _int(template_id, 'template_id'), start_date, end_date,
        skip_existing=skip_existing,
        max_days=current_app.config['MAX_GENERATION_DAYS'],
    )
    return jsonify(result.as_dict())
