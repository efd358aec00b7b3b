import pytest

from errors import InvalidRange
from lesson_generator import generate_lessons
from lesson_numbers import STANDARD_MAPPING, build_slot_payload


@pytest.fixture
def template(store, ids):
    return store.create_template(ids['branch'], {'name': 'Autumn term', 'academic_year': '2024-2025'})


def add_slot(store, ids, template, class_key, cs_key, teacher_key, day, start, end, room_key=None):
    payload = build_slot_payload(STANDARD_MAPPING, template['id'], ids[class_key], ids[cs_key], day,
                                 start, end, ids[room_key] if room_key else None)
    return store.create_slot(payload, ids[teacher_key])


def lesson_count(store, ids):
    return len(store.list_instances(ids['branch']))


def test_one_monday_slot_over_a_week(store, ids, template):
    slot = add_slot(store, ids, template, 'c1', 'c1_math', 'aliyev', 'monday', '08:00', '08:45', 'r101')

    result = generate_lessons(store, template['id'], '2024-09-02', '2024-09-08')
    assert (result.created, result.updated, result.skipped, result.failed) == (1, 0, 0, 0)

    (lesson,) = store.list_instances(ids['branch'])
    assert lesson['date'] == '2024-09-02'
    assert lesson['lesson_number'] == 1
    assert lesson['class_id'] == ids['c1']
    assert lesson['teacher_id'] == ids['aliyev']
    assert lesson['room'] == ids['r101']
    assert lesson['status'] == 'planned'
    assert lesson['is_auto_generated'] == 1
    assert slot['teacher_id'] == lesson['teacher_id']


def test_rerun_skips_or_updates_existing(store, ids, template):
    add_slot(store, ids, template, 'c1', 'c1_math', 'aliyev', 'monday', '08:00', '08:45')
    generate_lessons(store, template['id'], '2024-09-02', '2024-09-08')

    again = generate_lessons(store, template['id'], '2024-09-02', '2024-09-08')
    assert (again.created, again.skipped) == (0, 1)

    refreshed = generate_lessons(store, template['id'], '2024-09-02', '2024-09-08', skip_existing=False)
    assert (refreshed.created, refreshed.updated) == (0, 1)
    assert lesson_count(store, ids) == 1


def test_every_matching_weekday_is_generated(store, ids, template):
    add_slot(store, ids, template, 'c1', 'c1_math', 'aliyev', 'monday', '08:00', '08:45')
    add_slot(store, ids, template, 'c1', 'c1_english', 'karimova', 'wednesday', '08:55', '09:40')

    result = generate_lessons(store, template['id'], '2024-09-02', '2024-09-15')
    assert result.created == 4
    dates = sorted(l['date'] for l in store.list_instances(ids['branch']))
    assert dates == ['2024-09-02', '2024-09-04', '2024-09-09', '2024-09-11']


def test_reversed_range_writes_nothing(store, ids, template):
    add_slot(store, ids, template, 'c1', 'c1_math', 'aliyev', 'monday', '08:00', '08:45')
    with pytest.raises(InvalidRange):
        generate_lessons(store, template['id'], '2024-09-08', '2024-09-02')
    assert lesson_count(store, ids) == 0


def test_span_limit(store, ids, template):
    with pytest.raises(InvalidRange):
        generate_lessons(store, template['id'], '2024-09-01', '2024-09-30', max_days=7)


def test_clash_is_reported_and_generation_continues(store, ids, template):
    add_slot(store, ids, template, 'c1', 'c1_math', 'aliyev', 'monday', '08:00', '08:45')
    # Aliyev already teaches 5-B at that time on the first Monday
    store.create_instance(ids['branch'], {
        'class_id': ids['c2'], 'class_subject_id': ids['c2_math'], 'teacher_id': ids['aliyev'],
        'date': '2024-09-02', 'lesson_number': 1, 'start_time': '08:00:00', 'end_time': '08:45:00',
        'status': 'planned', 'is_auto_generated': 0,
    })

    result = generate_lessons(store, template['id'], '2024-09-02', '2024-09-09')
    assert (result.created, result.failed) == (1, 1)
    (error,) = result.errors
    assert error['date'] == '2024-09-02'
    assert error['kind'] == 'conflict'
    generated = store.list_instances(ids['branch'], class_id=ids['c1'])
    assert [l['date'] for l in generated] == ['2024-09-09']


def test_cancelled_lesson_does_not_block_generation(store, ids, template):
    add_slot(store, ids, template, 'c1', 'c1_math', 'aliyev', 'monday', '08:00', '08:45', 'r101')
    store.create_instance(ids['branch'], {
        'class_id': ids['c2'], 'class_subject_id': ids['c2_math'], 'teacher_id': ids['aliyev'],
        'room_id': ids['r101'], 'date': '2024-09-02', 'lesson_number': 1,
        'start_time': '08:00:00', 'end_time': '08:45:00', 'status': 'cancelled', 'is_auto_generated': 0,
    })

    result = generate_lessons(store, template['id'], '2024-09-02', '2024-09-08')
    assert (result.created, result.failed) == (1, 0)
    assert lesson_count(store, ids) == 2
