import pytest

SETTINGS = {
    'school_start_time': '08:00',
    'school_end_time': '16:05',
    'lesson_duration_minutes': 45,
    'break_duration_minutes': 10,
    'lunch_break_start': '12:35',
    'lunch_break_end': '13:30',
}


def url(ids, path):
    return f"/api/branches/{ids['branch']}{path}"


@pytest.fixture
def timetable(client, ids):
    response = client.post(url(ids, '/timetables'), json={'name': 'Autumn term', 'academic_year': '2024-2025'})
    assert response.status_code == 201
    return response.get_json()


def post_slot(client, ids, timetable, **overrides):
    body = {
        'class_obj': ids['c1'],
        'class_subject': ids['c1_math'],
        'day_of_week': 'monday',
        'start_time': '08:00',
        'end_time': '08:45',
    }
    body.update(overrides)
    return client.post(url(ids, f"/timetables/{timetable['id']}/slots"), json=body)


def post_lesson(client, ids, **overrides):
    body = {
        'class_subject': ids['c1_math'],
        'date': '2024-09-02',
        'start_time': '08:00',
        'end_time': '08:45',
    }
    body.update(overrides)
    return client.post(url(ids, '/lessons'), json=body)


# --- settings ---

def test_settings_not_configured(client, ids):
    response = client.get(url(ids, '/settings'))
    assert response.status_code == 422
    assert response.get_json()['kind'] == 'not_configured'


def test_settings_round_trip_and_day_slots(client, ids):
    response = client.put(url(ids, '/settings'), json=SETTINGS)
    assert response.status_code == 200
    assert response.get_json()['school_start_time'] == '08:00:00'

    assert client.get(url(ids, '/settings')).get_json()['lunch_break_end'] == '13:30:00'

    body = client.get(url(ids, '/day-slots')).get_json()
    assert len(body['slots']) == 9
    assert body['slots'][5]['is_lunch_break'] is True
    # pinned clock: Monday 09:00, inside lesson 2
    assert body['current_lesson_number'] == 2


def test_settings_for_unknown_branch(client):
    response = client.put('/api/branches/999/settings', json=SETTINGS)
    assert response.status_code == 404


def test_lesson_numbers_lookup(client, ids):
    body = client.get(url(ids, '/lesson-numbers')).get_json()
    assert len(body['slots']) == 8

    response = client.get(url(ids, '/lesson-numbers?start_time=09:50'))
    assert response.get_json()['lesson_number'] == 3

    response = client.get(url(ids, '/lesson-numbers?start_time=09:51'))
    assert response.status_code == 404
    assert response.get_json()['kind'] == 'unknown_slot'


# --- timetables and slots ---

def test_timetable_crud(client, ids, timetable):
    listed = client.get(url(ids, '/timetables')).get_json()['results']
    assert [t['name'] for t in listed] == ['Autumn term']

    response = client.patch(url(ids, f"/timetables/{timetable['id']}"), json={'is_active': 0})
    assert response.get_json()['is_active'] == 0

    assert client.delete(url(ids, f"/timetables/{timetable['id']}")).status_code == 200
    assert client.get(url(ids, f"/timetables/{timetable['id']}")).status_code == 404


def test_create_slot_derives_lesson_number(client, ids, timetable):
    response = post_slot(client, ids, timetable, start_time='09:50', end_time='10:35', room=ids['r101'])
    assert response.status_code == 201
    slot = response.get_json()
    assert slot['lesson_number'] == 3
    assert slot['start_time'] == '09:50:00'
    assert slot['teacher_id'] == ids['aliyev']
    assert slot['room'] == ids['r101']


def test_slot_with_wrong_end_time(client, ids, timetable):
    response = post_slot(client, ids, timetable, end_time='08:40')
    assert response.status_code == 400
    assert response.get_json()['kind'] == 'invalid_range'


def test_slot_teacher_clash_is_rejected(client, ids, timetable):
    assert post_slot(client, ids, timetable).status_code == 201

    response = post_slot(client, ids, timetable, class_obj=ids['c2'], class_subject=ids['c2_math'])
    assert response.status_code == 409
    body = response.get_json()
    assert [c['type'] for c in body['conflicts']] == ['teacher']


def test_slot_subject_from_another_class(client, ids, timetable):
    response = post_slot(client, ids, timetable, class_subject=ids['c2_physics'])
    assert response.status_code == 400


def test_move_slot(client, ids, timetable):
    first = post_slot(client, ids, timetable).get_json()
    post_slot(client, ids, timetable, class_subject=ids['c1_english'], start_time='08:55', end_time='09:40')

    slot_url = url(ids, f"/timetables/{timetable['id']}/slots/{first['id']}")
    response = client.patch(slot_url, json={'start_time': '08:55', 'end_time': '09:40'})
    assert response.status_code == 409
    assert response.get_json()['conflicts'][0]['type'] == 'class'

    response = client.patch(slot_url, json={'day_of_week': 'tuesday'})
    assert response.status_code == 200
    assert response.get_json()['day_of_week'] == 'tuesday'

    monday = client.get(url(ids, f"/timetables/{timetable['id']}/slots?day=monday")).get_json()['results']
    assert len(monday) == 1

    assert client.delete(slot_url).status_code == 200
    assert client.delete(slot_url).status_code == 404


def test_template_availability(client, ids, timetable):
    post_slot(client, ids, timetable, class_obj=ids['c2'], class_subject=ids['c2_math'], room=ids['r101'])
    query = (f"?class_id={ids['c1']}&day=monday&start_time=08:00&end_time=08:45"
             f"&class_subject_id={ids['c1_math']}")
    body = client.get(url(ids, f"/timetables/{timetable['id']}/availability{query}")).get_json()
    assert [s['subject_name'] for s in body['available_subjects']] == ['English']
    assert [r['name'] for r in body['available_rooms']] == ['102']
    assert [c['type'] for c in body['conflicts']] == ['teacher']


# --- lessons ---

def test_create_lesson(client, ids):
    response = post_lesson(client, ids, room=ids['r101'], topic='Fractions')
    assert response.status_code == 201
    lesson = response.get_json()
    assert lesson['lesson_number'] == 1
    assert lesson['status'] == 'planned'
    assert lesson['topic'] == 'Fractions'
    assert lesson['is_auto_generated'] is False
    # pinned clock: 2024-09-02 09:00, so lesson 1 is over
    assert lesson['state'] == 'past'


def test_lesson_must_match_a_period(client, ids):
    response = post_lesson(client, ids, start_time='08:05', end_time='08:50')
    assert response.status_code == 404
    response = post_lesson(client, ids, end_time='09:00')
    assert response.status_code == 400


def test_busy_teacher_blocks_lesson(client, ids):
    assert post_lesson(client, ids, class_subject=ids['c2_math']).status_code == 201

    response = post_lesson(client, ids)
    assert response.status_code == 409
    (conflict,) = response.get_json()['conflicts']
    assert conflict['type'] == 'teacher'
    assert conflict['details']['class_name'] == '5-B'


def test_availability_endpoint(client, ids):
    post_lesson(client, ids, class_subject=ids['c2_math'], room=ids['r102'])
    query = (f"?class_id={ids['c1']}&date=2024-09-02&start_time=08:00&end_time=08:45"
             f"&class_subject_id={ids['c1_math']}")
    body = client.get(url(ids, f'/availability{query}')).get_json()
    assert [s['subject_name'] for s in body['available_subjects']] == ['English']
    assert [r['name'] for r in body['available_rooms']] == ['101']
    assert body['conflicts'][0]['type'] == 'teacher'


def test_availability_needs_a_range(client, ids):
    response = client.get(url(ids, f"/availability?class_id={ids['c1']}&date=2024-09-02"))
    assert response.status_code == 400
    assert response.get_json()['details']['missing'] == ['start_time', 'end_time']


def test_cancelled_lessons_free_the_slot(client, ids):
    lesson = post_lesson(client, ids, class_subject=ids['c2_math']).get_json()
    response = client.post(url(ids, f"/lessons/{lesson['id']}/cancel"), json={'reason': 'Holiday'})
    assert response.get_json()['status'] == 'cancelled'
    assert response.get_json()['cancel_reason'] == 'Holiday'

    body = client.get(url(ids, f"/availability?class_id={ids['c1']}&date=2024-09-02"
                               f"&start_time=08:00&end_time=08:45")).get_json()
    assert len(body['available_subjects']) == 2


def test_cancelled_lesson_can_be_rebooked(client, ids):
    lesson = post_lesson(client, ids, date='2024-09-03', room=ids['r101']).get_json()
    client.post(url(ids, f"/lessons/{lesson['id']}/cancel"))

    # same teacher and room, another class
    response = post_lesson(client, ids, class_subject=ids['c2_math'], date='2024-09-03', room=ids['r101'])
    assert response.status_code == 201

    # and the class itself can take the period again
    response = post_lesson(client, ids, class_subject=ids['c1_english'], date='2024-09-03')
    assert response.status_code == 201

    statuses = sorted(l['status'] for l in client.get(url(ids, '/lessons?date=2024-09-03')).get_json()['results'])
    assert statuses == ['cancelled', 'planned', 'planned']


def test_status_transitions(client, ids):
    lesson = post_lesson(client, ids).get_json()
    complete_url = url(ids, f"/lessons/{lesson['id']}/complete")

    response = client.post(complete_url, json={'homework': 'Page 12'})
    assert response.status_code == 200
    assert response.get_json()['status'] == 'completed'
    assert response.get_json()['homework'] == 'Page 12'

    assert client.post(complete_url).status_code == 409
    assert client.post(url(ids, f"/lessons/{lesson['id']}/cancel")).status_code == 409


def test_move_lesson(client, ids):
    lesson = post_lesson(client, ids).get_json()
    lesson_url = url(ids, f"/lessons/{lesson['id']}")

    response = client.patch(lesson_url, json={'start_time': '08:55', 'end_time': '09:40', 'topic': 'Decimals'})
    assert response.status_code == 200
    body = response.get_json()
    assert body['lesson_number'] == 2
    assert body['topic'] == 'Decimals'

    assert client.delete(lesson_url).status_code == 200
    assert client.get(lesson_url).status_code == 404


def test_generate_and_week_view(client, ids, timetable):
    post_slot(client, ids, timetable)
    post_slot(client, ids, timetable, class_subject=ids['c1_english'], day_of_week='wednesday',
              start_time='08:55', end_time='09:40')

    response = client.post(url(ids, '/lessons/generate'), json={
        'template_id': timetable['id'], 'start_date': '2024-09-02', 'end_date': '2024-09-08'})
    assert response.status_code == 200
    assert response.get_json() == {'created': 2, 'updated': 0, 'skipped': 0, 'failed': 0, 'errors': []}

    week = client.get(url(ids, '/lessons/week?date=2024-09-04')).get_json()
    assert week['week_start'] == '2024-09-02'
    assert week['week_end'] == '2024-09-08'
    assert list(week['days']) == ['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday']
    (monday_lesson,) = week['days']['monday']['08:00:00-08:45:00']
    assert monday_lesson['subject_name'] == 'Mathematics'
    assert monday_lesson['is_auto_generated'] is True
    assert [s['label'] for s in week['time_slots']] == ['08:00 - 08:45', '08:55 - 09:40']

    lessons = client.get(url(ids, f"/lessons?class_id={ids['c1']}&date_from=2024-09-03")).get_json()['results']
    assert [l['date'] for l in lessons] == ['2024-09-04']
    assert lessons[0]['state'] == 'upcoming'


def test_generate_rejects_reversed_range(client, ids, timetable):
    response = client.post(url(ids, '/lessons/generate'), json={
        'template_id': timetable['id'], 'start_date': '2024-09-08', 'end_date': '2024-09-02'})
    assert response.status_code == 400
    assert response.get_json()['kind'] == 'invalid_range'


@pytest.mark.parametrize('value', ['false', None, 0])
def test_generate_needs_a_boolean_skip_existing(client, ids, timetable, value):
    response = client.post(url(ids, '/lessons/generate'), json={
        'template_id': timetable['id'], 'start_date': '2024-09-02', 'end_date': '2024-09-08',
        'skip_existing': value})
    assert response.status_code == 400
    assert response.get_json()['kind'] == 'invalid_format'


def test_generate_again_without_skipping_updates(client, ids, timetable):
    post_slot(client, ids, timetable)
    body = {'template_id': timetable['id'], 'start_date': '2024-09-02', 'end_date': '2024-09-08'}
    client.post(url(ids, '/lessons/generate'), json=body)

    body['skip_existing'] = False
    response = client.post(url(ids, '/lessons/generate'), json=body)
    assert response.get_json() == {'created': 0, 'updated': 1, 'skipped': 0, 'failed': 0, 'errors': []}


# --- admin ---

def test_admin_add_and_delete(client, ids):
    response = client.post('/api/admin/add_room', json={'branch_id': ids['branch'], 'name': '201', 'capacity': 20})
    assert response.status_code == 201
    room_id = response.get_json()['id']

    assert client.post('/api/admin/add_room', json={'branch_id': ids['branch'], 'name': '201'}).status_code == 400

    assert client.delete(f'/api/admin/delete/rooms/{room_id}').status_code == 200
    assert client.delete(f'/api/admin/delete/rooms/{room_id}').status_code == 404
    assert client.delete(f"/api/admin/delete/teachers/{ids['aliyev']}").status_code == 400
    assert client.delete('/api/admin/delete/users/1').status_code == 400


def test_unknown_route_is_json(client):
    response = client.get('/api/nowhere')
    assert response.status_code == 404
    assert response.get_json()['status'] == 'error'
