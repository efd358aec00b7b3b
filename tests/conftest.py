from datetime import datetime

import pytest

from app import app as flask_app
import schedule_routes
import storage
from time_utils import SchoolClock


def seed_school(conn):
    """One branch, two classes, three teachers, two rooms."""
    cur = conn.cursor()
    cur.execute("INSERT INTO branches (name) VALUES ('Main')")
    branch = cur.lastrowid

    ids = {'branch': branch}
    for key, name in [('aliyev', 'Aliyev'), ('karimova', 'Karimova'), ('usmonov', 'Usmonov')]:
        cur.execute('INSERT INTO teachers (branch_id, name) VALUES (?, ?)', (branch, name))
        ids[key] = cur.lastrowid
    for key, name in [('math', 'Mathematics'), ('english', 'English'), ('physics', 'Physics')]:
        cur.execute('INSERT INTO subjects (branch_id, name) VALUES (?, ?)', (branch, name))
        ids[key] = cur.lastrowid
    for key, name in [('c1', '5-A'), ('c2', '5-B')]:
        cur.execute('INSERT INTO classes (branch_id, name) VALUES (?, ?)', (branch, name))
        ids[key] = cur.lastrowid
    for key, name, capacity in [('r101', '101', 30), ('r102', '102', 25)]:
        cur.execute('INSERT INTO rooms (branch_id, name, capacity) VALUES (?, ?, ?)', (branch, name, capacity))
        ids[key] = cur.lastrowid

    class_subjects = [
        ('c1_math', 'c1', 'math', 'aliyev'),
        ('c1_english', 'c1', 'english', 'karimova'),
        ('c2_math', 'c2', 'math', 'aliyev'),
        ('c2_physics', 'c2', 'physics', 'usmonov'),
    ]
    for key, cls, subject, teacher in class_subjects:
        cur.execute('INSERT INTO class_subjects (class_id, subject_id, teacher_id) VALUES (?, ?, ?)',
                    (ids[cls], ids[subject], ids[teacher]))
        ids[key] = cur.lastrowid
    conn.commit()
    return ids


def fixed_clock(year, month, day, hour, minute):
    return SchoolClock('Asia/Tashkent', now_fn=lambda: datetime(year, month, day, hour, minute))


@pytest.fixture
def app(tmp_path):
    flask_app.config.update(TESTING=True, DATABASE=str(tmp_path / 'timetable.db'))
    with flask_app.app_context():
        storage.init_db(storage.get_db())
    yield flask_app


@pytest.fixture
def ids(app):
    with app.app_context():
        return seed_school(storage.get_db())


@pytest.fixture
def client(app, ids, monkeypatch):
    monkeypatch.setattr(schedule_routes, '_clock', lambda: fixed_clock(2024, 9, 2, 9, 0))
    return app.test_client()


@pytest.fixture
def store(app, ids):
    conn = storage.connect(app.config['DATABASE'])
    yield storage.ScheduleStore(conn)
    conn.close()
