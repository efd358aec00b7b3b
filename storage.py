"""
SQLite persistence for branches, timetable templates and lesson instances.

The UNIQUE constraints here are the real double-booking guard; the
availability check in front of them is advisory only.
"""

import logging
import sqlite3
from contextlib import contextmanager

from flask import current_app, g

from errors import Conflict, InvalidFormat, NotFound, Transient
import weekdays

logger = logging.getLogger(__name__)

SCHEMA = '''
    CREATE TABLE IF NOT EXISTS branches (
        branch_id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE
    );
    CREATE TABLE IF NOT EXISTS branch_settings (
        branch_id INTEGER PRIMARY KEY REFERENCES branches(branch_id) ON DELETE CASCADE,
        school_start_time TEXT NOT NULL,
        school_end_time TEXT NOT NULL,
        daily_lesson_start_time TEXT,
        daily_lesson_end_time TEXT,
        lesson_duration_minutes INTEGER NOT NULL,
        break_duration_minutes INTEGER NOT NULL DEFAULT 0,
        lunch_break_start TEXT,
        lunch_break_end TEXT
    );
    CREATE TABLE IF NOT EXISTS teachers (
        teacher_id INTEGER PRIMARY KEY AUTOINCREMENT,
        branch_id INTEGER NOT NULL REFERENCES branches(branch_id),
        name TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS subjects (
        subject_id INTEGER PRIMARY KEY AUTOINCREMENT,
        branch_id INTEGER NOT NULL REFERENCES branches(branch_id),
        name TEXT NOT NULL
    );
    CREATE TABLE IF NOT EXISTS classes (
        class_id INTEGER PRIMARY KEY AUTOINCREMENT,
        branch_id INTEGER NOT NULL REFERENCES branches(branch_id),
        name TEXT NOT NULL,
        UNIQUE(branch_id, name)
    );
    CREATE TABLE IF NOT EXISTS rooms (
        room_id INTEGER PRIMARY KEY AUTOINCREMENT,
        branch_id INTEGER NOT NULL REFERENCES branches(branch_id),
        name TEXT NOT NULL,
        capacity INTEGER NOT NULL DEFAULT 0,
        UNIQUE(branch_id, name)
    );
    CREATE TABLE IF NOT EXISTS class_subjects (
        class_subject_id INTEGER PRIMARY KEY AUTOINCREMENT,
        class_id INTEGER NOT NULL REFERENCES classes(class_id),
        subject_id INTEGER NOT NULL REFERENCES subjects(subject_id),
        teacher_id INTEGER NOT NULL REFERENCES teachers(teacher_id),
        UNIQUE(class_id, subject_id)
    );
    CREATE TABLE IF NOT EXISTS timetables (
        timetable_id INTEGER PRIMARY KEY AUTOINCREMENT,
        branch_id INTEGER NOT NULL REFERENCES branches(branch_id),
        name TEXT NOT NULL,
        academic_year TEXT,
        start_date TEXT,
        end_date TEXT,
        description TEXT,
        is_active INTEGER NOT NULL DEFAULT 1
    );
    CREATE TABLE IF NOT EXISTS timetable_slots (
        slot_id INTEGER PRIMARY KEY AUTOINCREMENT,
        timetable_id INTEGER NOT NULL REFERENCES timetables(timetable_id) ON DELETE CASCADE,
        class_id INTEGER NOT NULL REFERENCES classes(class_id),
        class_subject_id INTEGER NOT NULL REFERENCES class_subjects(class_subject_id),
        teacher_id INTEGER NOT NULL REFERENCES teachers(teacher_id),
        day_of_week TEXT NOT NULL,
        lesson_number INTEGER NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        room_id INTEGER REFERENCES rooms(room_id),
        UNIQUE(timetable_id, class_id, day_of_week, lesson_number),
        UNIQUE(timetable_id, teacher_id, day_of_week, lesson_number),
        UNIQUE(timetable_id, room_id, day_of_week, lesson_number)
    );
    CREATE TABLE IF NOT EXISTS lessons (
        lesson_id INTEGER PRIMARY KEY AUTOINCREMENT,
        branch_id INTEGER NOT NULL REFERENCES branches(branch_id),
        class_id INTEGER NOT NULL REFERENCES classes(class_id),
        class_subject_id INTEGER NOT NULL REFERENCES class_subjects(class_subject_id),
        teacher_id INTEGER NOT NULL REFERENCES teachers(teacher_id),
        date TEXT NOT NULL,
        lesson_number INTEGER NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        room_id INTEGER REFERENCES rooms(room_id),
        status TEXT NOT NULL DEFAULT 'planned' CHECK (status IN ('planned', 'completed', 'cancelled')),
        topic TEXT,
        homework TEXT,
        teacher_notes TEXT,
        cancel_reason TEXT,
        is_auto_generated INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    );
    -- cancelled lessons book nothing
    CREATE UNIQUE INDEX IF NOT EXISTS uq_lessons_class ON lessons(class_id, date, lesson_number)
        WHERE status != 'cancelled';
    CREATE UNIQUE INDEX IF NOT EXISTS uq_lessons_teacher ON lessons(teacher_id, date, lesson_number)
        WHERE status != 'cancelled';
    CREATE UNIQUE INDEX IF NOT EXISTS uq_lessons_room ON lessons(room_id, date, lesson_number)
        WHERE status != 'cancelled';
    CREATE INDEX IF NOT EXISTS idx_lessons_branch_date ON lessons(branch_id, date);
'''

SLOT_COLUMNS = ('class_id', 'class_subject_id', 'teacher_id', 'day_of_week',
                'lesson_number', 'start_time', 'end_time', 'room_id')
LESSON_COLUMNS = ('class_id', 'class_subject_id', 'teacher_id', 'date', 'lesson_number',
                  'start_time', 'end_time', 'room_id', 'status', 'topic', 'homework',
                  'teacher_notes', 'cancel_reason', 'is_auto_generated')
TEMPLATE_COLUMNS = ('name', 'academic_year', 'start_date', 'end_date', 'description', 'is_active')

SLOT_SELECT = '''
    SELECT s.slot_id AS id, s.timetable_id AS timetable, s.class_id AS class_obj,
           s.class_subject_id AS class_subject, s.teacher_id, s.day_of_week,
           s.lesson_number, s.start_time, s.end_time, s.room_id AS room,
           c.name AS class_name, sub.name AS subject_name, t.name AS teacher_name,
           r.name AS room_name
    FROM timetable_slots s
    JOIN classes c ON s.class_id = c.class_id
    JOIN class_subjects cs ON s.class_subject_id = cs.class_subject_id
    JOIN subjects sub ON cs.subject_id = sub.subject_id
    JOIN teachers t ON s.teacher_id = t.teacher_id
    LEFT JOIN rooms r ON s.room_id = r.room_id
'''

LESSON_SELECT = '''
    SELECT l.lesson_id AS id, l.branch_id, l.class_id, l.class_subject_id AS class_subject,
           l.teacher_id, l.date, l.lesson_number, l.start_time, l.end_time,
           l.room_id AS room, l.status, l.topic, l.homework, l.teacher_notes,
           l.cancel_reason, l.is_auto_generated, l.created_at, l.updated_at,
           c.name AS class_name, sub.name AS subject_name, t.name AS teacher_name,
           r.name AS room_name
    FROM lessons l
    JOIN classes c ON l.class_id = c.class_id
    JOIN class_subjects cs ON l.class_subject_id = cs.class_subject_id
    JOIN subjects sub ON cs.subject_id = sub.subject_id
    JOIN teachers t ON l.teacher_id = t.teacher_id
    LEFT JOIN rooms r ON l.room_id = r.room_id
'''


# --- CONNECTION HELPERS ---

def connect(path, timeout=5.0):
    conn = sqlite3.connect(path, timeout=timeout)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


def get_db():
    db = getattr(g, '_database', None)
    if db is None:
        db = connect(current_app.config['DATABASE'], current_app.config['DATABASE_TIMEOUT'])
        g._database = db
    return db


def close_db(exception=None):
    db = g.pop('_database', None)
    if db is not None:
        db.close()


def init_db(conn):
    conn.executescript(SCHEMA)
    conn.commit()
    logger.info('Schema ready')


def get_store():
    return ScheduleStore(get_db())


def _is_busy(error):
    text = str(error).lower()
    return 'locked' in text or 'busy' in text


def _conflict_type(message):
    if 'teacher_id' in message:
        return 'teacher'
    if 'room_id' in message:
        return 'room'
    return 'class'


# --- STORE ---

class ScheduleStore:
    """Queries and writes used by the scheduling core, over one connection."""

    def __init__(self, conn):
        self.conn = conn

    @contextmanager
    def _writing(self):
        try:
            yield self.conn.cursor()
            self.conn.commit()
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            message = str(e)
            if message.startswith('UNIQUE'):
                logger.info('Write rejected: %s', message)
                kind = _conflict_type(message)
                raise Conflict(f'The {kind} is already booked at that time.',
                               conflicts=[{'type': kind, 'message': message, 'details': {}}])
            if message.startswith('FOREIGN KEY'):
                raise NotFound('Referenced record does not exist.')
            raise InvalidFormat(message)
        except sqlite3.OperationalError as e:
            self.conn.rollback()
            if _is_busy(e):
                logger.error('Database unavailable: %s', e)
                raise Transient('Database is busy, try again.')
            raise

    def _read(self, query, params=()):
        try:
            return [dict(r) for r in self.conn.execute(query, params).fetchall()]
        except sqlite3.OperationalError as e:
            if _is_busy(e):
                logger.error('Database unavailable: %s', e)
                raise Transient('Database is busy, try again.')
            raise

    def _read_one(self, query, params=()):
        rows = self._read(query, params)
        return rows[0] if rows else None

    # --- BRANCH SETTINGS ---

    def get_settings(self, branch_id):
        return self._read_one('SELECT * FROM branch_settings WHERE branch_id = ?', (branch_id,))

    def save_settings(self, branch_id, settings):
        data = settings.as_dict()
        columns = list(data.keys())
        with self._writing() as cur:
            cur.execute(
                f'INSERT INTO branch_settings (branch_id, {", ".join(columns)}) '
                f'VALUES (?, {", ".join("?" * len(columns))}) '
                f'ON CONFLICT(branch_id) DO UPDATE SET '
                + ', '.join(f'{c} = excluded.{c}' for c in columns),
                [branch_id] + [data[c] for c in columns],
            )
        return self.get_settings(branch_id)

    # --- IDENTIFIER SOURCES ---

    def get_branch(self, branch_id):
        branch = self._read_one('SELECT branch_id AS id, name FROM branches WHERE branch_id = ?', (branch_id,))
        if branch is None:
            raise NotFound(f'Branch {branch_id} not found')
        return branch

    def get_class_subject(self, class_subject_id):
        cs = self._read_one('''
            SELECT cs.class_subject_id AS id, cs.class_id, cs.subject_id, cs.teacher_id,
                   sub.name AS subject_name, t.name AS teacher_name, c.branch_id
            FROM class_subjects cs
            JOIN subjects sub ON cs.subject_id = sub.subject_id
            JOIN teachers t ON cs.teacher_id = t.teacher_id
            JOIN classes c ON cs.class_id = c.class_id
            WHERE cs.class_subject_id = ?
        ''', (class_subject_id,))
        if cs is None:
            raise NotFound(f'Class subject {class_subject_id} not found')
        return cs

    def list_class_subjects(self, branch_id, class_id=None):
        query = '''
            SELECT cs.class_subject_id AS id, cs.class_id, cs.subject_id, cs.teacher_id,
                   sub.name AS subject_name, t.name AS teacher_name
            FROM class_subjects cs
            JOIN subjects sub ON cs.subject_id = sub.subject_id
            JOIN teachers t ON cs.teacher_id = t.teacher_id
            JOIN classes c ON cs.class_id = c.class_id
            WHERE c.branch_id = ?
        '''
        params = [branch_id]
        if class_id is not None:
            query += ' AND cs.class_id = ?'
            params.append(class_id)
        return self._read(query + ' ORDER BY sub.name', params)

    def list_rooms(self, branch_id):
        return self._read('SELECT room_id AS id, name, capacity FROM rooms WHERE branch_id = ? ORDER BY name',
                          (branch_id,))

    def get_room(self, room_id):
        room = self._read_one('SELECT room_id AS id, branch_id, name, capacity FROM rooms WHERE room_id = ?',
                              (room_id,))
        if room is None:
            raise NotFound(f'Room {room_id} not found')
        return room

    # --- TIMETABLE TEMPLATES ---

    def list_templates(self, branch_id):
        return self._read('SELECT timetable_id AS id, * FROM timetables WHERE branch_id = ? ORDER BY timetable_id',
                          (branch_id,))

    def get_template(self, template_id):
        template = self._read_one('SELECT timetable_id AS id, * FROM timetables WHERE timetable_id = ?',
                                  (template_id,))
        if template is None:
            raise NotFound(f'Timetable {template_id} not found')
        return template

    def create_template(self, branch_id, data):
        columns = [c for c in TEMPLATE_COLUMNS if c in data]
        with self._writing() as cur:
            cur.execute(
                f'INSERT INTO timetables (branch_id, {", ".join(columns)}) '
                f'VALUES (?, {", ".join("?" * len(columns))})',
                [branch_id] + [data[c] for c in columns],
            )
            new_id = cur.lastrowid
        return self.get_template(new_id)

    def update_template(self, template_id, data):
        self.get_template(template_id)
        columns = [c for c in TEMPLATE_COLUMNS if c in data]
        if columns:
            with self._writing() as cur:
                cur.execute(
                    f'UPDATE timetables SET {", ".join(f"{c} = ?" for c in columns)} WHERE timetable_id = ?',
                    [data[c] for c in columns] + [template_id],
                )
        return self.get_template(template_id)

    def delete_template(self, template_id):
        self.get_template(template_id)
        with self._writing() as cur:
            cur.execute('DELETE FROM timetables WHERE timetable_id = ?', (template_id,))

    # --- TIMETABLE SLOTS ---

    def list_slots(self, template_id, day_of_week=None):
        query = SLOT_SELECT + ' WHERE s.timetable_id = ?'
        params = [template_id]
        if day_of_week is not None:
            query += ' AND s.day_of_week = ?'
            params.append(weekdays.to_wire(day_of_week))
        return self._read(query + ' ORDER BY s.lesson_number, c.name', params)

    def get_slot(self, slot_id):
        slot = self._read_one(SLOT_SELECT + ' WHERE s.slot_id = ?', (slot_id,))
        if slot is None:
            raise NotFound(f'Slot {slot_id} not found')
        return slot

    def create_slot(self, payload, teacher_id):
        """``payload`` is the wire slot payload (timetable, class_obj, ...)."""
        with self._writing() as cur:
            cur.execute(
                'INSERT INTO timetable_slots (timetable_id, class_id, class_subject_id, teacher_id, '
                'day_of_week, lesson_number, start_time, end_time, room_id) VALUES (?,?,?,?,?,?,?,?,?)',
                (payload['timetable'], payload['class_obj'], payload['class_subject'], teacher_id,
                 payload['day_of_week'], payload['lesson_number'], payload['start_time'],
                 payload['end_time'], payload.get('room')),
            )
            new_id = cur.lastrowid
        return self.get_slot(new_id)

    def update_slot(self, slot_id, fields):
        columns = [c for c in SLOT_COLUMNS if c in fields]
        if columns:
            with self._writing() as cur:
                cur.execute(
                    f'UPDATE timetable_slots SET {", ".join(f"{c} = ?" for c in columns)} WHERE slot_id = ?',
                    [fields[c] for c in columns] + [slot_id],
                )
        return self.get_slot(slot_id)

    def delete_slot(self, slot_id):
        self.get_slot(slot_id)
        with self._writing() as cur:
            cur.execute('DELETE FROM timetable_slots WHERE slot_id = ?', (slot_id,))

    # --- LESSON INSTANCES ---

    def list_instances(self, branch_id, class_id=None, date=None, date_from=None, date_to=None):
        query = LESSON_SELECT + ' WHERE l.branch_id = ?'
        params = [branch_id]
        if class_id is not None:
            query += ' AND l.class_id = ?'
            params.append(class_id)
        if date is not None:
            query += ' AND l.date = ?'
            params.append(str(date))
        if date_from is not None:
            query += ' AND l.date >= ?'
            params.append(str(date_from))
        if date_to is not None:
            query += ' AND l.date <= ?'
            params.append(str(date_to))
        return self._read(query + ' ORDER BY l.date, l.start_time, c.name', params)

    def get_instance(self, lesson_id):
        lesson = self._read_one(LESSON_SELECT + ' WHERE l.lesson_id = ?', (lesson_id,))
        if lesson is None:
            raise NotFound(f'Lesson {lesson_id} not found')
        return lesson

    def find_instance(self, class_id, date, lesson_number):
        """The live lesson in that slot, else a cancelled one, else None."""
        return self._read_one(
            LESSON_SELECT + ' WHERE l.class_id = ? AND l.date = ? AND l.lesson_number = ?'
            " ORDER BY l.status = 'cancelled', l.lesson_id",
            (class_id, str(date), lesson_number),
        )

    def create_instance(self, branch_id, fields):
        columns = [c for c in LESSON_COLUMNS if c in fields]
        values = [str(fields[c]) if c == 'date' else fields[c] for c in columns]
        with self._writing() as cur:
            cur.execute(
                f'INSERT INTO lessons (branch_id, {", ".join(columns)}) '
                f'VALUES (?, {", ".join("?" * len(columns))})',
                [branch_id] + values,
            )
            new_id = cur.lastrowid
        return self.get_instance(new_id)

    def update_instance(self, lesson_id, fields):
        columns = [c for c in LESSON_COLUMNS if c in fields]
        if columns:
            values = [str(fields[c]) if c == 'date' else fields[c] for c in columns]
            with self._writing() as cur:
                cur.execute(
                    f'UPDATE lessons SET {", ".join(f"{c} = ?" for c in columns)}, '
                    f'updated_at = CURRENT_TIMESTAMP WHERE lesson_id = ?',
                    values + [lesson_id],
                )
        return self.get_instance(lesson_id)

    def delete_instance(self, lesson_id):
        self.get_instance(lesson_id)
        with self._writing() as cur:
            cur.execute('DELETE FROM lessons WHERE lesson_id = ?', (lesson_id,))
