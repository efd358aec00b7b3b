from flask import Blueprint, request, jsonify
import logging
import sqlite3

from storage import get_db

admin_bp = Blueprint('admin_bp', __name__, url_prefix='/api/admin')

logger = logging.getLogger(__name__)


def _insert(query, params, label):
    db = get_db()
    try:
        cur = db.execute(query, params)
        db.commit()
        logger.info('%s %s added', label, cur.lastrowid)
        return jsonify({'status': 'success', 'message': f'{label} added successfully!', 'id': cur.lastrowid}), 201
    except sqlite3.IntegrityError as e:
        db.rollback()
        return jsonify({'status': 'error', 'message': f'Error adding {label.lower()}: {e}'}), 400


def _data():
    return request.get_json(silent=True) or {}


@admin_bp.route('/add_branch', methods=['POST'])
def add_branch():
    data = _data()
    return _insert('INSERT INTO branches (name) VALUES (?)', (data.get('name'),), 'Branch')


@admin_bp.route('/add_teacher', methods=['POST'])
def add_teacher():
    data = _data()
    return _insert('INSERT INTO teachers (branch_id, name) VALUES (?, ?)',
                   (data.get('branch_id'), data.get('name')), 'Teacher')


@admin_bp.route('/add_subject', methods=['POST'])
def add_subject():
    data = _data()
    return _insert('INSERT INTO subjects (branch_id, name) VALUES (?, ?)',
                   (data.get('branch_id'), data.get('name')), 'Subject')


@admin_bp.route('/add_class', methods=['POST'])
def add_class():
    data = _data()
    return _insert('INSERT INTO classes (branch_id, name) VALUES (?, ?)',
                   (data.get('branch_id'), data.get('name')), 'Class')


@admin_bp.route('/add_room', methods=['POST'])
def add_room():
    data = _data()
    return _insert('INSERT INTO rooms (branch_id, name, capacity) VALUES (?, ?, ?)',
                   (data.get('branch_id'), data.get('name'), data.get('capacity', 0)), 'Room')


@admin_bp.route('/add_class_subject', methods=['POST'])
def add_class_subject():
    data = _data()
    return _insert('INSERT INTO class_subjects (class_id, subject_id, teacher_id) VALUES (?, ?, ?)',
                   (data.get('class_id'), data.get('subject_id'), data.get('teacher_id')), 'Class subject')


@admin_bp.route('/delete/<entity>/<int:id>', methods=['DELETE'])
def delete_entity(entity, id):
    db = get_db()
    id_map = {
        'branches': 'branch_id',
        'teachers': 'teacher_id',
        'subjects': 'subject_id',
        'classes': 'class_id',
        'rooms': 'room_id',
        'class_subjects': 'class_subject_id',
    }
    if entity not in id_map:
        return jsonify({'status': 'error', 'message': 'Invalid entity'}), 400
    column_id = id_map[entity]
    try:
        cur = db.execute(f'DELETE FROM {entity} WHERE {column_id} = ?', (id,))
        db.commit()
    except sqlite3.IntegrityError:
        db.rollback()
        return jsonify({'status': 'error', 'message': f'Cannot delete, {entity} record is in use by another table.'}), 400
    if cur.rowcount == 0:
        return jsonify({'status': 'error', 'message': f'{entity.capitalize()} {id} not found.'}), 404
    return jsonify({'status': 'success', 'message': f'{entity.capitalize()} deleted successfully.'})
