"""Dated lessons from a weekly timetable; one failed write does not stop the run."""

import logging

import pandas as pd

from errors import Conflict, InvalidRange, Transient
from models import GenerationResult
from time_utils import parse_date
import weekdays

logger = logging.getLogger(__name__)


def _lesson_fields(slot, day):
    return {
        'class_id': slot['class_obj'],
        'class_subject_id': slot['class_subject'],
        'teacher_id': slot['teacher_id'],
        'room_id': slot['room'],
        'date': day.isoformat(),
        'lesson_number': slot['lesson_number'],
        'start_time': slot['start_time'],
        'end_time': slot['end_time'],
    }


def generate_lessons(store, template_id, start_date, end_date, skip_existing=True, max_days=None):
    start = parse_date(start_date)
    end = parse_date(end_date)
    if start > end:
        raise InvalidRange(f'start_date {start} is after end_date {end}')
    span = (end - start).days + 1
    if max_days is not None and span > max_days:
        raise InvalidRange(f'Cannot generate {span} days at once (limit {max_days})')

    template = store.get_template(template_id)
    branch_id = template['branch_id']

    result = GenerationResult()
    slots_by_day = {}

    for stamp in pd.date_range(start, end, freq='D'):
        day = stamp.date()
        weekday = weekdays.from_date(day)
        if weekday not in slots_by_day:
            slots_by_day[weekday] = store.list_slots(template_id, weekday)

        for slot in slots_by_day[weekday]:
            fields = _lesson_fields(slot, day)
            try:
                existing = store.find_instance(fields['class_id'], day, fields['lesson_number'])
                if existing is not None:
                    if skip_existing:
                        result.skipped += 1
                        continue
                    store.update_instance(existing['id'], fields)
                    result.updated += 1
                else:
                    fields.update(status='planned', is_auto_generated=1)
                    store.create_instance(branch_id, fields)
                    result.created += 1
            except (Conflict, Transient) as e:
                result.failed += 1
                result.errors.append({
                    'date': day.isoformat(),
                    'slot_id': slot['id'],
                    'kind': e.kind,
                    'message': e.message,
                })
                logger.warning('Lesson for slot %s on %s not generated: %s', slot['id'], day, e.message)

    logger.info(
        'Generated lessons from timetable %s for %s..%s: created=%d updated=%d skipped=%d failed=%d',
        template_id, start, end, result.created, result.updated, result.skipped, result.failed,
    )
    return result
