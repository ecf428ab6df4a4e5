"""Per-section timetable grids.

A grid is ``days`` x ``periods_per_day`` positions, each holding at most one
(course, teacher) slot. Assignment runs a cross-grid teacher availability
check first; the check and the write are separate steps with no lock between
them, so two concurrent assignments of one teacher to the same position in
different sections can both succeed.
"""
import logging
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from schoolgrid import app, db
from schoolgrid.errors import ValidationError, RangeError, NotFoundError, ConflictError, TeacherConflictError
from schoolgrid.models import Section, Timetable, TimetableSlot, Course, User, ParentLink
from schoolgrid.permissions import has_capability
from schoolgrid.utils import as_int, require_int

logger = logging.getLogger(__name__)


def validate_dimensions(days, periods_per_day):
    """Return (days, periods_per_day) as ints or raise ValidationError listing every problem."""
    max_days = int(app.config.get('TIMETABLE_MAX_DAYS', 7))
    max_periods = int(app.config.get('TIMETABLE_MAX_PERIODS', 12))
    d = as_int(days)
    p = as_int(periods_per_day)
    errors = []
    if d is None or d < 1 or d > max_days:
        errors.append(f'Days must be between 1 and {max_days}')
    if p is None or p < 1 or p > max_periods:
        errors.append(f'Periods per day must be between 1 and {max_periods}')
    if errors:
        raise ValidationError(', '.join(errors))
    return d, p


def get_grid(grid_id):
    grid = db.session.get(Timetable, grid_id)
    if grid is None:
        raise NotFoundError('Timetable not found')
    return grid


def grid_for_section(section_id):
    return Timetable.query.filter_by(section_id=section_id).first()


def grid_exists(section_id):
    return grid_for_section(section_id) is not None


def find_section_by_name(school_id, name):
    # Spaces and hyphens are ignored: "Grade 5-A", "grade-5-a" and "Grade5A" all match
    key = (name or '').strip().lower().replace(' ', '').replace('-', '')
    if not key:
        return None
    normalized = func.replace(func.replace(func.lower(Section.name), ' ', ''), '-', '')
    return Section.query.filter(
        Section.school_id == school_id,
        normalized == key
    ).order_by(Section.id.asc()).first()


def create_grid(section_id, days, periods_per_day, school_id):
    """Create an empty grid for a section of ``school_id``; a school-less caller owns no sections."""
    days, periods_per_day = validate_dimensions(days, periods_per_day)
    section_id = as_int(section_id)
    if section_id is None:
        raise ValidationError('sectionId is required')
    section = db.session.get(Section, section_id)
    if section is None or school_id is None or section.school_id != school_id:
        raise NotFoundError('Section not found or access denied')
    existing = grid_for_section(section.id)
    if existing:
        raise ConflictError(
            f'Timetable already exists for {section.name}. Please modify the existing timetable instead.',
            payload=existing.to_dict()
        )
    grid = Timetable(section_id=section.id, days=days, periods_per_day=periods_per_day)
    db.session.add(grid)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f'Timetable already exists for {section.name}')
    logger.info("Created %sx%s timetable for section %s", days, periods_per_day, section.name)
    return grid


def create_grid_by_section_name(school_id, section_name, days, periods_per_day):
    validate_dimensions(days, periods_per_day)
    section = find_section_by_name(school_id, section_name)
    if section is None:
        raise NotFoundError('Section not found')
    return create_grid(section.id, days, periods_per_day, school_id=school_id)


def check_availability(teacher_id, day_index, period_index, exclude_grid_id=None):
    """Is the teacher free at (day, period) in every grid except ``exclude_grid_id``?

    The excluded grid is the one being edited, so re-saving a teacher into
    their own slot is not reported as a conflict.
    """
    q = TimetableSlot.query.filter_by(teacher_id=teacher_id, day_index=day_index, period_index=period_index)
    if exclude_grid_id is not None:
        q = q.filter(TimetableSlot.timetable_id != exclude_grid_id)
    clash = q.order_by(TimetableSlot.id.asc()).first()
    if clash is None:
        return {'available': True}
    return {
        'available': False,
        'conflict': {
            'sectionId': clash.timetable.section_id,
            'gridId': clash.timetable_id,
            'dayIndex': clash.day_index,
            'periodIndex': clash.period_index,
        },
    }


def assign_slot(grid_id, day_index, period_index, course_id, teacher_id):
    grid = get_grid(grid_id)
    day_index = require_int(day_index, 'dayIndex')
    period_index = require_int(period_index, 'periodIndex')
    if not 0 <= day_index < grid.days:
        raise RangeError(f'Invalid day index. Must be between 0 and {grid.days - 1}')
    if not 0 <= period_index < grid.periods_per_day:
        raise RangeError(f'Invalid period index. Must be between 0 and {grid.periods_per_day - 1}')
    course_id, teacher_id = as_int(course_id), as_int(teacher_id)
    if course_id is None or teacher_id is None:
        raise ValidationError('courseId and teacherId are required')
    course = db.session.get(Course, course_id)
    if course is None:
        raise NotFoundError('Course not found')
    teacher = db.session.get(User, teacher_id)
    if teacher is None or teacher.role != 'teacher':
        raise NotFoundError('Teacher not found')

    availability = check_availability(teacher.id, day_index, period_index, exclude_grid_id=grid.id)
    if not availability['available']:
        raise TeacherConflictError(teacher.id, availability['conflict']['sectionId'], day_index, period_index)

    slot = grid.slot_at(day_index, period_index)
    if slot is not None:
        slot.course_id = course.id
        slot.teacher_id = teacher.id
    else:
        grid.slots.append(TimetableSlot(day_index=day_index, period_index=period_index,
                                        course_id=course.id, teacher_id=teacher.id))
    db.session.commit()
    return grid


def clear_slot(grid_id, day_index, period_index):
    grid = get_grid(grid_id)
    slot = grid.slot_at(require_int(day_index, 'dayIndex'), require_int(period_index, 'periodIndex'))
    if slot is not None:
        grid.slots.remove(slot)
        db.session.commit()
    return grid


def plan_resize(slots, new_days, new_periods):
    """Split slots into (kept, removed) for a grid resized to new_days x new_periods."""
    kept, removed = [], []
    for slot in slots:
        if slot.day_index < new_days and slot.period_index < new_periods:
            kept.append(slot)
        else:
            removed.append(slot)
    return kept, removed


def resize_grid(grid_id, new_days, new_periods):
    """Change grid dimensions, deleting slots that fall outside them.

    Returns (grid, removed) where ``removed`` holds the serialized slots that
    were destroyed. Retained slots are untouched; nothing is remapped.
    """
    new_days, new_periods = validate_dimensions(new_days, new_periods)
    grid = get_grid(grid_id)
    _, doomed = plan_resize(list(grid.slots), new_days, new_periods)
    removed = [s.to_dict() for s in doomed]
    for slot in doomed:
        grid.slots.remove(slot)
    old_shape = (grid.days, grid.periods_per_day)
    grid.days = new_days
    grid.periods_per_day = new_periods
    db.session.commit()
    if removed:
        logger.info("Resized timetable %s from %sx%s to %sx%s, removed %d slots",
                    grid.id, old_shape[0], old_shape[1], new_days, new_periods, len(removed))
    return grid, removed


def delete_grid(grid_id):
    grid = get_grid(grid_id)
    db.session.delete(grid)
    db.session.commit()


def timetables_for_user(user):
    if has_capability(user, 'student_affairs'):
        return (Timetable.query.join(Section)
                .filter(Section.school_id == user.school_id)
                .order_by(Section.name.asc()).all())
    if user.role == 'teacher':
        return (Timetable.query.join(Section)
                .filter(Timetable.slots.any(TimetableSlot.teacher_id == user.id))
                .order_by(Section.name.asc()).all())
    if user.role == 'student':
        section = user.section
        grid = grid_for_section(section.id) if section else None
        return [grid] if grid else []
    if user.role == 'parent':
        links = ParentLink.query.filter_by(parent_id=user.id).all()
        section_ids = {link.student.section.id for link in links if link.student.section}
        if not section_ids:
            return []
        return Timetable.query.filter(Timetable.section_id.in_(section_ids)).all()
    return []
