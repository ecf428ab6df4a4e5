import logging
from sqlalchemy.exc import IntegrityError

from schoolgrid import app, db
from schoolgrid.errors import ValidationError, NotFoundError, ConflictError
from schoolgrid.models import Section, User
from schoolgrid.utils import as_int, parse_datetime

logger = logging.getLogger(__name__)


def get_section(section_id, school_id):
    section = db.session.get(Section, section_id) if section_id is not None else None
    if section is None or section.school_id != school_id:
        raise NotFoundError('Section not found')
    return section


def create_section(creator, data):
    name = (data.get('name') or '').strip()
    code = (data.get('section_code') or '').strip().upper()
    if not name or not code:
        raise ValidationError('Name and section code are required')
    if len(name) > 100:
        raise ValidationError('Name must be at most 100 characters')
    max_capacity = int(app.config.get('SECTION_MAX_CAPACITY', 100))
    capacity = data.get('capacity')
    capacity = int(app.config.get('SECTION_DEFAULT_CAPACITY', 30)) if capacity in (None, '') else as_int(capacity)
    if capacity is None or capacity < 1 or capacity > max_capacity:
        raise ValidationError(f'Capacity must be between 1 and {max_capacity}')
    start = parse_datetime(data.get('session_start'), 'session_start')
    end = parse_datetime(data.get('session_end'), 'session_end')
    if start is None or end is None:
        raise ValidationError('Session start and end dates are required')
    if end < start:
        raise ValidationError('Session end must not be before session start')
    teacher = db.session.get(User, as_int(data.get('teacher_id')) or 0)
    if teacher is None or teacher.role != 'teacher' or teacher.school_id != creator.school_id:
        raise NotFoundError('Teacher not found')

    section = Section(name=name, section_code=code, description=data.get('description'),
                      school_id=creator.school_id, teacher_id=teacher.id, capacity=capacity,
                      session_start=start, session_end=end, created_by=creator.id)
    db.session.add(section)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Section code '{code}' already exists")
    return section


def enroll_student(section, student_id):
    student = db.session.get(User, as_int(student_id) or 0)
    if student is None or student.role != 'student' or student.school_id != section.school_id:
        raise NotFoundError('Student not found')
    if student in section.students:
        raise ConflictError('Student is already enrolled in this section')
    if student.section is not None:
        raise ConflictError(f'Student is already enrolled in {student.section.name}')
    if not section.add_student(student):
        raise ConflictError(f'Section is full (capacity {section.capacity})')
    db.session.commit()
    return section


def unenroll_student(section, student_id):
    student = db.session.get(User, as_int(student_id) or 0)
    if student is None or student not in section.students:
        raise NotFoundError('Student is not enrolled in this section')
    section.students.remove(student)
    db.session.commit()
    return section


def sweep_sessions(now):
    """Flip ``is_active`` to match each section's session window.

    Returns the number of sections that expired on this run.
    """
    expired = Section.query.filter(Section.session_end < now, Section.is_active.is_(True)).all()
    for section in expired:
        section.is_active = False
        logger.info("Section %s (%s) has been marked as expired", section.name, section.section_code)
    reopened = Section.query.filter(
        Section.session_start <= now,
        Section.session_end >= now,
        Section.is_active.is_(False)
    ).update({Section.is_active: True}, synchronize_session='fetch')
    db.session.commit()
    logger.info("Session expiration check completed. %d sections expired, %d reactivated.", len(expired), reopened)
    return len(expired)
