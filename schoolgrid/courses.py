from sqlalchemy.exc import IntegrityError

from schoolgrid import db
from schoolgrid.errors import ValidationError, NotFoundError, ConflictError
from schoolgrid.models import Course, User
from schoolgrid.sections import get_section
from schoolgrid.utils import as_int


def get_course(course_id, school_id):
    course = db.session.get(Course, course_id) if course_id is not None else None
    if course is None or course.school_id != school_id:
        raise NotFoundError('Course not found')
    return course


def _school_user(user_id, school_id, role):
    user = db.session.get(User, as_int(user_id) or 0)
    if user is None or user.role != role or user.school_id != school_id:
        raise NotFoundError(f'{role.capitalize()} not found')
    return user


def create_course(creator, data):
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Course name is required')
    section = get_section(as_int(data.get('section_id')), creator.school_id)
    teacher_ids = data.get('teacher_ids') or []
    if not isinstance(teacher_ids, list) or not teacher_ids:
        raise ValidationError('At least one teacher is required')
    teachers = [_school_user(tid, creator.school_id, 'teacher') for tid in teacher_ids]
    course = Course(name=name, code=(data.get('code') or '').strip() or None,
                    description=data.get('description'), section_id=section.id,
                    school_id=creator.school_id, created_by=creator.id)
    for t in teachers:
        if t not in course.teachers:
            course.teachers.append(t)
    db.session.add(course)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Course code '{course.code}' already exists")
    return course


def add_teacher(course, teacher_id):
    teacher = _school_user(teacher_id, course.school_id, 'teacher')
    if course.is_taught_by(teacher):
        raise ConflictError('Teacher already assigned to this course')
    course.teachers.append(teacher)
    db.session.commit()
    return course


def add_student(course, student_id):
    student = _school_user(student_id, course.school_id, 'student')
    if student in course.students:
        raise ConflictError('Student already enrolled in this course')
    course.students.append(student)
    db.session.commit()
    return course
