from schoolgrid import app, db
from schoolgrid.models import School, User, Section, Course, Timetable, Permission
from schoolgrid.timetable import create_grid, assign_slot, check_availability
from werkzeug.security import generate_password_hash
from schoolgrid.clock import utcnow
from datetime import timedelta
import random

def _user(username, role, school, name=None):
    user = User.query.filter_by(username=username).first()
    if not user:
        user = User(username=username, password_hash=generate_password_hash(username), role=role,
                    name=name or username.title(), email=f"{username}@school.com", school_id=school.id)
        db.session.add(user)
    return user

def seed():
    with app.app_context():
        print("Seeding database...")

        school = School.query.filter_by(code='MAIN').first()
        if not school:
            school = School(name='Main Campus', code='MAIN')
            db.session.add(school)
            db.session.commit()

        admin = _user('admin', 'admin', school, 'Administrator')
        db.session.commit()

        # Teachers, with the first one holding student affairs
        subjects = ['Mathematics', 'Physics', 'History', 'Literature', 'Computer Science']
        teachers = [_user(f"teacher{i}", 'teacher', school, f"Teacher {i}") for i in range(1, 6)]
        db.session.commit()
        if not Permission.query.filter_by(user_id=teachers[0].id, permission='student_affairs', is_active=True).first():
            db.session.add(Permission(user_id=teachers[0].id, school_id=school.id,
                                      permission='student_affairs', granted_by=admin.id))
            db.session.commit()
        print(f"Created {len(teachers)} teachers.")

        # Sections
        start = utcnow().replace(month=9, day=1, hour=0, minute=0, second=0, microsecond=0)
        sections = []
        for i, label in enumerate(['Grade 5-A', 'Grade 5-B']):
            code = label.replace(' ', '').replace('-', '').upper()
            section = Section.query.filter_by(school_id=school.id, section_code=code).first()
            if not section:
                section = Section(name=label, section_code=code, school_id=school.id,
                                  teacher_id=teachers[i].id, capacity=30,
                                  session_start=start, session_end=start + timedelta(days=300),
                                  created_by=admin.id)
                db.session.add(section)
            sections.append(section)
        db.session.commit()
        print(f"Created {len(sections)} sections.")

        # Students
        for i in range(1, 21):
            student = _user(f"student{i}", 'student', school, f"Student {i}")
            db.session.flush()
            if student.section is None:
                sections[i % 2].add_student(student)
        db.session.commit()
        print("Enrolled students in sections.")

        # One course per subject per section
        courses = []
        for section in sections:
            for t, subject in zip(teachers, subjects):
                code = f"{section.section_code}-{subject[:4].upper()}"
                course = Course.query.filter_by(school_id=school.id, code=code).first()
                if not course:
                    course = Course(name=subject, code=code, section_id=section.id,
                                    school_id=school.id, created_by=admin.id)
                    course.teachers.append(t)
                    course.students.extend(section.students)
                    db.session.add(course)
                courses.append(course)
        db.session.commit()
        print(f"Created {len(courses)} courses.")

        # Timetables: fill 5 days x 6 periods without double-booking anyone
        for section in sections:
            grid = Timetable.query.filter_by(section_id=section.id).first() or create_grid(section.id, 5, 6, school.id)
            section_courses = [c for c in courses if c.section_id == section.id]
            for day in range(grid.days):
                for period in range(grid.periods_per_day):
                    if grid.slot_at(day, period):
                        continue
                    random.shuffle(section_courses)
                    for course in section_courses:
                        teacher = course.teachers[0]
                        if check_availability(teacher.id, day, period, exclude_grid_id=grid.id)['available']:
                            assign_slot(grid.id, day, period, course.id, teacher.id)
                            break
        print("Filled timetables.")

        print("Seeding complete.")

if __name__ == "__main__":
    seed()
