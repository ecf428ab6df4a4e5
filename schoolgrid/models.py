from schoolgrid import db
from schoolgrid.clock import utcnow

ROLES = ('admin', 'faculty', 'teacher', 'student', 'parent')
GRANTABLE_PERMISSIONS = ('student_affairs', 'accounts_office')

course_teachers = db.Table('course_teachers',
    db.Column('course_id', db.Integer, db.ForeignKey('course.id'), primary_key=True),
    db.Column('user_id', db.Integer, db.ForeignKey('user.id'), primary_key=True)
)

course_students = db.Table('course_students',
    db.Column('course_id', db.Integer, db.ForeignKey('course.id'), primary_key=True),
    db.Column('user_id', db.Integer, db.ForeignKey('user.id'), primary_key=True)
)

# A student belongs to at most one section
section_enrollments = db.Table('section_enrollments',
    db.Column('section_id', db.Integer, db.ForeignKey('section.id'), nullable=False),
    db.Column('student_id', db.Integer, db.ForeignKey('user.id'), primary_key=True)
)

def _iso(value):
    return value.isoformat() if value else None

class School(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(40), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"School('{self.name}', code='{self.code}')"

class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    name = db.Column(db.String(120))
    email = db.Column(db.String(120))
    role = db.Column(db.String(20), nullable=False, default='student')
    school_id = db.Column(db.Integer, db.ForeignKey('school.id'))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    school = db.relationship('School', backref=db.backref('users', lazy=True), lazy=True)
    permissions = db.relationship('Permission', foreign_keys='Permission.user_id', backref='user', lazy=True, cascade="all, delete-orphan")

    @property
    def section(self):
        return self.sections[0] if self.sections else None

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'school_id': self.school_id,
        }

    def summary(self):
        return {'id': self.id, 'name': self.name or self.username, 'email': self.email}

    def __repr__(self):
        return f"User('{self.username}', role='{self.role}')"

class ParentLink(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    parent_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    parent = db.relationship('User', foreign_keys=[parent_id], backref=db.backref('child_links', lazy=True), lazy=True)
    student = db.relationship('User', foreign_keys=[student_id], lazy=True)
    __table_args__ = (db.UniqueConstraint('parent_id', 'student_id', name='uix_parent_student'),)

    def __repr__(self):
        return f"ParentLink(parent_id={self.parent_id}, student_id={self.student_id})"

class Permission(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    school_id = db.Column(db.Integer, db.ForeignKey('school.id'), nullable=False)
    permission = db.Column(db.String(40), nullable=False)  # student_affairs, accounts_office
    granted_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    granted_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    revoked_at = db.Column(db.DateTime, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'school_id': self.school_id,
            'permission': self.permission,
            'granted_by': self.granted_by,
            'granted_at': _iso(self.granted_at),
            'revoked_at': _iso(self.revoked_at),
            'is_active': self.is_active,
        }

    def __repr__(self):
        return f"Permission(user_id={self.user_id}, '{self.permission}', active={self.is_active})"

class Section(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    section_code = db.Column(db.String(40), nullable=False)
    description = db.Column(db.String(500))
    school_id = db.Column(db.Integer, db.ForeignKey('school.id'), nullable=False)
    teacher_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    capacity = db.Column(db.Integer, nullable=False, default=30)
    session_start = db.Column(db.DateTime, nullable=False)
    session_end = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    teacher = db.relationship('User', foreign_keys=[teacher_id], lazy=True)
    students = db.relationship('User', secondary=section_enrollments, backref=db.backref('sections', lazy=True), lazy=True)
    __table_args__ = (db.UniqueConstraint('school_id', 'section_code', name='uix_section_school_code'),)

    @property
    def student_count(self):
        return len(self.students)

    def has_capacity(self):
        return len(self.students) < self.capacity

    def add_student(self, student):
        if self.has_capacity() and student not in self.students:
            self.students.append(student)
            return True
        return False

    def is_session_active(self, now):
        return self.is_active and self.session_start <= now <= self.session_end

    def session_status(self, now):
        if now < self.session_start:
            return 'upcoming'
        if now > self.session_end:
            return 'completed'
        return 'active'

    def summary(self):
        return {'id': self.id, 'name': self.name, 'section_code': self.section_code}

    def to_dict(self, now=None):
        data = {
            'id': self.id,
            'name': self.name,
            'section_code': self.section_code,
            'description': self.description,
            'school_id': self.school_id,
            'teacher_id': self.teacher_id,
            'capacity': self.capacity,
            'student_count': self.student_count,
            'students': [s.id for s in self.students],
            'session_start': _iso(self.session_start),
            'session_end': _iso(self.session_end),
            'is_active': self.is_active,
        }
        if now is not None:
            data['session_status'] = self.session_status(now)
        return data

    def __repr__(self):
        return f"Section('{self.name}', code='{self.section_code}')"

class Course(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    code = db.Column(db.String(20))
    description = db.Column(db.Text)
    section_id = db.Column(db.Integer, db.ForeignKey('section.id'), nullable=False)
    school_id = db.Column(db.Integer, db.ForeignKey('school.id'), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    section = db.relationship('Section', backref=db.backref('courses', lazy=True), lazy=True)
    teachers = db.relationship('User', secondary=course_teachers, backref=db.backref('teaching_courses', lazy=True), lazy=True)
    students = db.relationship('User', secondary=course_students, backref=db.backref('enrolled_courses', lazy=True), lazy=True)
    quizzes = db.relationship('Quiz', backref='course', lazy=True, cascade="all, delete-orphan")
    __table_args__ = (db.UniqueConstraint('school_id', 'code', name='uix_course_school_code'),)

    def is_taught_by(self, user):
        return any(t.id == user.id for t in self.teachers)

    def summary(self):
        return {'id': self.id, 'name': self.name, 'code': self.code}

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'code': self.code,
            'description': self.description,
            'section_id': self.section_id,
            'school_id': self.school_id,
            'teachers': [t.summary() for t in self.teachers],
            'students': [s.id for s in self.students],
            'is_active': self.is_active,
        }

    def __repr__(self):
        return f"Course('{self.name}', code='{self.code}')"

class Timetable(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    section_id = db.Column(db.Integer, db.ForeignKey('section.id'), unique=True, nullable=False)
    days = db.Column(db.Integer, nullable=False)
    periods_per_day = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    section = db.relationship('Section', backref=db.backref('timetable', uselist=False, lazy=True), lazy=True)
    slots = db.relationship('TimetableSlot', backref='timetable', lazy=True, cascade="all, delete-orphan",
                            order_by='[TimetableSlot.day_index, TimetableSlot.period_index]')

    def slot_at(self, day_index, period_index):
        for slot in self.slots:
            if slot.day_index == day_index and slot.period_index == period_index:
                return slot
        return None

    def in_bounds(self, day_index, period_index):
        return 0 <= day_index < self.days and 0 <= period_index < self.periods_per_day

    def to_dict(self):
        return {
            'id': self.id,
            'section': self.section.summary() if self.section else None,
            'days': self.days,
            'periods_per_day': self.periods_per_day,
            'schedule': [s.to_dict() for s in self.slots],
            'updated_at': _iso(self.updated_at),
        }

    def __repr__(self):
        return f"Timetable(section_id={self.section_id}, {self.days}x{self.periods_per_day})"

class TimetableSlot(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    timetable_id = db.Column(db.Integer, db.ForeignKey('timetable.id'), nullable=False)
    day_index = db.Column(db.Integer, nullable=False)  # 0 = Monday
    period_index = db.Column(db.Integer, nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id'), nullable=False)
    teacher_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)

    course = db.relationship('Course', lazy=True)
    teacher = db.relationship('User', lazy=True)
    __table_args__ = (db.UniqueConstraint('timetable_id', 'day_index', 'period_index', name='uix_slot_position'),)

    @property
    def position(self):
        return (self.day_index, self.period_index)

    def to_dict(self):
        return {
            'day_index': self.day_index,
            'period_index': self.period_index,
            'course': self.course.summary() if self.course else {'id': self.course_id},
            'teacher': self.teacher.summary() if self.teacher else {'id': self.teacher_id},
        }

    def __repr__(self):
        return f"TimetableSlot(timetable_id={self.timetable_id}, day={self.day_index}, period={self.period_index}, teacher_id={self.teacher_id})"

class Quiz(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id'), nullable=False, index=True)
    school_id = db.Column(db.Integer, db.ForeignKey('school.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    quiz_type = db.Column(db.String(20), nullable=False, default='mcq')
    total_marks = db.Column(db.Float, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=True)
    visible_from = db.Column(db.DateTime, nullable=True)
    visible_until = db.Column(db.DateTime, nullable=True)
    max_attempts = db.Column(db.Integer, nullable=False, default=1)
    allow_retake = db.Column(db.Boolean, nullable=False, default=False)
    min_score_to_pass = db.Column(db.Float, nullable=False, default=60)
    days_between_attempts = db.Column(db.Float, nullable=False, default=1)
    is_published = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    questions = db.relationship('QuizQuestion', backref='quiz', lazy=True, cascade="all, delete-orphan",
                                order_by='QuizQuestion.position')
    submissions = db.relationship('QuizSubmission', backref='quiz', lazy=True, cascade="all, delete-orphan")

    @property
    def retake_policy(self):
        return {
            'allow_retake': self.allow_retake,
            'min_score_to_pass': self.min_score_to_pass,
            'days_between_attempts': self.days_between_attempts,
        }

    def is_expired(self, now):
        return self.visible_until is not None and self.visible_until < now

    def to_dict(self, include_answers=False, now=None):
        data = {
            'id': self.id,
            'course_id': self.course_id,
            'title': self.title,
            'description': self.description,
            'type': self.quiz_type,
            'questions': [q.to_dict(include_answer=include_answers) for q in self.questions],
            'total_marks': self.total_marks,
            'duration_minutes': self.duration_minutes,
            'visible_from': _iso(self.visible_from),
            'visible_until': _iso(self.visible_until),
            'max_attempts': self.max_attempts,
            'retake_policy': self.retake_policy,
            'is_published': self.is_published,
        }
        if now is not None:
            data['is_expired'] = self.is_expired(now)
        return data

    def __repr__(self):
        return f"Quiz('{self.title}', course_id={self.course_id})"

class QuizQuestion(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False)
    text = db.Column(db.Text, nullable=False)
    options = db.Column(db.JSON, nullable=False)
    correct_answer = db.Column(db.Integer, nullable=False)
    marks = db.Column(db.Float, nullable=False, default=1)

    def to_dict(self, include_answer=False):
        data = {'question': self.text, 'options': list(self.options), 'marks': self.marks}
        if include_answer:
            data['correct_answer'] = self.correct_answer
        return data

class QuizSubmission(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id'), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    score = db.Column(db.Float, nullable=False, default=0)
    percentage = db.Column(db.Float, nullable=False, default=0)
    total_marks = db.Column(db.Float, nullable=False)
    attempt_number = db.Column(db.Integer, nullable=False, default=1)
    submitted_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    student = db.relationship('User', lazy=True)
    answers = db.relationship('QuizAnswer', backref='submission', lazy=True, cascade="all, delete-orphan",
                              order_by='QuizAnswer.question_index')
    __table_args__ = (db.UniqueConstraint('quiz_id', 'student_id', 'attempt_number', name='uix_quiz_student_attempt'),)

    @property
    def correct_count(self):
        return sum(1 for a in self.answers if a.is_correct)

    def to_dict(self):
        return {
            'id': self.id,
            'quiz_id': self.quiz_id,
            'course_id': self.course_id,
            'student': self.student.summary() if self.student else {'id': self.student_id},
            'answers': [a.to_dict() for a in self.answers],
            'score': self.score,
            'percentage': self.percentage,
            'total_marks': self.total_marks,
            'attempt_number': self.attempt_number,
            'submitted_at': _iso(self.submitted_at),
        }

    def __repr__(self):
        return f"QuizSubmission(quiz_id={self.quiz_id}, student_id={self.student_id}, attempt={self.attempt_number}, score={self.score})"

class QuizAnswer(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(db.Integer, db.ForeignKey('quiz_submission.id'), nullable=False)
    question_index = db.Column(db.Integer, nullable=False)
    selected_option = db.Column(db.Integer, nullable=False)
    correct_answer = db.Column(db.Integer, nullable=False)
    is_correct = db.Column(db.Boolean, nullable=False)
    marks_awarded = db.Column(db.Float, nullable=False)
    question_marks = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            'question_index': self.question_index,
            'selected_option': self.selected_option,
            'correct_answer': self.correct_answer,
            'is_correct': self.is_correct,
            'marks_awarded': self.marks_awarded,
            'question_marks': self.question_marks,
        }

class Notification(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    school_id = db.Column(db.Integer, db.ForeignKey('school.id'), nullable=False)
    sender_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.String(1000), nullable=False)
    type = db.Column(db.String(20), nullable=False, default='info')  # info, announcement, reminder, assignment, grade
    course_id = db.Column(db.Integer, db.ForeignKey('course.id'), nullable=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    recipients = db.relationship('NotificationRecipient', backref='notification', lazy=True, cascade="all, delete-orphan")

    def __repr__(self):
        return f"Notification('{self.title}', type='{self.type}')"

class NotificationRecipient(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    notification_id = db.Column(db.Integer, db.ForeignKey('notification.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    read_at = db.Column(db.DateTime, nullable=True)
    __table_args__ = (db.UniqueConstraint('notification_id', 'user_id', name='uix_notification_user'),)

    def to_dict(self):
        n = self.notification
        return {
            'id': n.id,
            'title': n.title,
            'message': n.message,
            'type': n.type,
            'course_id': n.course_id,
            'quiz_id': n.quiz_id,
            'created_at': _iso(n.created_at),
            'read': self.read_at is not None,
        }

class SystemSetting(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.String(200), nullable=False)
    group = db.Column(db.String(50), nullable=True)

    def __repr__(self):
        return f"SystemSetting('{self.key}')"

class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(50), nullable=False)
    actor_username = db.Column(db.String(80), nullable=True)
    actor_role = db.Column(db.String(20), nullable=True)
    target = db.Column(db.String(120), nullable=True)
    details = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'action': self.action,
            'actor_username': self.actor_username,
            'actor_role': self.actor_role,
            'target': self.target,
            'details': self.details,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f"AuditLog(action='{self.action}', actor='{self.actor_username}', target='{self.target}')"
