from flask import request, jsonify, session
from schoolgrid import app, db
import logging
logger = logging.getLogger(__name__)
from schoolgrid.models import User, Timetable, Quiz, AuditLog, Section, Course, Permission
from schoolgrid.errors import SchoolGridError, ValidationError, NotFoundError, PermissionDenied
from schoolgrid.clock import current_clock
from schoolgrid.permissions import has_capability, capabilities_for, grant_permission, revoke_permission
from schoolgrid.utils import as_int, require_int
from schoolgrid import timetable as grids
from schoolgrid import sections as section_service
from schoolgrid import courses as course_service
from schoolgrid import quizzes as quiz_service
from schoolgrid import notifications as notification_service
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash
from functools import wraps

def _now():
    return current_clock(app).now()

def _payload():
    return request.get_json(silent=True) or {}

def current_user():
    user_id = session.get('user_id')
    return db.session.get(User, user_id) if user_id else None

def _ok(data=None, msg=None, status=200, **extra):
    body = {'success': True}
    if data is not None:
        body['data'] = data
    if msg:
        body['msg'] = msg
    body.update(extra)
    return jsonify(body), status

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not session.get('logged_in') or current_user() is None:
            return jsonify({'success': False, 'msg': 'Please log in to access this resource.'}), 401
        return fn(*args, **kwargs)
    return wrapper

def capability_required(capability):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not session.get('logged_in') or current_user() is None:
                return jsonify({'success': False, 'msg': 'Please log in to access this resource.'}), 401
            if not has_capability(current_user(), capability):
                return jsonify({'success': False, 'msg': f'Access denied. Requires {capability} permission'}), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator

def _audit(action, target, details=None):
    try:
        db.session.add(AuditLog(
            action=action,
            actor_username=session.get('user') or 'system',
            actor_role=session.get('role'),
            target=target,
            details=details
        ))
        db.session.commit()
    except SQLAlchemyError as _e:
        db.session.rollback()
        logger.warning(f"Failed to write audit log for {action}: {_e}")

def _grid_in_school(grid_id):
    grid = grids.get_grid(grid_id)
    if grid.section is None or grid.section.school_id != current_user().school_id:
        raise NotFoundError('Timetable not found')
    return grid

def _quiz_in_school(quiz_id):
    quiz = db.session.get(Quiz, quiz_id)
    if quiz is None:
        raise NotFoundError('Quiz not found')
    if quiz.school_id != current_user().school_id:
        raise PermissionDenied('Access denied')
    return quiz

# --- Errors ---
@app.errorhandler(SchoolGridError)
def handle_domain_error(error):
    db.session.rollback()
    return jsonify(error.to_dict()), error.status_code

@app.errorhandler(404)
def handle_404(error):
    return jsonify({'success': False, 'msg': 'Not found'}), 404

@app.errorhandler(405)
def handle_405(error):
    return jsonify({'success': False, 'msg': 'Method not allowed'}), 405

@app.errorhandler(500)
def handle_500(error):
    logger.exception("Unhandled exception")
    return jsonify({'success': False, 'msg': 'Server error'}), 500

# --- Auth ---
@app.route("/login", methods=['POST'])
def login():
    data = _payload()
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    user = User.query.filter_by(username=username).first()
    if not user or not check_password_hash(user.password_hash, password):
        return jsonify({'success': False, 'msg': 'Invalid credentials.'}), 401
    session.clear()
    session['logged_in'] = True
    session['user_id'] = user.id
    session['user'] = user.username
    session['role'] = user.role
    session.permanent = True
    return _ok(dict(user.to_dict(), capabilities=sorted(capabilities_for(user))), 'Logged in successfully.')

@app.route("/logout", methods=['POST'])
def logout():
    session.clear()
    return _ok(msg='Logged out.')

@app.route("/healthz")
def healthz():
    try:
        return jsonify({
            "status": "ok",
            "sections": Section.query.count(),
            "courses": Course.query.count(),
            "timetables": Timetable.query.count(),
        }), 200
    except SQLAlchemyError as e:
        logger.exception("Health check failed")
        return jsonify({"status": "error", "message": str(e)}), 500

# --- Permissions ---
@app.route('/permissions', methods=['GET'])
@capability_required('manage_permissions')
def list_permissions():
    grants = (Permission.query.filter_by(school_id=current_user().school_id)
              .order_by(Permission.granted_at.desc()).all())
    return _ok([p.to_dict() for p in grants])

@app.route('/permissions', methods=['POST'])
@capability_required('manage_permissions')
def create_permission():
    data = _payload()
    grant = grant_permission(current_user(), as_int(data.get('user_id')), data.get('permission'))
    _audit('permission_grant', f'user:{grant.user_id}', grant.permission)
    return _ok(grant.to_dict(), 'Permission granted', 201)

@app.route('/permissions/<int:permission_id>', methods=['DELETE'])
@capability_required('manage_permissions')
def delete_permission(permission_id):
    grant = revoke_permission(current_user(), permission_id)
    _audit('permission_revoke', f'user:{grant.user_id}', grant.permission)
    return _ok(grant.to_dict(), 'Permission revoked')

# --- Sections ---
@app.route('/sections', methods=['POST'])
@capability_required('manage_sections')
def create_section():
    section = section_service.create_section(current_user(), _payload())
    _audit('section_create', f'section:{section.id}', section.section_code)
    return _ok(section.to_dict(_now()), 'Section created', 201)

@app.route('/sections', methods=['GET'])
@login_required
def list_sections():
    now = _now()
    sections = Section.query.filter_by(school_id=current_user().school_id).order_by(Section.name.asc()).all()
    return _ok([s.to_dict(now) for s in sections])

@app.route('/sections/<int:section_id>', methods=['GET'])
@login_required
def get_section(section_id):
    section = section_service.get_section(section_id, current_user().school_id)
    return _ok(section.to_dict(_now()))

@app.route('/sections/<int:section_id>/students', methods=['POST'])
@capability_required('manage_sections')
def enroll_section_student(section_id):
    section = section_service.get_section(section_id, current_user().school_id)
    section_service.enroll_student(section, _payload().get('student_id'))
    return _ok(section.to_dict(_now()), 'Student enrolled')

@app.route('/sections/<int:section_id>/students/<int:student_id>', methods=['DELETE'])
@capability_required('manage_sections')
def unenroll_section_student(section_id, student_id):
    section = section_service.get_section(section_id, current_user().school_id)
    section_service.unenroll_student(section, student_id)
    return _ok(section.to_dict(_now()), 'Student removed')

# --- Courses ---
@app.route('/courses', methods=['POST'])
@capability_required('manage_courses')
def create_course():
    course = course_service.create_course(current_user(), _payload())
    return _ok(course.to_dict(), 'Course created', 201)

@app.route('/courses/<int:course_id>', methods=['GET'])
@login_required
def get_course(course_id):
    return _ok(course_service.get_course(course_id, current_user().school_id).to_dict())

@app.route('/courses/<int:course_id>/teachers', methods=['POST'])
@capability_required('manage_courses')
def add_course_teacher(course_id):
    course = course_service.get_course(course_id, current_user().school_id)
    course_service.add_teacher(course, _payload().get('teacher_id'))
    return _ok(course.to_dict(), 'Teacher added')

@app.route('/courses/<int:course_id>/students', methods=['POST'])
@capability_required('manage_courses')
def add_course_student(course_id):
    course = course_service.get_course(course_id, current_user().school_id)
    course_service.add_student(course, _payload().get('student_id'))
    return _ok(course.to_dict(), 'Student added')

# --- Timetables ---
@app.route('/timetables', methods=['GET'])
@capability_required('view_timetable')
def list_timetables():
    return _ok([t.to_dict() for t in grids.timetables_for_user(current_user())])

@app.route('/timetables/check/<int:section_id>', methods=['GET'])
@login_required
def check_timetable(section_id):
    section = section_service.get_section(section_id, current_user().school_id)
    grid = grids.grid_for_section(section.id)
    if grid:
        return _ok(grid.to_dict(), f'Timetable already exists for {section.name}', exists=True)
    return _ok(msg='No timetable found for this section', exists=False)

@app.route('/timetables', methods=['POST'])
@capability_required('student_affairs')
def create_timetable():
    data = _payload()
    grid = grids.create_grid(data.get('section_id'), data.get('days'), data.get('periods_per_day'),
                             school_id=current_user().school_id)
    _audit('timetable_create', f'timetable:{grid.id}', f'section={grid.section_id},{grid.days}x{grid.periods_per_day}')
    return _ok(grid.to_dict(), 'Timetable created successfully', 201)

@app.route('/timetables/by-name', methods=['POST'])
@capability_required('student_affairs')
def create_timetable_by_name():
    data = _payload()
    grid = grids.create_grid_by_section_name(current_user().school_id, data.get('section_name'),
                                             data.get('days'), data.get('periods_per_day'))
    _audit('timetable_create', f'timetable:{grid.id}', f'section={grid.section_id},{grid.days}x{grid.periods_per_day}')
    return _ok(grid.to_dict(), 'Timetable created successfully', 201)

@app.route('/timetables/availability', methods=['GET'])
@capability_required('student_affairs')
def timetable_availability():
    teacher_id = require_int(request.args.get('teacher_id'), 'teacher_id')
    day_index = require_int(request.args.get('day'), 'day')
    period_index = require_int(request.args.get('period'), 'period')
    exclude = request.args.get('exclude')
    exclude_id = require_int(exclude, 'exclude') if exclude else None
    return _ok(grids.check_availability(teacher_id, day_index, period_index, exclude_grid_id=exclude_id))

@app.route('/timetables/section/<int:section_id>', methods=['GET'])
@capability_required('student_affairs')
def get_section_timetable(section_id):
    section = section_service.get_section(section_id, current_user().school_id)
    grid = grids.grid_for_section(section.id)
    if grid is None:
        raise NotFoundError('No timetable for this section')
    return _ok(grid.to_dict())

@app.route('/timetables/by-name/<path:section_name>', methods=['GET'])
@capability_required('student_affairs')
def get_timetable_by_name(section_name):
    section = grids.find_section_by_name(current_user().school_id, section_name)
    if section is None:
        raise NotFoundError('Section not found')
    grid = grids.grid_for_section(section.id)
    if grid is None:
        raise NotFoundError('No timetable for this section')
    return _ok(grid.to_dict())

@app.route('/timetables/<int:timetable_id>/slots', methods=['POST'])
@capability_required('student_affairs')
def assign_timetable_slot(timetable_id):
    data = _payload()
    grid = _grid_in_school(timetable_id)
    course_id, teacher_id = as_int(data.get('course_id')), as_int(data.get('teacher_id'))
    if course_id is None or teacher_id is None:
        raise ValidationError('courseId and teacherId are required')
    course = course_service.get_course(course_id, current_user().school_id)
    if not any(t.id == teacher_id for t in course.teachers):
        raise ValidationError('Teacher must be assigned to the course before being scheduled')
    grids.assign_slot(grid.id, data.get('day_index'), data.get('period_index'), course.id, teacher_id)
    return _ok(grid.to_dict(), 'Course assigned successfully')

@app.route('/timetables/clear-slot-by-section', methods=['POST'])
@capability_required('student_affairs')
def clear_slot_by_section():
    data = _payload()
    section = grids.find_section_by_name(current_user().school_id, data.get('section_name'))
    if section is None:
        raise NotFoundError('Section not found')
    grid = grids.grid_for_section(section.id)
    if grid is None:
        raise NotFoundError('Timetable not found')
    grids.clear_slot(grid.id, data.get('day_index'), data.get('period_index'))
    return _ok(grid.to_dict(), 'Slot cleared successfully')

@app.route('/timetables/check-section/<path:section_name>', methods=['GET'])
@capability_required('student_affairs')
def check_section_by_name(section_name):
    section = grids.find_section_by_name(current_user().school_id, section_name)
    if section is None:
        return _ok(msg='Section not found', exists=False)
    return _ok(section.to_dict(_now()), exists=True)

@app.route('/timetables/<int:timetable_id>/slots/<int:day_index>/<int:period_index>', methods=['DELETE'])
@capability_required('student_affairs')
def clear_timetable_slot(timetable_id, day_index, period_index):
    grid = _grid_in_school(timetable_id)
    grids.clear_slot(grid.id, day_index, period_index)
    return _ok(grid.to_dict(), 'Slot cleared successfully')

@app.route('/timetables/<int:timetable_id>/structure', methods=['PUT'])
@capability_required('student_affairs')
def update_timetable_structure(timetable_id):
    data = _payload()
    grid = _grid_in_school(timetable_id)
    grid, removed = grids.resize_grid(grid.id, data.get('days'), data.get('periods_per_day'))
    if removed:
        positions = ';'.join(f"{s['day_index']},{s['period_index']}" for s in removed)
        _audit('timetable_resize', f'timetable:{grid.id}',
               f'{grid.days}x{grid.periods_per_day},removed={positions}')
    return _ok(grid.to_dict(), 'Timetable structure updated successfully', removed=removed)

@app.route('/timetables/<int:timetable_id>', methods=['DELETE'])
@capability_required('student_affairs')
def delete_timetable(timetable_id):
    grid = _grid_in_school(timetable_id)
    section_id = grid.section_id
    grids.delete_grid(grid.id)
    _audit('timetable_delete', f'timetable:{timetable_id}', f'section={section_id}')
    return _ok(msg='Timetable deleted successfully')

# --- Quizzes ---
@app.route('/courses/<int:course_id>/quizzes', methods=['POST'])
@capability_required('author_quizzes')
def create_quiz(course_id):
    course = course_service.get_course(course_id, current_user().school_id)
    quiz = quiz_service.create_quiz(course, current_user(), _payload(), _now())
    return _ok(quiz.to_dict(include_answers=True), 'Quiz created and published successfully', 201)

@app.route('/courses/<int:course_id>/quizzes', methods=['GET'])
@login_required
def list_quizzes(course_id):
    course = course_service.get_course(course_id, current_user().school_id)
    now = _now()
    return _ok([q.to_dict(now=now) for q in quiz_service.visible_quizzes(course, current_user(), now)])

@app.route('/quizzes/<int:quiz_id>', methods=['GET'])
@login_required
def get_quiz(quiz_id):
    quiz = _quiz_in_school(quiz_id)
    if not quiz.is_published:
        raise ValidationError('This quiz is not published')
    show_answers = quiz_service.can_manage_quiz(current_user(), quiz.course)
    return _ok(quiz.to_dict(include_answers=show_answers, now=_now()))

@app.route('/quizzes/<int:quiz_id>/submit', methods=['POST'])
@capability_required('take_quizzes')
def submit_quiz(quiz_id):
    quiz = _quiz_in_school(quiz_id)
    submission = quiz_service.submit_quiz(quiz, current_user(), _payload().get('answers'), _now())
    return _ok(
        submission.to_dict(),
        'Quiz submitted and graded successfully',
        score=submission.score,
        total=quiz.total_marks,
        percentage=submission.percentage,
        attempt_number=submission.attempt_number,
        max_attempts=quiz.max_attempts,
        performance=quiz_service.performance_message(submission.percentage),
    )

@app.route('/quizzes/<int:quiz_id>/my-result', methods=['GET'])
@login_required
def my_quiz_result(quiz_id):
    quiz = _quiz_in_school(quiz_id)
    latest = quiz_service.latest_submission(quiz, current_user().id)
    return jsonify({'success': True, 'data': latest.to_dict() if latest else None}), 200

@app.route('/quizzes/<int:quiz_id>/submissions', methods=['GET'])
@login_required
def quiz_submissions(quiz_id):
    quiz = _quiz_in_school(quiz_id)
    if not quiz_service.can_manage_quiz(current_user(), quiz.course):
        raise PermissionDenied('Only course teachers or admins can view submissions')
    return _ok([s.to_dict() for s in quiz_service.latest_per_student(quiz)])

@app.route('/quizzes/<int:quiz_id>/attempts-remaining', methods=['GET'])
@login_required
def quiz_attempts_remaining(quiz_id):
    quiz = _quiz_in_school(quiz_id)
    return _ok(quiz_service.attempts_summary(quiz, current_user(), _now()))

@app.route('/quizzes/<int:quiz_id>/students/<int:student_id>/attempts', methods=['GET'])
@login_required
def quiz_student_attempts(quiz_id, student_id):
    quiz = _quiz_in_school(quiz_id)
    if not quiz_service.can_manage_quiz(current_user(), quiz.course):
        raise PermissionDenied('Only course teachers or admins can view student attempts')
    return _ok([s.to_dict() for s in quiz_service.student_submissions(quiz, student_id)])

# --- Notifications ---
@app.route('/notifications', methods=['GET'])
@login_required
def list_notifications():
    unread_only = request.args.get('unread', '').lower() in ('1', 'true', 'yes')
    entries = notification_service.notifications_for(current_user(), unread_only=unread_only)
    return _ok([e.to_dict() for e in entries])

@app.route('/notifications/<int:notification_id>/read', methods=['POST'])
@login_required
def read_notification(notification_id):
    entry = notification_service.mark_read(current_user(), notification_id, _now())
    return _ok(entry.to_dict())

# --- Audit ---
@app.route('/admin/audit')
@capability_required('view_audit')
def admin_audit():
    page = request.args.get('page', 1, type=int)
    action = request.args.get('action', '').strip()
    per_page = int(app.config.get('AUDIT_PAGE_SIZE', 50))
    q = AuditLog.query
    if action:
        q = q.filter(AuditLog.action == action)
    logs = q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset((max(page, 1) - 1) * per_page).limit(per_page).all()
    return _ok([log.to_dict() for log in logs], page=page)
