"""Quiz authoring, auto-grading and attempt gating.

Attempts per (student, quiz) move NoAttempt -> Attempted(n) and from there to
Attempted(n+1), Exhausted or CoolingDown. ``evaluate_attempt`` decides the
transition; ``submit_quiz`` grades and records it.
"""
import logging
from collections import namedtuple
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from schoolgrid import app, db
from schoolgrid.errors import ValidationError, PermissionDenied, ConflictError
from schoolgrid.models import Quiz, QuizQuestion, QuizSubmission, QuizAnswer
from schoolgrid.notifications import notify_quiz_published
from schoolgrid.utils import as_int, parse_datetime

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

AttemptDecision = namedtuple('AttemptDecision', ['allowed', 'state', 'attempt_number', 'message'])

PERFORMANCE_BANDS = (
    (90, 'Excellent!'),
    (80, 'Very Good!'),
    (70, 'Good!'),
    (60, 'Satisfactory'),
    (50, 'Needs Improvement'),
)


def performance_message(percentage):
    for floor, label in PERFORMANCE_BANDS:
        if percentage >= floor:
            return label
    return 'Keep Practicing'


def can_manage_quiz(user, course):
    return user.role == 'admin' or course.is_taught_by(user)


def _number(value, field):
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be a number')
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')


def _validate_questions(questions):
    if not isinstance(questions, list) or not questions:
        raise ValidationError('Title, questions and totalMarks are required')
    cleaned = []
    for i, q in enumerate(questions):
        if not isinstance(q, dict):
            raise ValidationError(f'Invalid question at index {i}')
        text = (q.get('question') or '').strip() if isinstance(q.get('question'), str) else ''
        options = q.get('options')
        correct = q.get('correct_answer')
        if not text or not isinstance(options, list) or len(options) < 2 or isinstance(correct, bool) or not isinstance(correct, int):
            raise ValidationError(f'Invalid question at index {i}')
        if correct < 0 or correct >= len(options):
            raise ValidationError(f'correctAnswer out of range at question {i}')
        marks = q.get('marks', 1)
        cleaned.append({'text': text, 'options': [str(o) for o in options],
                        'correct_answer': correct, 'marks': _number(marks, f'marks at question {i}')})
    return cleaned


def create_quiz(course, author, data, now):
    if not can_manage_quiz(author, course):
        raise PermissionDenied('Only course teachers or admins can create quizzes')
    title = (data.get('title') or '').strip()
    total_marks = data.get('total_marks')
    if not title or not total_marks:
        raise ValidationError('Title, questions and totalMarks are required')
    total_marks = _number(total_marks, 'totalMarks')
    if total_marks <= 0:
        raise ValidationError('totalMarks must be greater than zero')
    questions = _validate_questions(data.get('questions'))

    visible_until = parse_datetime(data.get('visible_until'), 'visible_until')
    if visible_until is not None and visible_until <= now:
        raise ValidationError('End date must be in the future')

    max_attempts = as_int(data.get('max_attempts', 1))
    if max_attempts is None or max_attempts < 1:
        raise ValidationError('Max attempts must be at least 1')

    policy = data.get('retake_policy') or {}
    if max_attempts > 1:
        allow_retake = bool(policy.get('allow_retake', False))
        min_score = _number(policy.get('min_score_to_pass', app.config['QUIZ_DEFAULT_MIN_SCORE_TO_PASS']), 'minScoreToPass')
        gap_days = _number(policy.get('days_between_attempts', app.config['QUIZ_DEFAULT_DAYS_BETWEEN_ATTEMPTS']), 'daysBetweenAttempts')
        if min_score < 0 or min_score > 100:
            raise ValidationError('Minimum pass score must be between 0-100%')
        if gap_days < 0:
            raise ValidationError('Days between attempts cannot be negative')
    else:
        # Single-attempt quizzes always carry the default policy
        allow_retake = False
        min_score = app.config['QUIZ_DEFAULT_MIN_SCORE_TO_PASS']
        gap_days = app.config['QUIZ_DEFAULT_DAYS_BETWEEN_ATTEMPTS']

    duration = as_int(data.get('duration_minutes')) if data.get('duration_minutes') else None
    quiz = Quiz(course_id=course.id, school_id=course.school_id, title=title,
                description=data.get('description'), quiz_type=data.get('type') or 'mcq',
                total_marks=total_marks, duration_minutes=duration,
                visible_from=now, visible_until=visible_until, max_attempts=max_attempts,
                allow_retake=allow_retake, min_score_to_pass=min_score,
                days_between_attempts=gap_days, is_published=True, created_by=author.id)
    for position, q in enumerate(questions):
        quiz.questions.append(QuizQuestion(position=position, text=q['text'], options=q['options'],
                                           correct_answer=q['correct_answer'], marks=q['marks']))
    db.session.add(quiz)
    db.session.commit()

    if app.config.get('QUIZ_NOTIFY_STUDENTS', True):
        try:
            notify_quiz_published(quiz, course, author)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning(f"Failed to create quiz notifications for course {course.id}: {e}")
    return quiz


def grade_answers(quiz, answers):
    """Grade selected option indexes against the quiz's questions.

    Returns (score, percentage, graded) where ``graded`` is one dict per
    question. A question with no positive mark value is worth an equal share
    of the quiz total.
    """
    questions = list(quiz.questions)
    if not questions:
        raise ValidationError('Quiz has no questions')
    if not isinstance(answers, list):
        raise ValidationError('Answers array is required')
    if len(answers) != len(questions):
        raise ValidationError(f'Expected {len(questions)} answers, got {len(answers)}')

    equal_share = round(quiz.total_marks / len(questions), 2)
    total = 0
    graded = []
    for i, (question, selected) in enumerate(zip(questions, answers)):
        if isinstance(selected, bool) or not isinstance(selected, int) or not 0 <= selected < len(question.options):
            raise ValidationError(f'Invalid answer for question {i + 1}')
        worth = question.marks if question.marks > 0 else equal_share
        is_correct = selected == question.correct_answer
        awarded = worth if is_correct else 0
        total += awarded
        graded.append({
            'question_index': i,
            'selected_option': selected,
            'correct_answer': question.correct_answer,
            'is_correct': is_correct,
            'marks_awarded': awarded,
            'question_marks': worth,
        })
    score = min(total, quiz.total_marks)
    percentage = round(score / quiz.total_marks * 100, 1)
    return score, percentage, graded


def student_submissions(quiz, student_id):
    return (QuizSubmission.query.filter_by(quiz_id=quiz.id, student_id=student_id)
            .order_by(QuizSubmission.attempt_number.asc()).all())


def evaluate_attempt(quiz, submissions, now):
    """Decide whether another attempt may start at ``now``."""
    used = max((s.attempt_number for s in submissions), default=0)
    if not quiz.is_published:
        return AttemptDecision(False, 'closed', None, 'This quiz is not published')
    if quiz.visible_from is not None and now < quiz.visible_from:
        return AttemptDecision(False, 'not_open', None, 'Quiz has not started yet')
    if quiz.is_expired(now):
        return AttemptDecision(False, 'closed', None, 'Quiz deadline has passed')
    if used >= quiz.max_attempts:
        return AttemptDecision(False, 'exhausted', None,
                               f'Maximum attempts ({quiz.max_attempts}) reached for this quiz')
    if used == 0:
        return AttemptDecision(True, 'no_attempt', 1, 'Quiz available')
    if not quiz.allow_retake:
        return AttemptDecision(False, 'retake_disabled', None, 'Retakes are not allowed for this quiz')

    best = max(s.percentage for s in submissions)
    if best >= quiz.min_score_to_pass:
        return AttemptDecision(False, 'passed', None, f'You already passed this quiz with {best:.1f}% score')

    last = max(submissions, key=lambda s: s.attempt_number)
    elapsed_days = (now - last.submitted_at).total_seconds() / SECONDS_PER_DAY
    if elapsed_days < quiz.days_between_attempts:
        remaining = quiz.days_between_attempts - elapsed_days
        return AttemptDecision(False, 'cooling_down', None,
                               f'Please wait {remaining:.1f} more days before attempting again')
    return AttemptDecision(True, 'attempted', used + 1, 'Retake available')


def submit_quiz(quiz, student, answers, now):
    decision = evaluate_attempt(quiz, student_submissions(quiz, student.id), now)
    if not decision.allowed:
        raise ValidationError(decision.message, payload={'state': decision.state})
    score, percentage, graded = grade_answers(quiz, answers)

    submission = QuizSubmission(quiz_id=quiz.id, course_id=quiz.course_id, student_id=student.id,
                                score=score, percentage=percentage, total_marks=quiz.total_marks,
                                attempt_number=decision.attempt_number, submitted_at=now)
    for row in graded:
        submission.answers.append(QuizAnswer(**row))
    db.session.add(submission)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError('Duplicate submission detected. Please refresh and try again.')
    logger.info(f"Quiz submitted: student {student.id}, quiz {quiz.id}, score {score}/{quiz.total_marks} ({percentage}%)")
    return submission


def latest_submission(quiz, student_id):
    return (QuizSubmission.query.filter_by(quiz_id=quiz.id, student_id=student_id)
            .order_by(QuizSubmission.attempt_number.desc()).first())


def latest_per_student(quiz):
    latest = {}
    for sub in QuizSubmission.query.filter_by(quiz_id=quiz.id).all():
        current = latest.get(sub.student_id)
        if current is None or sub.attempt_number > current.attempt_number:
            latest[sub.student_id] = sub
    return sorted(latest.values(), key=lambda s: s.submitted_at, reverse=True)


def attempts_summary(quiz, student, now):
    submissions = student_submissions(quiz, student.id)
    used = len(submissions)
    decision = evaluate_attempt(quiz, submissions, now)
    return {
        'attempts_used': used,
        'attempts_remaining': max(0, quiz.max_attempts - used),
        'max_attempts': quiz.max_attempts,
        'can_retake': decision.allowed,
        'state': decision.state,
        'retake_message': '' if decision.allowed else decision.message,
        'retake_policy': quiz.retake_policy,
    }


def visible_quizzes(course, user, now):
    q = Quiz.query.filter_by(course_id=course.id, is_published=True)
    if user.role not in ('teacher', 'admin'):
        q = q.filter((Quiz.visible_until.is_(None)) | (Quiz.visible_until >= now))
    return q.order_by(Quiz.created_at.desc(), Quiz.id.desc()).all()
