"""In-app notification records. Nothing here sends email or push."""
from schoolgrid import db
from schoolgrid.errors import NotFoundError
from schoolgrid.models import Notification, NotificationRecipient


def course_student_ids(course):
    ids = {s.id for s in course.students if s.role == 'student'}
    if course.section is not None:
        ids |= {s.id for s in course.section.students if s.role == 'student'}
    return sorted(ids)


def notify_quiz_published(quiz, course, sender):
    recipients = course_student_ids(course)
    note = Notification(
        school_id=course.school_id,
        sender_id=sender.id,
        title=f'New quiz: {quiz.title}',
        message=f'A new quiz "{quiz.title}" has been published in {course.name}.',
        type='assignment',
        course_id=course.id,
        quiz_id=quiz.id,
    )
    for user_id in recipients:
        note.recipients.append(NotificationRecipient(user_id=user_id))
    db.session.add(note)
    db.session.commit()
    return note


def notifications_for(user, unread_only=False):
    q = NotificationRecipient.query.filter_by(user_id=user.id).join(Notification)
    if unread_only:
        q = q.filter(NotificationRecipient.read_at.is_(None))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).all()


def mark_read(user, notification_id, now):
    entry = NotificationRecipient.query.filter_by(user_id=user.id, notification_id=notification_id).first()
    if entry is None:
        raise NotFoundError('Notification not found')
    if entry.read_at is None:
        entry.read_at = now
        db.session.commit()
    return entry
