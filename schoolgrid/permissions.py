from schoolgrid import db
from schoolgrid.clock import utcnow
from schoolgrid.errors import ConflictError, NotFoundError, ValidationError, PermissionDenied
from schoolgrid.models import Permission, User, GRANTABLE_PERMISSIONS

ALL_CAPABILITIES = frozenset([
    'student_affairs',
    'accounts_office',
    'manage_permissions',
    'manage_sections',
    'manage_courses',
    'author_quizzes',
    'take_quizzes',
    'view_timetable',
    'view_audit',
])

# Capabilities a role holds without any explicit grant. Grants from the
# Permission table are added on top (student_affairs, accounts_office).
ROLE_CAPABILITIES = {
    'admin':   ALL_CAPABILITIES,
    'faculty': frozenset(['view_timetable']),
    'teacher': frozenset(['author_quizzes', 'view_timetable']),
    'student': frozenset(['take_quizzes', 'view_timetable']),
    'parent':  frozenset(['view_timetable']),
}

# Granted permissions that imply further capabilities
GRANT_IMPLIES = {
    'student_affairs': frozenset(['student_affairs', 'manage_sections', 'manage_courses']),
    'accounts_office': frozenset(['accounts_office']),
}


def capabilities_for(user):
    if user is None:
        return frozenset()
    caps = set(ROLE_CAPABILITIES.get(user.role, ()))
    for p in user.permissions:
        if p.is_active:
            caps |= GRANT_IMPLIES.get(p.permission, frozenset([p.permission]))
    return frozenset(caps)


def has_capability(user, capability):
    return capability in capabilities_for(user)


def grant_permission(granter, user_id, permission):
    if permission not in GRANTABLE_PERMISSIONS:
        raise ValidationError(f"Unknown permission '{permission}'")
    user = db.session.get(User, user_id)
    if not user or user.school_id != granter.school_id:
        raise NotFoundError('User not found')
    if user.role not in ('faculty', 'teacher'):
        raise ValidationError('Permissions can only be granted to faculty or teachers')
    existing = Permission.query.filter_by(user_id=user.id, permission=permission, is_active=True).first()
    if existing:
        raise ConflictError(f"User already holds active '{permission}' permission")
    grant = Permission(user_id=user.id, school_id=granter.school_id, permission=permission, granted_by=granter.id)
    db.session.add(grant)
    db.session.commit()
    return grant


def revoke_permission(revoker, permission_id):
    grant = db.session.get(Permission, permission_id)
    if not grant or grant.school_id != revoker.school_id:
        raise NotFoundError('Permission not found')
    if not grant.is_active:
        raise ConflictError('Permission already revoked')
    if grant.user_id == revoker.id:
        raise PermissionDenied('You cannot revoke your own permission')
    grant.is_active = False
    grant.revoked_at = utcnow()
    db.session.commit()
    return grant
