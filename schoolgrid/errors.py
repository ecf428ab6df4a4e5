class SchoolGridError(Exception):
    """Base error surfaced to API callers as ``{"success": false, "msg": ...}``."""
    status_code = 500

    def __init__(self, message, payload=None):
        super().__init__(message)
        self.message = message
        self.payload = payload

    def to_dict(self):
        body = {"success": False, "msg": self.message}
        if self.payload is not None:
            body["data"] = self.payload
        return body


class ValidationError(SchoolGridError):
    status_code = 400


class RangeError(ValidationError):
    """Slot indices outside the grid's current bounds."""


class PermissionDenied(SchoolGridError):
    status_code = 403


class NotFoundError(SchoolGridError):
    status_code = 404


class ConflictError(SchoolGridError):
    status_code = 409


class TeacherConflictError(ConflictError):
    def __init__(self, teacher_id, section_id, day_index, period_index):
        super().__init__(
            'Teacher already assigned to another section at this time',
            payload={
                "teacherId": teacher_id,
                "section": section_id,
                "dayIndex": day_index,
                "periodIndex": period_index,
            },
        )
