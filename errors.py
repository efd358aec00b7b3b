"""Error kinds raised by the scheduling core and the storage layer."""


class SchedulingError(Exception):
    status_code = 400
    kind = 'error'

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        body = {'status': 'error', 'kind': self.kind, 'message': self.message}
        if self.details:
            body['details'] = self.details
        return body


class InvalidFormat(SchedulingError, ValueError):
    kind = 'invalid_format'


class InvalidRange(SchedulingError, ValueError):
    kind = 'invalid_range'


class NotFound(SchedulingError, LookupError):
    status_code = 404
    kind = 'not_found'


class UnknownSlot(NotFound):
    kind = 'unknown_slot'


class NotConfigured(SchedulingError):
    status_code = 422
    kind = 'not_configured'


class Transient(SchedulingError):
    """Database busy or timed out. Safe to retry with backoff."""
    status_code = 503
    kind = 'transient'


class Conflict(SchedulingError):
    """The class, teacher or room is already booked at that time.

    Do not retry blindly; check availability again first.
    """
    status_code = 409
    kind = 'conflict'

    def __init__(self, message, conflicts=None, **details):
        super().__init__(message, **details)
        self.conflicts = list(conflicts or [])

    def to_dict(self):
        body = super().to_dict()
        body['conflicts'] = self.conflicts
        return body
