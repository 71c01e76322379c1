"""Scheduling domain errors

Each error carries the acknowledgement ``reason`` sent back to the
connection that issued the failing command.
"""


class SchedulingError(Exception):
    """Base class for command failures that leave state unchanged"""

    reason = "error"

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail


class AuthorizationError(SchedulingError):
    """Actor role (or identity) does not allow the command"""

    reason = "denied"


class NotFoundError(SchedulingError):
    """Referenced slot or request id does not exist"""

    reason = "not_found"


class PreconditionFailedError(SchedulingError):
    """State changed or never allowed the transition"""

    reason = "conflict"


class InvalidCommandError(SchedulingError):
    """Malformed or unknown command payload"""

    reason = "invalid"


class PersistenceError(SchedulingError):
    """Storage unavailable; the operation was aborted"""

    reason = "persistence"
