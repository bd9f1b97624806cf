"""
Custom exception classes
"""
from typing import Iterable, Optional

from fastapi import HTTPException


class CaseNotFoundError(HTTPException):
    """Raised when case doesn't exist (or was soft-deleted)"""
    def __init__(self, case_id: str):
        super().__init__(
            status_code=404,
            detail={"code": "CASE_NOT_FOUND", "message": f"Case {case_id} not found"},
        )


class UnauthorizedError(HTTPException):
    """Raised when user doesn't own resource or lacks the required role"""
    def __init__(self, message: str = "You don't have permission to access this resource"):
        super().__init__(
            status_code=403,
            detail={"code": "FORBIDDEN", "message": message},
        )


class MissingTimezoneError(HTTPException):
    """Raised when a schedule is submitted without the submitter's UTC offset"""
    def __init__(self):
        super().__init__(
            status_code=422,
            detail={
                "code": "MISSING_TIMEZONE",
                "message": "timezone_offset_minutes is required to set a trial schedule",
            },
        )


class InvalidScheduleError(HTTPException):
    """Raised when schedule values cannot be interpreted"""
    def __init__(self, reason: str):
        super().__init__(
            status_code=422,
            detail={"code": "INVALID_SCHEDULE", "message": reason},
        )


class ScheduleLockedError(HTTPException):
    """Raised when rescheduling a case that has already entered the war room"""
    def __init__(self, current_status: str):
        super().__init__(
            status_code=409,
            detail={
                "code": "SCHEDULE_LOCKED",
                "message": "Trial schedule can no longer be changed",
                "currentStatus": current_status,
            },
        )


class InvalidTransitionError(HTTPException):
    """Raised when a requested lifecycle change doesn't apply to the current status"""
    def __init__(self, message: str, current_status: Optional[str] = None):
        detail = {"code": "INVALID_TRANSITION", "message": message}
        if current_status is not None:
            detail["currentStatus"] = current_status
        super().__init__(status_code=409, detail=detail)


class AccessDeniedError(HTTPException):
    """Raised by the access gate; carries a specific reason code for the client"""
    def __init__(
        self,
        code: str,
        message: str,
        current_status: Optional[str] = None,
        allowed_statuses: Optional[Iterable[str]] = None,
    ):
        detail = {"code": code, "message": message}
        if current_status is not None:
            detail["currentStatus"] = current_status
        if allowed_statuses is not None:
            detail["allowedStatuses"] = list(allowed_statuses)
        super().__init__(status_code=403, detail=detail)


# ============================================================================
# Scheduler-internal errors (never surfaced to an HTTP caller)
# ============================================================================

class StoreUnavailableError(Exception):
    """The case store could not complete a query or update"""


class MalformedCaseError(Exception):
    """A case row cannot be evaluated (e.g. missing scheduled instant)"""
    def __init__(self, case_id, reason: str):
        super().__init__(f"Case {case_id} is malformed: {reason}")
        self.case_id = case_id
        self.reason = reason
