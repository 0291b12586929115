"""Application-specific exceptions for consistent error handling."""

from typing import Any

from fastapi import HTTPException, status


class AppError(HTTPException):
    """Application error with standardized error code."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | list[Any] | None = None,
    ):
        """Initialize application error."""
        super().__init__(
            status_code=status_code,
            detail={
                "code": code,
                "message": message,
                "details": details,
            },
        )
        self.code = code
        self.message = message
        self.details = details


class NotFoundError(AppError):
    """Entity missing, archived, or outside the caller's tenant/organisation."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(status.HTTP_404_NOT_FOUND, code, message, details)


class InvalidStateError(AppError):
    """Operation cannot run against the current state of the content."""

    def __init__(self, message: str, details: dict[str, Any] | None = None, code: str = "INVALID_STATE"):
        super().__init__(status.HTTP_409_CONFLICT, code, message, details)


class CacheUnavailableError(Exception):
    """Backend failure inside the cache layer. Never leaves CacheService."""

    def __init__(self, operation: str, target: str, cause: Exception):
        super().__init__(f"cache {operation} failed for {target}: {cause}")
        self.operation = operation
        self.target = target
        self.cause = cause


def course_not_found(course_id: str) -> NotFoundError:
    return NotFoundError("COURSE_NOT_FOUND", "Course not found", {"course_id": course_id})


def module_not_found(module_id: str) -> NotFoundError:
    return NotFoundError("MODULE_NOT_FOUND", "Module not found", {"module_id": module_id})


def lesson_not_found(lesson_id: str) -> NotFoundError:
    return NotFoundError("LESSON_NOT_FOUND", "Lesson not found", {"lesson_id": lesson_id})


def enrollment_not_found(enrollment_id: str) -> NotFoundError:
    return NotFoundError("ENROLLMENT_NOT_FOUND", "Enrollment not found", {"enrollment_id": enrollment_id})
