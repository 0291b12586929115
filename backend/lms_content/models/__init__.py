"""Database models."""

from lms_content.models.content import (
    Course,
    CourseLesson,
    CourseStatus,
    Lesson,
    LessonFormat,
    LessonStatus,
    Module,
    ModuleStatus,
    new_id,
)
from lms_content.models.tracking import (
    CourseTrack,
    EnrollmentStatus,
    LessonTrack,
    TrackingStatus,
    UserEnrollment,
)

__all__ = [
    "Course",
    "CourseStatus",
    "Module",
    "ModuleStatus",
    "Lesson",
    "LessonFormat",
    "LessonStatus",
    "CourseLesson",
    "CourseTrack",
    "LessonTrack",
    "TrackingStatus",
    "UserEnrollment",
    "EnrollmentStatus",
    "new_id",
]
