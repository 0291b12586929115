"""Per-user tracking and enrollment models."""

from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from lms_content.db.base import Base
from lms_content.models.content import new_id


class TrackingStatus(str, PyEnum):
    NOT_STARTED = "NOT_STARTED"
    STARTED = "STARTED"
    INCOMPLETE = "INCOMPLETE"
    COMPLETED = "COMPLETED"


class EnrollmentStatus(str, PyEnum):
    PUBLISHED = "published"
    UNPUBLISHED = "unpublished"
    ARCHIVED = "archived"


def _status_column(enum_cls: type[PyEnum], name: str, default: PyEnum) -> Column:
    return Column(
        Enum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e], native_enum=False),
        nullable=False,
        default=default,
    )


class CourseTrack(Base):
    """Course-level tracking with persisted lesson counters."""

    __tablename__ = "course_tracks"

    course_track_id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=True)
    organisation_id = Column(String(36), nullable=True)
    course_id = Column(String(36), ForeignKey("courses.course_id"), nullable=False)
    user_id = Column(String(36), nullable=False)
    start_datetime = Column(DateTime(timezone=True), nullable=True)
    end_datetime = Column(DateTime(timezone=True), nullable=True)
    no_of_lessons = Column(Integer, nullable=True, default=0)
    completed_lessons = Column(Integer, nullable=True, default=0)
    status = _status_column(TrackingStatus, "course_track_status", TrackingStatus.INCOMPLETE)
    last_accessed_date = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_course_tracks_user_course"),)


class LessonTrack(Base):
    """One attempt of one user at one lesson inside a course."""

    __tablename__ = "lesson_tracks"

    lesson_track_id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=True)
    organisation_id = Column(String(36), nullable=True)
    lesson_id = Column(String(36), ForeignKey("lessons.lesson_id"), nullable=False)
    course_id = Column(String(36), ForeignKey("courses.course_id"), nullable=False)
    user_id = Column(String(36), nullable=False)
    attempt = Column(Integer, nullable=False, default=1)
    start_datetime = Column(DateTime(timezone=True), nullable=True)
    end_datetime = Column(DateTime(timezone=True), nullable=True)
    score = Column(Integer, nullable=True)
    status = _status_column(TrackingStatus, "lesson_track_status", TrackingStatus.STARTED)
    current_position = Column(Float, nullable=False, default=0.0)  # fraction in [0, 1]
    time_spent = Column(Integer, nullable=True, default=0)  # seconds
    params = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "lesson_id", "course_id", "attempt", name="uq_lesson_tracks_attempt"),
        Index("ix_lesson_tracks_user_course", "user_id", "course_id"),
    )


class UserEnrollment(Base):
    """A learner's enrollment in a course."""

    __tablename__ = "user_enrollments"

    enrollment_id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=True)
    organisation_id = Column(String(36), nullable=True)
    course_id = Column(String(36), ForeignKey("courses.course_id"), nullable=False)
    user_id = Column(String(36), nullable=False)
    status = _status_column(EnrollmentStatus, "enrollment_status", EnrollmentStatus.PUBLISHED)
    enrolled_by = Column(String(36), nullable=True)
    enrolled_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    params = Column(JSON, nullable=True)

    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_user_enrollments_user_course"),)
