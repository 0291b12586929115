"""Content models: Course, Module, Lesson and the course-lesson association."""

import uuid
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from lms_content.db.base import Base


def new_id() -> str:
    return str(uuid.uuid4())


class CourseStatus(str, PyEnum):
    UNPUBLISHED = "unpublished"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class ModuleStatus(str, PyEnum):
    UNPUBLISHED = "unpublished"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class LessonStatus(str, PyEnum):
    UNPUBLISHED = "unpublished"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class LessonFormat(str, PyEnum):
    VIDEO = "video"
    DOCUMENT = "document"
    QUIZ = "test"
    EVENT = "event"
    EXTERNAL = "external"


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    # Store values ("published"), not member names
    return Enum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e], native_enum=False)


class Course(Base):
    """Course model."""

    __tablename__ = "courses"

    course_id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=True, index=True)
    organisation_id = Column(String(36), nullable=True, index=True)
    title = Column(String(255), nullable=False)
    alias = Column(String(255), nullable=True)
    short_description = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    image = Column(String(1024), nullable=True)
    featured = Column(Boolean, nullable=False, default=False)
    free = Column(Boolean, nullable=False, default=False)
    status = Column(_enum(CourseStatus, "course_status"), nullable=False, default=CourseStatus.UNPUBLISHED)
    start_datetime = Column(DateTime(timezone=True), nullable=True)
    end_datetime = Column(DateTime(timezone=True), nullable=True)
    params = Column(JSON, nullable=True)
    created_by = Column(String(36), nullable=True)
    updated_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    __table_args__ = (Index("ix_courses_tenant_org_status", "tenant_id", "organisation_id", "status"),)


class Module(Base):
    """Module model. ``parent_id`` null means top-level; submodules nest one level."""

    __tablename__ = "modules"

    module_id = Column(String(36), primary_key=True, default=new_id)
    course_id = Column(String(36), ForeignKey("courses.course_id"), nullable=False, index=True)
    parent_id = Column(String(36), ForeignKey("modules.module_id"), nullable=True, index=True)
    tenant_id = Column(String(36), nullable=True)
    organisation_id = Column(String(36), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    image = Column(String(1024), nullable=True)
    ordering = Column(Integer, nullable=False, default=0)
    status = Column(_enum(ModuleStatus, "module_status"), nullable=False, default=ModuleStatus.UNPUBLISHED)
    badge_term = Column(JSON, nullable=True)
    created_by = Column(String(36), nullable=True)
    updated_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    __table_args__ = (Index("ix_modules_course_parent_ordering", "course_id", "parent_id", "ordering"),)


class Lesson(Base):
    """Lesson model."""

    __tablename__ = "lessons"

    lesson_id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=True, index=True)
    organisation_id = Column(String(36), nullable=True)
    title = Column(String(255), nullable=False)
    alias = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    format = Column(_enum(LessonFormat, "lesson_format"), nullable=False, default=LessonFormat.DOCUMENT)
    image = Column(String(1024), nullable=True)
    ideal_time = Column(Integer, nullable=True)  # minutes
    free_lesson = Column(Boolean, nullable=False, default=False)
    status = Column(_enum(LessonStatus, "lesson_status"), nullable=False, default=LessonStatus.UNPUBLISHED)
    params = Column(JSON, nullable=True)
    created_by = Column(String(36), nullable=True)
    updated_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)


class CourseLesson(Base):
    """Placement of a lesson inside a course module, with per-placement overrides."""

    __tablename__ = "course_lessons"

    course_lesson_id = Column(String(36), primary_key=True, default=new_id)
    course_id = Column(String(36), ForeignKey("courses.course_id"), nullable=False, index=True)
    module_id = Column(String(36), ForeignKey("modules.module_id"), nullable=False, index=True)
    lesson_id = Column(String(36), ForeignKey("lessons.lesson_id"), nullable=False, index=True)
    tenant_id = Column(String(36), nullable=True)
    organisation_id = Column(String(36), nullable=True)
    ordering = Column(Integer, nullable=False, default=0)
    status = Column(_enum(LessonStatus, "course_lesson_status"), nullable=False, default=LessonStatus.PUBLISHED)
    free_lesson = Column(Boolean, nullable=True)
    ideal_time = Column(Integer, nullable=True)
    consider_for_passing = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    __table_args__ = (
        UniqueConstraint("module_id", "lesson_id", name="uq_course_lessons_module_lesson"),
        Index("ix_course_lessons_module_ordering", "module_id", "ordering"),
    )
