"""Schemas for courses, modules, lessons and enrollments."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from lms_content.models import CourseStatus, EnrollmentStatus, LessonFormat, LessonStatus, ModuleStatus


class CourseRead(BaseModel):
    course_id: str
    tenant_id: Optional[str] = None
    organisation_id: Optional[str] = None
    title: str
    alias: Optional[str] = None
    short_description: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    featured: bool = False
    free: bool = False
    status: CourseStatus
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None
    params: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CourseSummary(CourseRead):
    """Search row: a course plus its non-archived module count."""

    module_count: int = 0


class CourseSearchFilters(BaseModel):
    """Search filters. Field order is irrelevant to the cache key."""

    query: Optional[str] = None
    status: Optional[CourseStatus] = None
    featured: Optional[bool] = None
    free: Optional[bool] = None
    created_by: Optional[str] = None
    start_date_from: Optional[datetime] = None
    start_date_to: Optional[datetime] = None
    end_date_from: Optional[datetime] = None
    end_date_to: Optional[datetime] = None
    sort_by: str = "created_at"
    order_by: str = "desc"


class CourseSearchResponse(BaseModel):
    courses: list[CourseSummary]
    total_elements: int
    offset: int
    limit: int


class ModuleRead(BaseModel):
    module_id: str
    course_id: str
    parent_id: Optional[str] = None
    tenant_id: Optional[str] = None
    organisation_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    image: Optional[str] = None
    ordering: int = 0
    status: ModuleStatus
    badge_term: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ModuleOrder(BaseModel):
    module_id: str
    ordering: int = Field(..., ge=0)


class LessonRead(BaseModel):
    lesson_id: str
    tenant_id: Optional[str] = None
    organisation_id: Optional[str] = None
    title: str
    alias: Optional[str] = None
    description: Optional[str] = None
    format: LessonFormat
    image: Optional[str] = None
    ideal_time: Optional[int] = None
    free_lesson: bool = False
    status: LessonStatus
    params: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EnrollmentRead(BaseModel):
    enrollment_id: str
    tenant_id: Optional[str] = None
    organisation_id: Optional[str] = None
    course_id: str
    user_id: str
    status: EnrollmentStatus
    enrolled_by: Optional[str] = None
    enrolled_at: Optional[datetime] = None
    end_time: Optional[datetime] = None
    params: Optional[dict[str, Any]] = None

    class Config:
        from_attributes = True


class EnrollmentListResponse(BaseModel):
    enrollments: list[EnrollmentRead]
    total_elements: int
    offset: int
    limit: int


# ============================================================================
# Write payloads
# ============================================================================


class CourseCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    alias: Optional[str] = None
    short_description: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    featured: bool = False
    free: bool = False
    status: CourseStatus = CourseStatus.UNPUBLISHED
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None
    params: Optional[dict[str, Any]] = None


class CourseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    alias: Optional[str] = None
    short_description: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    featured: Optional[bool] = None
    free: Optional[bool] = None
    status: Optional[CourseStatus] = None
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None
    params: Optional[dict[str, Any]] = None


class ModuleCreate(BaseModel):
    course_id: str
    parent_id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    image: Optional[str] = None
    ordering: int = Field(0, ge=0)
    status: ModuleStatus = ModuleStatus.UNPUBLISHED
    badge_term: Optional[dict[str, Any]] = None


class ModuleUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    image: Optional[str] = None
    ordering: Optional[int] = Field(None, ge=0)
    status: Optional[ModuleStatus] = None
    badge_term: Optional[dict[str, Any]] = None


class LessonCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    alias: Optional[str] = None
    description: Optional[str] = None
    format: LessonFormat = LessonFormat.DOCUMENT
    image: Optional[str] = None
    ideal_time: Optional[int] = Field(None, ge=0)
    free_lesson: bool = False
    status: LessonStatus = LessonStatus.UNPUBLISHED
    params: Optional[dict[str, Any]] = None


class LessonUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    alias: Optional[str] = None
    description: Optional[str] = None
    format: Optional[LessonFormat] = None
    image: Optional[str] = None
    ideal_time: Optional[int] = Field(None, ge=0)
    free_lesson: Optional[bool] = None
    status: Optional[LessonStatus] = None
    params: Optional[dict[str, Any]] = None


class LessonAttach(BaseModel):
    """Placement of an existing lesson inside a module."""

    ordering: int = Field(0, ge=0)
    free_lesson: Optional[bool] = None
    ideal_time: Optional[int] = Field(None, ge=0)
    consider_for_passing: bool = True


class EnrollmentCreate(BaseModel):
    course_id: str
    user_id: str
    enrolled_by: Optional[str] = None
    end_time: Optional[datetime] = None
    params: Optional[dict[str, Any]] = None


class EnrollmentUpdate(BaseModel):
    status: Optional[EnrollmentStatus] = None
    end_time: Optional[datetime] = None
    params: Optional[dict[str, Any]] = None


class EnrollmentFilters(BaseModel):
    user_id: Optional[str] = None
    course_id: Optional[str] = None
    status: Optional[EnrollmentStatus] = None
