"""Schemas for the course hierarchy view and the tracked (per-user) view."""

from datetime import datetime
from enum import Enum
from typing import Any, Iterator, Optional

from pydantic import BaseModel, Field

from lms_content.models import LessonFormat, TrackingStatus


class NodeKind(str, Enum):
    COURSE = "course"
    MODULE = "module"
    SUBMODULE = "submodule"


# ============================================================================
# Hierarchy view (no user state)
# ============================================================================


class LessonRef(BaseModel):
    """A lesson placement with the lesson's display fields copied in."""

    lesson_id: str
    course_lesson_id: str
    module_id: str
    ordering: int = 0
    title: str
    description: Optional[str] = None
    format: LessonFormat
    image: Optional[str] = None
    ideal_time: Optional[int] = None
    free_lesson: bool = False
    consider_for_passing: bool = True


class HierarchyNode(BaseModel):
    """Course, module or submodule node."""

    id: str
    kind: NodeKind
    attributes: dict[str, Any] = Field(default_factory=dict)
    children: list["HierarchyNode"] = Field(default_factory=list)
    lessons: list[LessonRef] = Field(default_factory=list)

    def iter_lessons(self) -> Iterator[LessonRef]:
        """Own lessons first, then each child's, depth first."""
        yield from self.lessons
        for child in self.children:
            yield from child.iter_lessons()

    def lesson_count(self) -> int:
        return sum(1 for _ in self.iter_lessons())


HierarchyNode.model_rebuild()


# ============================================================================
# Tracked view
# ============================================================================


class LessonAttempt(BaseModel):
    attempt_id: str
    attempt_number: int = 1
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None
    current_position: float = 0.0


class LessonProgress(BaseModel):
    status: TrackingStatus = TrackingStatus.NOT_STARTED
    progress: int = 0
    last_accessed: Optional[datetime] = None
    time_spent: int = 0
    score: Optional[int] = None
    attempt: Optional[LessonAttempt] = None


class ModuleProgress(BaseModel):
    status: TrackingStatus = TrackingStatus.NOT_STARTED
    progress: int = 0
    completed_lessons: int = 0
    total_lessons: int = 0
    last_accessed: Optional[datetime] = None


class CourseProgress(BaseModel):
    status: TrackingStatus = TrackingStatus.NOT_STARTED
    progress: int = 0
    completed_lessons: int = 0
    total_lessons: int = 0
    last_accessed: Optional[datetime] = None
    time_spent: int = 0
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None


class TrackedLesson(LessonRef):
    tracking: LessonProgress = Field(default_factory=LessonProgress)


class TrackedModule(BaseModel):
    id: str
    kind: NodeKind
    attributes: dict[str, Any] = Field(default_factory=dict)
    children: list["TrackedModule"] = Field(default_factory=list)
    lessons: list[TrackedLesson] = Field(default_factory=list)
    tracking: ModuleProgress = Field(default_factory=ModuleProgress)


TrackedModule.model_rebuild()


class LastAccessedLesson(BaseModel):
    lesson_id: str
    status: TrackingStatus
    progress: int
    time_spent: int = 0
    score: Optional[int] = None
    last_accessed: Optional[datetime] = None
    attempt: LessonAttempt


class TrackedHierarchy(BaseModel):
    """A course hierarchy overlaid with one user's progress."""

    id: str
    kind: NodeKind = NodeKind.COURSE
    user_id: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    children: list[TrackedModule] = Field(default_factory=list)
    tracking: CourseProgress = Field(default_factory=CourseProgress)
    last_accessed_lesson: Optional[LastAccessedLesson] = None


class LessonProgressUpdate(BaseModel):
    """One progress report for a lesson attempt."""

    lesson_id: str
    status: TrackingStatus = TrackingStatus.INCOMPLETE
    current_position: float = Field(0.0, ge=0.0, le=1.0)
    time_spent: int = Field(0, ge=0)
    score: Optional[int] = None
    attempt: Optional[int] = Field(None, ge=1)
