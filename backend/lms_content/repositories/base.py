"""Repository interfaces consumed by the services.

Every finder takes ``tenant_id`` / ``organisation_id`` and applies them as
predicates when supplied. Finders never return archived rows unless they say
otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from lms_content.models import (
    Course,
    CourseLesson,
    CourseTrack,
    Lesson,
    LessonTrack,
    Module,
    UserEnrollment,
)


class CourseRepository(Protocol):
    async def find_by_id(
        self, course_id: str, tenant_id: str | None = None, organisation_id: str | None = None
    ) -> Course | None:
        """Course row including archived ones; callers decide on status."""
        ...

    async def find_and_count(
        self,
        tenant_id: str | None,
        organisation_id: str | None,
        filters: dict[str, Any],
        offset: int,
        limit: int,
    ) -> tuple[list[Course], int]: ...

    async def count_modules(self, course_ids: Sequence[str], tenant_id: str | None) -> dict[str, int]: ...

    async def save(self, course: Course) -> Course: ...


class ModuleRepository(Protocol):
    async def find_by_id(
        self, module_id: str, tenant_id: str | None = None, organisation_id: str | None = None
    ) -> Module | None: ...

    async def find_by_course(
        self, course_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[Module]:
        """Top-level (parent null), non-archived modules ordered by ``ordering``."""
        ...

    async def find_by_parent(
        self, parent_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[Module]:
        """Non-archived submodules ordered by ``ordering``."""
        ...

    async def save(self, module: Module) -> Module: ...


class LessonRepository(Protocol):
    async def find_by_id(
        self, lesson_id: str, tenant_id: str | None = None, organisation_id: str | None = None
    ) -> Lesson | None: ...

    async def save(self, lesson: Lesson) -> Lesson: ...


class CourseLessonRepository(Protocol):
    async def find_by_module(
        self, module_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[tuple[CourseLesson, Lesson]]:
        """Non-archived placements of non-archived lessons, ordered by ``ordering``."""
        ...

    async def find_by_course(
        self, course_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[tuple[CourseLesson, Lesson]]: ...

    async def find_by_lesson(
        self, lesson_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[CourseLesson]: ...

    async def find_one(self, module_id: str, lesson_id: str) -> CourseLesson | None: ...

    async def save(self, course_lesson: CourseLesson) -> CourseLesson: ...


class CourseTrackRepository(Protocol):
    async def find_by_user(
        self, course_id: str, user_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> CourseTrack | None: ...

    async def save(self, track: CourseTrack) -> CourseTrack: ...


class LessonTrackRepository(Protocol):
    async def find_by_user_course(
        self, user_id: str, course_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[LessonTrack]:
        """All attempts, most recently updated first."""
        ...

    async def save(self, track: LessonTrack) -> LessonTrack: ...


class EnrollmentRepository(Protocol):
    async def find_by_id(
        self, enrollment_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> UserEnrollment | None: ...

    async def find_by_user_course(
        self, user_id: str, course_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> UserEnrollment | None: ...

    async def find_and_count(
        self,
        tenant_id: str | None,
        organisation_id: str | None,
        filters: dict[str, Any],
        offset: int,
        limit: int,
    ) -> tuple[list[UserEnrollment], int]: ...

    async def save(self, enrollment: UserEnrollment) -> UserEnrollment: ...


@dataclass
class Repositories:
    """Bundle handed to the services."""

    courses: CourseRepository
    modules: ModuleRepository
    lessons: LessonRepository
    course_lessons: CourseLessonRepository
    course_tracks: CourseTrackRepository
    lesson_tracks: LessonTrackRepository
    enrollments: EnrollmentRepository
