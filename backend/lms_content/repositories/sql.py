"""SQLAlchemy async repositories.

Each call opens its own short session from the factory, so sibling branches
of a hierarchy can be fetched concurrently without sharing a session.
"""

from __future__ import annotations

from typing import Any, Sequence, TypeVar

from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lms_content.models import (
    Course,
    CourseLesson,
    CourseStatus,
    CourseTrack,
    EnrollmentStatus,
    Lesson,
    LessonStatus,
    LessonTrack,
    Module,
    ModuleStatus,
    UserEnrollment,
)
from lms_content.repositories.base import Repositories

T = TypeVar("T")

COURSE_SORT_FIELDS = {"created_at", "updated_at", "title", "start_datetime", "end_datetime"}


def _scoped(stmt: Select, model: Any, tenant_id: str | None, organisation_id: str | None) -> Select:
    if tenant_id:
        stmt = stmt.where(model.tenant_id == tenant_id)
    if organisation_id:
        stmt = stmt.where(model.organisation_id == organisation_id)
    return stmt


class _SqlRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def _first(self, stmt: Select) -> Any | None:
        async with self._sessions() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def _all(self, stmt: Select) -> list[Any]:
        async with self._sessions() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def _save(self, entity: T) -> T:
        async with self._sessions() as session:
            merged = await session.merge(entity)
            await session.commit()
            await session.refresh(merged)
            return merged


class SqlCourseRepository(_SqlRepository):
    async def find_by_id(
        self, course_id: str, tenant_id: str | None = None, organisation_id: str | None = None
    ) -> Course | None:
        stmt = _scoped(select(Course).where(Course.course_id == course_id), Course, tenant_id, organisation_id)
        return await self._first(stmt)

    async def find_and_count(
        self,
        tenant_id: str | None,
        organisation_id: str | None,
        filters: dict[str, Any],
        offset: int,
        limit: int,
    ) -> tuple[list[Course], int]:
        stmt = _scoped(select(Course), Course, tenant_id, organisation_id)

        status = filters.get("status")
        if status:
            stmt = stmt.where(Course.status == CourseStatus(status))
        else:
            stmt = stmt.where(Course.status != CourseStatus.ARCHIVED)

        for flag in ("featured", "free"):
            if filters.get(flag) is not None:
                stmt = stmt.where(getattr(Course, flag) == filters[flag])
        if filters.get("created_by"):
            stmt = stmt.where(Course.created_by == filters["created_by"])
        if filters.get("start_date_from"):
            stmt = stmt.where(Course.start_datetime >= filters["start_date_from"])
        if filters.get("start_date_to"):
            stmt = stmt.where(Course.start_datetime <= filters["start_date_to"])
        if filters.get("end_date_from"):
            stmt = stmt.where(Course.end_datetime >= filters["end_date_from"])
        if filters.get("end_date_to"):
            stmt = stmt.where(Course.end_datetime <= filters["end_date_to"])
        if filters.get("query"):
            like = f"%{filters['query']}%"
            stmt = stmt.where(
                or_(Course.title.ilike(like), Course.description.ilike(like), Course.short_description.ilike(like))
            )

        sort_by = filters.get("sort_by") or "created_at"
        if sort_by not in COURSE_SORT_FIELDS:
            sort_by = "created_at"
        column = getattr(Course, sort_by)
        order = column.asc() if str(filters.get("order_by", "desc")).lower() == "asc" else column.desc()

        async with self._sessions() as session:
            total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
            result = await session.execute(stmt.order_by(order, Course.course_id).offset(offset).limit(limit))
            return list(result.scalars().all()), int(total or 0)

    async def count_modules(self, course_ids: Sequence[str], tenant_id: str | None) -> dict[str, int]:
        if not course_ids:
            return {}
        stmt = (
            select(Module.course_id, func.count())
            .where(Module.course_id.in_(list(course_ids)), Module.status != ModuleStatus.ARCHIVED)
            .group_by(Module.course_id)
        )
        if tenant_id:
            stmt = stmt.where(Module.tenant_id == tenant_id)
        async with self._sessions() as session:
            result = await session.execute(stmt)
            return {course_id: int(count) for course_id, count in result.all()}

    async def save(self, course: Course) -> Course:
        return await self._save(course)


class SqlModuleRepository(_SqlRepository):
    async def find_by_id(
        self, module_id: str, tenant_id: str | None = None, organisation_id: str | None = None
    ) -> Module | None:
        stmt = _scoped(select(Module).where(Module.module_id == module_id), Module, tenant_id, organisation_id)
        return await self._first(stmt)

    def _live(self, stmt: Select) -> Select:
        return stmt.where(Module.status != ModuleStatus.ARCHIVED).order_by(
            Module.ordering.asc(), Module.created_at.asc(), Module.module_id.asc()
        )

    async def find_by_course(
        self, course_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[Module]:
        stmt = select(Module).where(Module.course_id == course_id, Module.parent_id.is_(None))
        return await self._all(self._live(_scoped(stmt, Module, tenant_id, organisation_id)))

    async def find_by_parent(
        self, parent_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[Module]:
        stmt = select(Module).where(Module.parent_id == parent_id)
        return await self._all(self._live(_scoped(stmt, Module, tenant_id, organisation_id)))

    async def save(self, module: Module) -> Module:
        return await self._save(module)


class SqlLessonRepository(_SqlRepository):
    async def find_by_id(
        self, lesson_id: str, tenant_id: str | None = None, organisation_id: str | None = None
    ) -> Lesson | None:
        stmt = _scoped(select(Lesson).where(Lesson.lesson_id == lesson_id), Lesson, tenant_id, organisation_id)
        return await self._first(stmt)

    async def save(self, lesson: Lesson) -> Lesson:
        return await self._save(lesson)


class SqlCourseLessonRepository(_SqlRepository):
    async def _placements(self, stmt: Select) -> list[tuple[CourseLesson, Lesson]]:
        stmt = (
            stmt.where(CourseLesson.status != LessonStatus.ARCHIVED, Lesson.status != LessonStatus.ARCHIVED)
            .order_by(CourseLesson.ordering.asc(), CourseLesson.created_at.asc(), CourseLesson.course_lesson_id)
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            return [(row[0], row[1]) for row in result.all()]

    async def find_by_module(
        self, module_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[tuple[CourseLesson, Lesson]]:
        stmt = (
            select(CourseLesson, Lesson)
            .join(Lesson, Lesson.lesson_id == CourseLesson.lesson_id)
            .where(CourseLesson.module_id == module_id)
        )
        return await self._placements(_scoped(stmt, CourseLesson, tenant_id, organisation_id))

    async def find_by_course(
        self, course_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[tuple[CourseLesson, Lesson]]:
        stmt = (
            select(CourseLesson, Lesson)
            .join(Lesson, Lesson.lesson_id == CourseLesson.lesson_id)
            .where(CourseLesson.course_id == course_id)
        )
        return await self._placements(_scoped(stmt, CourseLesson, tenant_id, organisation_id))

    async def find_by_lesson(
        self, lesson_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[CourseLesson]:
        stmt = select(CourseLesson).where(
            CourseLesson.lesson_id == lesson_id, CourseLesson.status != LessonStatus.ARCHIVED
        )
        return await self._all(_scoped(stmt, CourseLesson, tenant_id, organisation_id))

    async def find_one(self, module_id: str, lesson_id: str) -> CourseLesson | None:
        stmt = select(CourseLesson).where(CourseLesson.module_id == module_id, CourseLesson.lesson_id == lesson_id)
        return await self._first(stmt)

    async def save(self, course_lesson: CourseLesson) -> CourseLesson:
        return await self._save(course_lesson)


class SqlCourseTrackRepository(_SqlRepository):
    async def find_by_user(
        self, course_id: str, user_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> CourseTrack | None:
        stmt = select(CourseTrack).where(CourseTrack.course_id == course_id, CourseTrack.user_id == user_id)
        return await self._first(_scoped(stmt, CourseTrack, tenant_id, organisation_id))

    async def save(self, track: CourseTrack) -> CourseTrack:
        return await self._save(track)


class SqlLessonTrackRepository(_SqlRepository):
    async def find_by_user_course(
        self, user_id: str, course_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[LessonTrack]:
        stmt = (
            select(LessonTrack)
            .where(LessonTrack.user_id == user_id, LessonTrack.course_id == course_id)
            .order_by(LessonTrack.updated_at.desc(), LessonTrack.attempt.desc())
        )
        return await self._all(_scoped(stmt, LessonTrack, tenant_id, organisation_id))

    async def save(self, track: LessonTrack) -> LessonTrack:
        return await self._save(track)


class SqlEnrollmentRepository(_SqlRepository):
    async def find_by_id(
        self, enrollment_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> UserEnrollment | None:
        stmt = select(UserEnrollment).where(UserEnrollment.enrollment_id == enrollment_id)
        return await self._first(_scoped(stmt, UserEnrollment, tenant_id, organisation_id))

    async def find_by_user_course(
        self, user_id: str, course_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> UserEnrollment | None:
        stmt = select(UserEnrollment).where(UserEnrollment.user_id == user_id, UserEnrollment.course_id == course_id)
        return await self._first(_scoped(stmt, UserEnrollment, tenant_id, organisation_id))

    async def find_and_count(
        self,
        tenant_id: str | None,
        organisation_id: str | None,
        filters: dict[str, Any],
        offset: int,
        limit: int,
    ) -> tuple[list[UserEnrollment], int]:
        stmt = _scoped(select(UserEnrollment), UserEnrollment, tenant_id, organisation_id)
        for field in ("user_id", "course_id"):
            if filters.get(field):
                stmt = stmt.where(getattr(UserEnrollment, field) == filters[field])
        if filters.get("status"):
            stmt = stmt.where(UserEnrollment.status == EnrollmentStatus(filters["status"]))
        async with self._sessions() as session:
            total = await session.scalar(select(func.count()).select_from(stmt.subquery()))
            result = await session.execute(
                stmt.order_by(UserEnrollment.enrolled_at.desc(), UserEnrollment.enrollment_id).offset(offset).limit(limit)
            )
            return list(result.scalars().all()), int(total or 0)

    async def save(self, enrollment: UserEnrollment) -> UserEnrollment:
        return await self._save(enrollment)


def build_sql_repositories(session_factory: async_sessionmaker[AsyncSession]) -> Repositories:
    return Repositories(
        courses=SqlCourseRepository(session_factory),
        modules=SqlModuleRepository(session_factory),
        lessons=SqlLessonRepository(session_factory),
        course_lessons=SqlCourseLessonRepository(session_factory),
        course_tracks=SqlCourseTrackRepository(session_factory),
        lesson_tracks=SqlLessonTrackRepository(session_factory),
        enrollments=SqlEnrollmentRepository(session_factory),
    )
