"""Lesson reads, writes and module placements."""

from __future__ import annotations

from lms_content.cache import keys
from lms_content.cache.invalidation import (
    LessonPlacement,
    Mutation,
    apply_invalidation,
    lesson_association_rules,
    lesson_rules,
)
from lms_content.cache.redis import CacheService
from lms_content.cache.ttl import TTLPolicy
from lms_content.core.app_exceptions import InvalidStateError, lesson_not_found, module_not_found
from lms_content.core.logging import get_logger
from lms_content.models import CourseLesson, Lesson, LessonStatus, Module, ModuleStatus
from lms_content.repositories.base import Repositories
from lms_content.schemas.content import LessonAttach, LessonCreate, LessonRead, LessonUpdate
from lms_content.schemas.hierarchy import LessonRef
from lms_content.services.hierarchy import HierarchyAssembler, lesson_ref

logger = get_logger(__name__)


class LessonService:
    def __init__(self, repositories: Repositories, cache: CacheService, ttl: TTLPolicy | None = None):
        self.repos = repositories
        self.cache = cache
        self.ttl = ttl or TTLPolicy.from_settings()
        self.assembler = HierarchyAssembler(repositories, cache, self.ttl)

    async def _load(self, lesson_id: str, tenant_id: str | None, organisation_id: str | None) -> Lesson:
        lesson = await self.repos.lessons.find_by_id(lesson_id, tenant_id, organisation_id)
        if lesson is None or lesson.status == LessonStatus.ARCHIVED:
            raise lesson_not_found(lesson_id)
        return lesson

    async def _load_module(self, module_id: str, tenant_id: str | None, organisation_id: str | None) -> Module:
        module = await self.repos.modules.find_by_id(module_id, tenant_id, organisation_id)
        if module is None or module.status == ModuleStatus.ARCHIVED:
            raise module_not_found(module_id)
        return module

    async def _placements(
        self, lesson_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[LessonPlacement]:
        rows = await self.repos.course_lessons.find_by_lesson(lesson_id, tenant_id, organisation_id)
        return [LessonPlacement(course_id=row.course_id, module_id=row.module_id) for row in rows]

    async def get_lesson(self, lesson_id: str, tenant_id: str | None, organisation_id: str | None) -> LessonRead:
        key = keys.lesson_key(lesson_id, tenant_id, organisation_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return LessonRead.model_validate(cached)

        result = LessonRead.model_validate(await self._load(lesson_id, tenant_id, organisation_id))
        await self.cache.set(key, result.model_dump(mode="json"), self.ttl.lesson)
        return result

    async def list_module_lessons(
        self, module_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[LessonRef]:
        return await self.assembler.module_lessons(module_id, tenant_id, organisation_id)

    async def create_lesson(
        self,
        tenant_id: str | None,
        organisation_id: str | None,
        data: LessonCreate,
        created_by: str | None = None,
        module_id: str | None = None,
    ) -> LessonRead:
        """Create a lesson, optionally placing it at the end of ``module_id``."""
        module = await self._load_module(module_id, tenant_id, organisation_id) if module_id else None

        lesson = Lesson(
            tenant_id=tenant_id,
            organisation_id=organisation_id,
            created_by=created_by,
            updated_by=created_by,
            **data.model_dump(),
        )
        saved = await self.repos.lessons.save(lesson)
        placements: list[LessonPlacement] = []
        if module is not None:
            await self._attach(saved, module, LessonAttach())
            placements.append(LessonPlacement(course_id=module.course_id, module_id=module.module_id))

        await apply_invalidation(
            self.cache, lesson_rules(Mutation.CREATE, saved.lesson_id, placements, tenant_id, organisation_id)
        )
        logger.info("lesson_created", extra={"event": "lesson_created", "lesson_id": saved.lesson_id})
        return LessonRead.model_validate(saved)

    async def update_lesson(
        self,
        lesson_id: str,
        tenant_id: str | None,
        organisation_id: str | None,
        data: LessonUpdate,
        updated_by: str | None = None,
    ) -> LessonRead:
        lesson = await self._load(lesson_id, tenant_id, organisation_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(lesson, field, value)
        lesson.updated_by = updated_by

        saved = await self.repos.lessons.save(lesson)
        placements = await self._placements(lesson_id, tenant_id, organisation_id)
        await apply_invalidation(
            self.cache, lesson_rules(Mutation.UPDATE, lesson_id, placements, tenant_id, organisation_id)
        )
        return LessonRead.model_validate(saved)

    async def archive_lesson(
        self,
        lesson_id: str,
        tenant_id: str | None,
        organisation_id: str | None,
        updated_by: str | None = None,
    ) -> LessonRead:
        lesson = await self._load(lesson_id, tenant_id, organisation_id)
        lesson.status = LessonStatus.ARCHIVED
        lesson.updated_by = updated_by

        saved = await self.repos.lessons.save(lesson)
        placements = await self._placements(lesson_id, tenant_id, organisation_id)
        await apply_invalidation(
            self.cache, lesson_rules(Mutation.ARCHIVE, lesson_id, placements, tenant_id, organisation_id)
        )
        logger.info("lesson_archived", extra={"event": "lesson_archived", "lesson_id": lesson_id})
        return LessonRead.model_validate(saved)

    async def _attach(self, lesson: Lesson, module: Module, data: LessonAttach) -> CourseLesson:
        existing = await self.repos.course_lessons.find_one(module.module_id, lesson.lesson_id)
        if existing is not None and existing.status != LessonStatus.ARCHIVED:
            raise InvalidStateError(
                "Lesson is already part of this module",
                {"lesson_id": lesson.lesson_id, "module_id": module.module_id},
                code="LESSON_ALREADY_ATTACHED",
            )

        placement = existing or CourseLesson(
            course_id=module.course_id,
            module_id=module.module_id,
            lesson_id=lesson.lesson_id,
            tenant_id=module.tenant_id,
            organisation_id=module.organisation_id,
        )
        placement.status = LessonStatus.PUBLISHED
        for field, value in data.model_dump().items():
            setattr(placement, field, value)
        return await self.repos.course_lessons.save(placement)

    async def add_to_module(
        self,
        lesson_id: str,
        module_id: str,
        tenant_id: str | None,
        organisation_id: str | None,
        data: LessonAttach | None = None,
    ) -> LessonRef:
        lesson = await self._load(lesson_id, tenant_id, organisation_id)
        module = await self._load_module(module_id, tenant_id, organisation_id)
        placement = await self._attach(lesson, module, data or LessonAttach())

        await apply_invalidation(
            self.cache,
            lesson_association_rules(
                LessonPlacement(course_id=module.course_id, module_id=module_id), tenant_id, organisation_id
            ),
        )
        return lesson_ref(placement, lesson)

    async def remove_from_module(
        self, lesson_id: str, module_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> None:
        placement = await self.repos.course_lessons.find_one(module_id, lesson_id)
        if placement is None or placement.status == LessonStatus.ARCHIVED:
            raise lesson_not_found(lesson_id)
        if tenant_id and placement.tenant_id != tenant_id:
            raise lesson_not_found(lesson_id)

        placement.status = LessonStatus.ARCHIVED
        await self.repos.course_lessons.save(placement)
        await apply_invalidation(
            self.cache,
            lesson_association_rules(
                LessonPlacement(course_id=placement.course_id, module_id=module_id), tenant_id, organisation_id
            ),
        )
