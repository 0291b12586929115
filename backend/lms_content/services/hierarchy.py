"""Course hierarchy assembly.

Builds Course -> Module -> Submodule -> Lesson from flat repository calls.
Sibling branches are fetched concurrently, parent -> child levels in
sequence. Sub-lists are cached under their own keys so a lesson write only
has to purge the owning module's list and the course hierarchy.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel

from lms_content.cache import keys
from lms_content.cache.redis import CacheService
from lms_content.cache.ttl import TTLPolicy
from lms_content.core.app_exceptions import course_not_found
from lms_content.core.logging import get_logger
from lms_content.models import Course, CourseLesson, CourseStatus, Lesson, LessonStatus, ModuleStatus
from lms_content.repositories.base import Repositories
from lms_content.schemas.content import CourseRead, ModuleRead
from lms_content.schemas.hierarchy import HierarchyNode, LessonRef, NodeKind

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def lesson_ref(course_lesson: CourseLesson, lesson: Lesson) -> LessonRef:
    """Placement overrides win over the lesson's own ideal time / free flag."""
    return LessonRef(
        lesson_id=lesson.lesson_id,
        course_lesson_id=course_lesson.course_lesson_id,
        module_id=course_lesson.module_id,
        ordering=course_lesson.ordering or 0,
        title=lesson.title,
        description=lesson.description,
        format=lesson.format,
        image=lesson.image,
        ideal_time=course_lesson.ideal_time if course_lesson.ideal_time is not None else lesson.ideal_time,
        free_lesson=bool(course_lesson.free_lesson if course_lesson.free_lesson is not None else lesson.free_lesson),
        consider_for_passing=course_lesson.consider_for_passing is not False,
    )


def ensure_course_visible(
    course: Course | None, course_id: str, tenant_id: str | None, organisation_id: str | None
) -> Course:
    """Raise NotFound unless the course exists, is live and matches the supplied scope."""
    if course is None or course.status == CourseStatus.ARCHIVED:
        raise course_not_found(course_id)
    if tenant_id and course.tenant_id != tenant_id:
        raise course_not_found(course_id)
    if organisation_id and course.organisation_id != organisation_id:
        raise course_not_found(course_id)
    return course


class HierarchyAssembler:
    def __init__(
        self,
        repositories: Repositories,
        cache: CacheService | None = None,
        ttl: TTLPolicy | None = None,
    ):
        self.repos = repositories
        self.cache = cache
        self.ttl = ttl or TTLPolicy.from_settings()

    async def get_hierarchy(
        self, course_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> HierarchyNode:
        """Cached hierarchy view (no user state)."""
        key = keys.course_hierarchy_key(course_id, tenant_id, organisation_id)
        if self.cache is not None:
            cached = await self.cache.get(key)
            if cached is not None:
                return HierarchyNode.model_validate(cached)

        node = await self.assemble(course_id, tenant_id, organisation_id)
        if self.cache is not None:
            await self.cache.set(key, node.model_dump(mode="json"), self.ttl.course)
        return node

    async def assemble(
        self, course_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> HierarchyNode:
        course = ensure_course_visible(
            await self.repos.courses.find_by_id(course_id, tenant_id, organisation_id),
            course_id,
            tenant_id,
            organisation_id,
        )

        modules = await self.course_modules(course_id, tenant_id, organisation_id)
        children = await asyncio.gather(
            *(self._module_node(module, tenant_id, organisation_id) for module in modules)
        )
        logger.debug(
            "hierarchy_assembled",
            extra={"event": "hierarchy_assembled", "course_id": course_id, "modules": len(children)},
        )
        return HierarchyNode(
            id=course.course_id,
            kind=NodeKind.COURSE,
            attributes=CourseRead.model_validate(course).model_dump(mode="json", exclude={"course_id"}),
            children=list(children),
        )

    async def _module_node(
        self, module: ModuleRead, tenant_id: str | None, organisation_id: str | None
    ) -> HierarchyNode:
        submodules, lessons = await asyncio.gather(
            self.submodules(module.module_id, tenant_id, organisation_id),
            self.module_lessons(module.module_id, tenant_id, organisation_id),
        )
        sub_lessons = await asyncio.gather(
            *(self.module_lessons(sub.module_id, tenant_id, organisation_id) for sub in submodules)
        )
        # Exactly two module levels: submodules never carry children
        children = [
            HierarchyNode(
                id=sub.module_id,
                kind=NodeKind.SUBMODULE,
                attributes=sub.model_dump(mode="json", exclude={"module_id"}),
                lessons=refs,
            )
            for sub, refs in zip(submodules, sub_lessons)
        ]
        return HierarchyNode(
            id=module.module_id,
            kind=NodeKind.MODULE,
            attributes=module.model_dump(mode="json", exclude={"module_id"}),
            children=children,
            lessons=lessons,
        )

    async def _cached_list(
        self,
        key: str,
        ttl: int,
        model: type[M],
        loader: Callable[[], Awaitable[list[M]]],
    ) -> list[M]:
        if self.cache is None:
            return await loader()
        data = await self.cache.get_or_set(key, loader, ttl)
        return [model.model_validate(item) for item in data]

    async def course_modules(
        self, course_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[ModuleRead]:
        async def load() -> list[ModuleRead]:
            rows = await self.repos.modules.find_by_course(course_id, tenant_id, organisation_id)
            return _live_modules(rows)

        key = keys.course_modules_key(course_id, tenant_id, organisation_id)
        return await self._cached_list(key, self.ttl.module, ModuleRead, load)

    async def submodules(
        self, parent_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[ModuleRead]:
        async def load() -> list[ModuleRead]:
            rows = await self.repos.modules.find_by_parent(parent_id, tenant_id, organisation_id)
            return _live_modules(rows)

        key = keys.module_children_key(parent_id, tenant_id, organisation_id)
        return await self._cached_list(key, self.ttl.module, ModuleRead, load)

    async def module_lessons(
        self, module_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[LessonRef]:
        async def load() -> list[LessonRef]:
            rows = await self.repos.course_lessons.find_by_module(module_id, tenant_id, organisation_id)
            refs = [
                lesson_ref(course_lesson, lesson)
                for course_lesson, lesson in rows
                if course_lesson.status != LessonStatus.ARCHIVED and lesson.status != LessonStatus.ARCHIVED
            ]
            return sorted(refs, key=lambda ref: ref.ordering)

        key = keys.module_lessons_key(module_id, tenant_id, organisation_id)
        return await self._cached_list(key, self.ttl.lesson, LessonRef, load)


def _live_modules(rows: list[Any]) -> list[ModuleRead]:
    modules = [ModuleRead.model_validate(row) for row in rows if row.status != ModuleStatus.ARCHIVED]
    # sorted() is stable, so equal orderings keep the repository's order
    return sorted(modules, key=lambda m: m.ordering)


def find_module(hierarchy: HierarchyNode, module_id: str) -> HierarchyNode | None:
    for module in hierarchy.children:
        if module.id == module_id:
            return module
        for sub in module.children:
            if sub.id == module_id:
                return sub
    return None
