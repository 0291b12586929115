"""Course reads and writes with read-through caching."""

from __future__ import annotations

from lms_content.cache import keys
from lms_content.cache.invalidation import Mutation, apply_invalidation, course_rules
from lms_content.cache.redis import CacheService
from lms_content.cache.ttl import TTLPolicy
from lms_content.core.app_exceptions import InvalidStateError, module_not_found
from lms_content.core.logging import get_logger
from lms_content.models import Course, CourseStatus
from lms_content.repositories.base import Repositories
from lms_content.schemas.content import (
    CourseCreate,
    CourseRead,
    CourseSearchFilters,
    CourseSearchResponse,
    CourseSummary,
    CourseUpdate,
)
from lms_content.schemas.hierarchy import HierarchyNode, TrackedHierarchy, TrackedModule
from lms_content.services.hierarchy import HierarchyAssembler, ensure_course_visible
from lms_content.services.progress import ProgressAggregator

logger = get_logger(__name__)

FILTER_MODULE = "module"
FILTER_LESSON = "lesson"


def _without_lessons(module: TrackedModule) -> TrackedModule:
    return module.model_copy(
        update={"lessons": [], "children": [_without_lessons(child) for child in module.children]}
    )


def apply_view_filter(
    tracked: TrackedHierarchy, filter_type: str | None, module_id: str | None
) -> TrackedHierarchy:
    """Narrow a tracked view.

    ``module`` keeps the module tree with its progress but drops lesson
    lists. ``lesson`` keeps only the requested module (top-level or
    submodule) with its lessons.
    """
    if filter_type is None:
        return tracked
    if filter_type == FILTER_MODULE:
        return tracked.model_copy(update={"children": [_without_lessons(m) for m in tracked.children]})
    if filter_type == FILTER_LESSON:
        if not module_id:
            raise InvalidStateError("module_id is required for the lesson view", {"filter_type": filter_type})
        for module in tracked.children:
            if module.id == module_id:
                return tracked.model_copy(update={"children": [module]})
            for sub in module.children:
                if sub.id == module_id:
                    return tracked.model_copy(update={"children": [sub]})
        raise module_not_found(module_id)
    raise InvalidStateError("Unknown view filter", {"filter_type": filter_type})


class CourseService:
    def __init__(self, repositories: Repositories, cache: CacheService, ttl: TTLPolicy | None = None):
        self.repos = repositories
        self.cache = cache
        self.ttl = ttl or TTLPolicy.from_settings()
        self.assembler = HierarchyAssembler(repositories, cache, self.ttl)
        self.aggregator = ProgressAggregator(repositories)

    async def get_course(self, course_id: str, tenant_id: str | None, organisation_id: str | None) -> CourseRead:
        key = keys.course_key(course_id, tenant_id, organisation_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return CourseRead.model_validate(cached)

        course = ensure_course_visible(
            await self.repos.courses.find_by_id(course_id, tenant_id, organisation_id),
            course_id,
            tenant_id,
            organisation_id,
        )
        result = CourseRead.model_validate(course)
        await self.cache.set(key, result.model_dump(mode="json"), self.ttl.course)
        return result

    async def search_courses(
        self,
        tenant_id: str | None,
        organisation_id: str | None,
        filters: CourseSearchFilters | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> CourseSearchResponse:
        """Filtered, paginated course list with module counts."""
        filters = filters or CourseSearchFilters()
        payload = filters.model_dump(mode="json", exclude_none=True)
        key = keys.course_search_key(tenant_id, organisation_id, {**payload, "offset": offset, "limit": limit})

        async def load() -> CourseSearchResponse:
            rows, total = await self.repos.courses.find_and_count(
                tenant_id, organisation_id, filters.model_dump(exclude_none=True), offset, limit
            )
            counts = await self.repos.courses.count_modules([row.course_id for row in rows], tenant_id)
            courses = [
                CourseSummary.model_validate(row).model_copy(update={"module_count": counts.get(row.course_id, 0)})
                for row in rows
            ]
            return CourseSearchResponse(courses=courses, total_elements=total, offset=offset, limit=limit)

        data = await self.cache.get_or_set(key, load, self.ttl.course)
        return CourseSearchResponse.model_validate(data)

    async def get_hierarchy(
        self, course_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> HierarchyNode:
        return await self.assembler.get_hierarchy(course_id, tenant_id, organisation_id)

    async def get_tracked_hierarchy(
        self,
        course_id: str,
        user_id: str,
        tenant_id: str | None,
        organisation_id: str | None,
        filter_type: str | None = None,
        module_id: str | None = None,
    ) -> TrackedHierarchy:
        if filter_type not in (None, FILTER_MODULE, FILTER_LESSON):
            raise InvalidStateError("Unknown view filter", {"filter_type": filter_type})
        if filter_type == FILTER_LESSON and not module_id:
            raise InvalidStateError("module_id is required for the lesson view", {"filter_type": filter_type})

        key = keys.tracked_hierarchy_key(course_id, user_id, tenant_id, organisation_id, filter_type, module_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return TrackedHierarchy.model_validate(cached)

        hierarchy = await self.get_hierarchy(course_id, tenant_id, organisation_id)
        tracked = await self.aggregator.overlay_tracking(hierarchy, user_id, tenant_id, organisation_id)
        view = apply_view_filter(tracked, filter_type, module_id)
        await self.cache.set(key, view.model_dump(mode="json"), self.ttl.user_view)
        return view

    async def create_course(
        self,
        tenant_id: str | None,
        organisation_id: str | None,
        data: CourseCreate,
        created_by: str | None = None,
    ) -> CourseRead:
        course = Course(
            tenant_id=tenant_id,
            organisation_id=organisation_id,
            created_by=created_by,
            updated_by=created_by,
            **data.model_dump(),
        )
        saved = await self.repos.courses.save(course)
        await apply_invalidation(self.cache, course_rules(Mutation.CREATE, saved.course_id, tenant_id, organisation_id))
        logger.info("course_created", extra={"event": "course_created", "course_id": saved.course_id})
        return CourseRead.model_validate(saved)

    async def update_course(
        self,
        course_id: str,
        tenant_id: str | None,
        organisation_id: str | None,
        data: CourseUpdate,
        updated_by: str | None = None,
    ) -> CourseRead:
        course = ensure_course_visible(
            await self.repos.courses.find_by_id(course_id, tenant_id, organisation_id),
            course_id,
            tenant_id,
            organisation_id,
        )
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(course, field, value)
        course.updated_by = updated_by

        saved = await self.repos.courses.save(course)
        await apply_invalidation(self.cache, course_rules(Mutation.UPDATE, course_id, tenant_id, organisation_id))
        return CourseRead.model_validate(saved)

    async def archive_course(
        self,
        course_id: str,
        tenant_id: str | None,
        organisation_id: str | None,
        updated_by: str | None = None,
    ) -> CourseRead:
        course = ensure_course_visible(
            await self.repos.courses.find_by_id(course_id, tenant_id, organisation_id),
            course_id,
            tenant_id,
            organisation_id,
        )
        course.status = CourseStatus.ARCHIVED
        course.updated_by = updated_by

        saved = await self.repos.courses.save(course)
        await apply_invalidation(self.cache, course_rules(Mutation.ARCHIVE, course_id, tenant_id, organisation_id))
        logger.info("course_archived", extra={"event": "course_archived", "course_id": course_id})
        return CourseRead.model_validate(saved)
