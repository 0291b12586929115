"""Course enrollments."""

from __future__ import annotations

from datetime import datetime, timezone

from lms_content.cache import keys
from lms_content.cache.invalidation import Mutation, apply_invalidation, enrollment_rules
from lms_content.cache.redis import CacheService
from lms_content.cache.ttl import TTLPolicy
from lms_content.core.app_exceptions import InvalidStateError, enrollment_not_found
from lms_content.core.logging import get_logger
from lms_content.models import EnrollmentStatus, UserEnrollment
from lms_content.repositories.base import Repositories
from lms_content.schemas.content import (
    EnrollmentCreate,
    EnrollmentFilters,
    EnrollmentListResponse,
    EnrollmentRead,
    EnrollmentUpdate,
)
from lms_content.services.hierarchy import ensure_course_visible

logger = get_logger(__name__)


class EnrollmentService:
    def __init__(self, repositories: Repositories, cache: CacheService, ttl: TTLPolicy | None = None):
        self.repos = repositories
        self.cache = cache
        self.ttl = ttl or TTLPolicy.from_settings()

    async def _load(
        self, enrollment_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> UserEnrollment:
        enrollment = await self.repos.enrollments.find_by_id(enrollment_id, tenant_id, organisation_id)
        if enrollment is None:
            raise enrollment_not_found(enrollment_id)
        return enrollment

    async def _saved(self, mutation: Mutation, enrollment: UserEnrollment) -> EnrollmentRead:
        saved = await self.repos.enrollments.save(enrollment)
        await apply_invalidation(
            self.cache,
            enrollment_rules(mutation, saved.enrollment_id, saved.tenant_id, saved.organisation_id),
        )
        return EnrollmentRead.model_validate(saved)

    async def enroll(
        self, tenant_id: str | None, organisation_id: str | None, data: EnrollmentCreate
    ) -> EnrollmentRead:
        """Enroll a user. A cancelled enrollment is reactivated in place."""
        ensure_course_visible(
            await self.repos.courses.find_by_id(data.course_id, tenant_id, organisation_id),
            data.course_id,
            tenant_id,
            organisation_id,
        )
        existing = await self.repos.enrollments.find_by_user_course(
            data.user_id, data.course_id, tenant_id, organisation_id
        )
        if existing is not None and existing.status != EnrollmentStatus.ARCHIVED:
            raise InvalidStateError(
                "User is already enrolled in this course",
                {"user_id": data.user_id, "course_id": data.course_id},
                code="ALREADY_ENROLLED",
            )

        if existing is not None:
            enrollment = existing
            enrollment.status = EnrollmentStatus.PUBLISHED
            enrollment.enrolled_by = data.enrolled_by
            enrollment.enrolled_at = datetime.now(timezone.utc)
            enrollment.end_time = data.end_time
            enrollment.params = data.params
            mutation = Mutation.UPDATE
        else:
            enrollment = UserEnrollment(
                tenant_id=tenant_id,
                organisation_id=organisation_id,
                status=EnrollmentStatus.PUBLISHED,
                **data.model_dump(),
            )
            mutation = Mutation.CREATE

        result = await self._saved(mutation, enrollment)
        logger.info(
            "user_enrolled",
            extra={"event": "user_enrolled", "course_id": data.course_id, "user_id": data.user_id},
        )
        return result

    async def get_enrollment(
        self, enrollment_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> EnrollmentRead:
        key = keys.enrollment_key(enrollment_id, tenant_id, organisation_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return EnrollmentRead.model_validate(cached)

        result = EnrollmentRead.model_validate(await self._load(enrollment_id, tenant_id, organisation_id))
        await self.cache.set(key, result.model_dump(mode="json"), self.ttl.enrollment)
        return result

    async def list_enrollments(
        self,
        tenant_id: str | None,
        organisation_id: str | None,
        filters: EnrollmentFilters | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> EnrollmentListResponse:
        filters = filters or EnrollmentFilters()
        payload = filters.model_dump(mode="json", exclude_none=True)
        key = keys.enrollment_list_key(tenant_id, organisation_id, {**payload, "offset": offset, "limit": limit})

        async def load() -> EnrollmentListResponse:
            rows, total = await self.repos.enrollments.find_and_count(
                tenant_id, organisation_id, payload, offset, limit
            )
            return EnrollmentListResponse(
                enrollments=[EnrollmentRead.model_validate(row) for row in rows],
                total_elements=total,
                offset=offset,
                limit=limit,
            )

        data = await self.cache.get_or_set(key, load, self.ttl.enrollment)
        return EnrollmentListResponse.model_validate(data)

    async def update_enrollment(
        self,
        enrollment_id: str,
        tenant_id: str | None,
        organisation_id: str | None,
        data: EnrollmentUpdate,
    ) -> EnrollmentRead:
        enrollment = await self._load(enrollment_id, tenant_id, organisation_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(enrollment, field, value)
        return await self._saved(Mutation.UPDATE, enrollment)

    async def cancel(
        self, enrollment_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> EnrollmentRead:
        enrollment = await self._load(enrollment_id, tenant_id, organisation_id)
        if enrollment.status == EnrollmentStatus.ARCHIVED:
            raise InvalidStateError(
                "Enrollment is already cancelled", {"enrollment_id": enrollment_id}, code="ENROLLMENT_CANCELLED"
            )
        enrollment.status = EnrollmentStatus.ARCHIVED
        enrollment.end_time = datetime.now(timezone.utc)
        return await self._saved(Mutation.ARCHIVE, enrollment)
