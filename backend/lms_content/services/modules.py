"""Module reads and writes."""

from __future__ import annotations

from lms_content.cache import keys
from lms_content.cache.invalidation import InvalidationPlan, Mutation, apply_invalidation, module_rules
from lms_content.cache.redis import CacheService
from lms_content.cache.ttl import TTLPolicy
from lms_content.core.app_exceptions import InvalidStateError, module_not_found
from lms_content.core.logging import get_logger
from lms_content.models import Module, ModuleStatus
from lms_content.repositories.base import Repositories
from lms_content.schemas.content import ModuleCreate, ModuleOrder, ModuleRead, ModuleUpdate
from lms_content.services.hierarchy import HierarchyAssembler, ensure_course_visible

logger = get_logger(__name__)


class ModuleService:
    def __init__(self, repositories: Repositories, cache: CacheService, ttl: TTLPolicy | None = None):
        self.repos = repositories
        self.cache = cache
        self.ttl = ttl or TTLPolicy.from_settings()
        self.assembler = HierarchyAssembler(repositories, cache, self.ttl)

    async def _load(self, module_id: str, tenant_id: str | None, organisation_id: str | None) -> Module:
        module = await self.repos.modules.find_by_id(module_id, tenant_id, organisation_id)
        if module is None or module.status == ModuleStatus.ARCHIVED:
            raise module_not_found(module_id)
        return module

    def _rules(self, mutation: Mutation, module: Module) -> InvalidationPlan:
        return module_rules(
            mutation,
            module.module_id,
            module.course_id,
            module.tenant_id,
            module.organisation_id,
            module.parent_id,
        )

    async def get_module(self, module_id: str, tenant_id: str | None, organisation_id: str | None) -> ModuleRead:
        key = keys.module_key(module_id, tenant_id, organisation_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return ModuleRead.model_validate(cached)

        result = ModuleRead.model_validate(await self._load(module_id, tenant_id, organisation_id))
        await self.cache.set(key, result.model_dump(mode="json"), self.ttl.module)
        return result

    async def list_course_modules(
        self, course_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[ModuleRead]:
        return await self.assembler.course_modules(course_id, tenant_id, organisation_id)

    async def list_submodules(
        self, parent_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> list[ModuleRead]:
        return await self.assembler.submodules(parent_id, tenant_id, organisation_id)

    async def create_module(
        self,
        tenant_id: str | None,
        organisation_id: str | None,
        data: ModuleCreate,
        created_by: str | None = None,
    ) -> ModuleRead:
        """Create a module or a submodule. Submodules cannot have children."""
        ensure_course_visible(
            await self.repos.courses.find_by_id(data.course_id, tenant_id, organisation_id),
            data.course_id,
            tenant_id,
            organisation_id,
        )
        if data.parent_id:
            parent = await self._load(data.parent_id, tenant_id, organisation_id)
            if parent.parent_id is not None:
                raise InvalidStateError(
                    "Modules can only be nested one level deep",
                    {"parent_id": data.parent_id},
                    code="MODULE_DEPTH_EXCEEDED",
                )
            if parent.course_id != data.course_id:
                raise InvalidStateError(
                    "Parent module belongs to another course",
                    {"parent_id": data.parent_id, "course_id": data.course_id},
                )

        module = Module(
            tenant_id=tenant_id,
            organisation_id=organisation_id,
            created_by=created_by,
            updated_by=created_by,
            **data.model_dump(),
        )
        saved = await self.repos.modules.save(module)
        await apply_invalidation(self.cache, self._rules(Mutation.CREATE, saved))
        logger.info(
            "module_created",
            extra={"event": "module_created", "module_id": saved.module_id, "course_id": saved.course_id},
        )
        return ModuleRead.model_validate(saved)

    async def update_module(
        self,
        module_id: str,
        tenant_id: str | None,
        organisation_id: str | None,
        data: ModuleUpdate,
        updated_by: str | None = None,
    ) -> ModuleRead:
        module = await self._load(module_id, tenant_id, organisation_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            setattr(module, field, value)
        module.updated_by = updated_by

        saved = await self.repos.modules.save(module)
        await apply_invalidation(self.cache, self._rules(Mutation.UPDATE, saved))
        return ModuleRead.model_validate(saved)

    async def archive_module(
        self,
        module_id: str,
        tenant_id: str | None,
        organisation_id: str | None,
        updated_by: str | None = None,
    ) -> ModuleRead:
        module = await self._load(module_id, tenant_id, organisation_id)
        module.status = ModuleStatus.ARCHIVED
        module.updated_by = updated_by

        saved = await self.repos.modules.save(module)
        await apply_invalidation(self.cache, self._rules(Mutation.ARCHIVE, saved))
        logger.info("module_archived", extra={"event": "module_archived", "module_id": module_id})
        return ModuleRead.model_validate(saved)

    async def save_order(
        self,
        course_id: str,
        tenant_id: str | None,
        organisation_id: str | None,
        orders: list[ModuleOrder],
    ) -> list[ModuleRead]:
        """Persist new ``ordering`` values for modules of one course."""
        plan = InvalidationPlan()
        saved: list[ModuleRead] = []
        for order in orders:
            module = await self._load(order.module_id, tenant_id, organisation_id)
            if module.course_id != course_id:
                raise InvalidStateError(
                    "Module belongs to another course",
                    {"module_id": order.module_id, "course_id": course_id},
                )
            module.ordering = order.ordering
            updated = await self.repos.modules.save(module)
            plan = plan + self._rules(Mutation.UPDATE, updated)
            saved.append(ModuleRead.model_validate(updated))

        await apply_invalidation(self.cache, plan)
        return saved
