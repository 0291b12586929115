"""Cascade invalidation rules.

Each rule maps a mutation to the exact keys and key patterns to purge. Rules
walk up ("belongs to") unconditionally and down ("contains") one level at
most. List and search views are purged by tenant+organisation pattern rather
than per filter combination, so they are over-invalidated on purpose.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from lms_content.cache import keys
from lms_content.cache.redis import CacheService
from lms_content.core.logging import get_logger

logger = get_logger(__name__)


class Mutation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    ARCHIVE = "archive"


@dataclass(frozen=True)
class LessonPlacement:
    """Where a lesson sits: owning course and module."""

    course_id: str
    module_id: str


def _dedupe(items: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(items))


@dataclass(frozen=True)
class InvalidationPlan:
    keys: tuple[str, ...] = ()
    patterns: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "keys", _dedupe(self.keys))
        object.__setattr__(self, "patterns", _dedupe(self.patterns))

    @property
    def targets(self) -> frozenset[str]:
        return frozenset(self.keys) | frozenset(self.patterns)

    def __add__(self, other: "InvalidationPlan") -> "InvalidationPlan":
        return InvalidationPlan(self.keys + other.keys, self.patterns + other.patterns)

    def __bool__(self) -> bool:
        return bool(self.keys or self.patterns)


def course_rules(
    mutation: Mutation, course_id: str, tenant_id: str | None, organisation_id: str | None
) -> InvalidationPlan:
    own = keys.course_key(course_id, tenant_id, organisation_id)
    search = keys.course_search_pattern(tenant_id, organisation_id)
    if mutation is Mutation.CREATE:
        return InvalidationPlan(keys=(own,), patterns=(search,))
    # The course row never reaches down to module or lesson entries
    return InvalidationPlan(
        keys=(own,),
        patterns=(keys.course_hierarchy_pattern(course_id, tenant_id, organisation_id), search),
    )


def module_rules(
    mutation: Mutation,
    module_id: str,
    course_id: str,
    tenant_id: str | None,
    organisation_id: str | None,
    parent_id: str | None = None,
) -> InvalidationPlan:
    patterns = [
        keys.module_lessons_pattern(module_id, tenant_id, organisation_id),
        keys.module_children_pattern(module_id, tenant_id, organisation_id),
        keys.course_modules_pattern(course_id, tenant_id, organisation_id),
    ]
    if parent_id:
        patterns.append(keys.module_children_pattern(parent_id, tenant_id, organisation_id))
    patterns.append(keys.course_hierarchy_pattern(course_id, tenant_id, organisation_id))
    return InvalidationPlan(
        keys=(keys.module_key(module_id, tenant_id, organisation_id),),
        patterns=tuple(patterns),
    )


def lesson_rules(
    mutation: Mutation,
    lesson_id: str,
    placements: Iterable[LessonPlacement],
    tenant_id: str | None,
    organisation_id: str | None,
) -> InvalidationPlan:
    """Own entry, then every owning module's lesson list and course hierarchy.

    The course scalar row is left alone: a lesson write does not change it.
    """
    patterns: list[str] = []
    for placement in placements:
        patterns.append(keys.module_lessons_pattern(placement.module_id, tenant_id, organisation_id))
        patterns.append(keys.course_hierarchy_pattern(placement.course_id, tenant_id, organisation_id))
    return InvalidationPlan(
        keys=(keys.lesson_key(lesson_id, tenant_id, organisation_id),),
        patterns=tuple(patterns),
    )


def lesson_association_rules(
    placement: LessonPlacement, tenant_id: str | None, organisation_id: str | None
) -> InvalidationPlan:
    """Attaching or detaching a lesson changes lists, not the lesson row."""
    return InvalidationPlan(
        patterns=(
            keys.module_lessons_pattern(placement.module_id, tenant_id, organisation_id),
            keys.course_hierarchy_pattern(placement.course_id, tenant_id, organisation_id),
        )
    )


def tracking_rules(
    course_id: str, user_id: str, tenant_id: str | None, organisation_id: str | None
) -> InvalidationPlan:
    return InvalidationPlan(
        keys=(keys.user_progress_key(course_id, user_id, tenant_id, organisation_id),),
        patterns=(keys.tracked_hierarchy_user_pattern(course_id, user_id, tenant_id, organisation_id),),
    )


def enrollment_rules(
    mutation: Mutation, enrollment_id: str, tenant_id: str | None, organisation_id: str | None
) -> InvalidationPlan:
    return InvalidationPlan(
        keys=(keys.enrollment_key(enrollment_id, tenant_id, organisation_id),),
        patterns=(keys.enrollment_list_pattern(tenant_id, organisation_id),),
    )


async def apply_invalidation(cache: CacheService, plan: InvalidationPlan) -> None:
    """Purge a plan. Runs after the store commit and never raises."""
    if not plan:
        return
    try:
        for key in plan.keys:
            await cache.delete(key)
        for pattern in plan.patterns:
            await cache.delete_pattern(pattern)
    except Exception as e:
        # The mutation is committed already; staleness is bounded by TTL
        logger.warning(
            "cache_invalidation_failed",
            extra={"event": "cache_invalidation_failed", "targets": sorted(plan.targets), "error": str(e)},
        )
