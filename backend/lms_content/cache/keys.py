"""Cache key construction.

Every key is ``<namespace>:<id>:<tenant>:<organisation>[:<extra>]``. Segment
values are percent-encoded, so a real value never contains ``:``, ``*`` or
``@``. That keeps the ``@global`` placeholder and the ``*`` wildcard out of
reach of any caller-supplied id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping
from urllib.parse import quote, urlencode

GLOBAL_SCOPE = "@global"
WILDCARD = "*"
SEPARATOR = ":"
EMPTY_FILTERS = "all"


class EntityType(str, Enum):
    """Key namespaces. Views of an entity get their own namespace token."""

    COURSE = "course"
    COURSE_HIERARCHY = "course:hierarchy"
    COURSE_SEARCH = "course:search"
    MODULE = "module"
    COURSE_MODULES = "module:course"
    MODULE_CHILDREN = "module:parent"
    LESSON = "lesson"
    MODULE_LESSONS = "lesson:module"
    ENROLLMENT = "enrollment"
    ENROLLMENT_LIST = "enrollment:list"
    USER_PROGRESS = "user_progress"


def _segment(value: Any) -> str:
    return quote(str(value), safe="")


def _scope(value: Any) -> str:
    if value is None or value == "":
        return GLOBAL_SCOPE
    return _segment(value)


@dataclass(frozen=True)
class ContentKey:
    """Identity of one cached entity or view."""

    entity_type: EntityType
    tenant_id: str | None
    organisation_id: str | None
    entity_id: str | None = None

    def render(self, extra: str | None = None) -> str:
        parts = [self.entity_type.value]
        if self.entity_id is not None:
            parts.append(_segment(self.entity_id))
        parts.append(_scope(self.tenant_id))
        parts.append(_scope(self.organisation_id))
        if extra is not None:
            parts.append(extra)
        return SEPARATOR.join(parts)

    def pattern(self) -> str:
        return self.render(WILDCARD)


def _normalize(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple, set, frozenset)):
        items = value if not isinstance(value, (set, frozenset)) else sorted(value, key=str)
        return ",".join(_normalize(v) for v in items)
    return str(value)


def encode_filters(filters: Mapping[str, Any] | None) -> str:
    """Deterministic key tail for a filter/pagination payload.

    Keys are sorted so ``{"a": 1, "b": 2}`` and ``{"b": 2, "a": 1}`` share a
    cache entry. ``None`` values are dropped.
    """
    if not filters:
        return EMPTY_FILTERS
    items = sorted((str(k), _normalize(v)) for k, v in filters.items() if v is not None)
    if not items:
        return EMPTY_FILTERS
    # urlencode escapes ':' and '*' so the tail stays a single segment
    return urlencode(items, safe="")


def build_key(
    entity_type: EntityType,
    tenant_id: str | None,
    organisation_id: str | None,
    entity_id: str | None = None,
    extra: Mapping[str, Any] | str | None = None,
) -> str:
    if isinstance(extra, Mapping):
        extra = encode_filters(extra)
    elif extra is not None:
        extra = _segment(extra)
    return ContentKey(entity_type, tenant_id, organisation_id, entity_id).render(extra)


def build_pattern(
    entity_type: EntityType,
    tenant_id: str | None,
    organisation_id: str | None,
    entity_id: str | None = None,
) -> str:
    return ContentKey(entity_type, tenant_id, organisation_id, entity_id).pattern()


def key_matches(key: str, pattern: str) -> bool:
    """Segment-wise match of a key against a pattern.

    A ``*`` segment in the middle matches exactly one segment; a trailing
    ``*`` matches zero or more trailing segments.
    """
    key_parts = key.split(SEPARATOR)
    pattern_parts = pattern.split(SEPARATOR)
    if pattern_parts[-1] == WILDCARD:
        pattern_parts = pattern_parts[:-1]
        if len(key_parts) < len(pattern_parts):
            return False
        key_parts = key_parts[: len(pattern_parts)]
    elif len(key_parts) != len(pattern_parts):
        return False
    return all(p == WILDCARD or p == k for p, k in zip(pattern_parts, key_parts))


# Courses


def course_key(course_id: str, tenant_id: str | None, organisation_id: str | None) -> str:
    return build_key(EntityType.COURSE, tenant_id, organisation_id, course_id)


def course_hierarchy_key(course_id: str, tenant_id: str | None, organisation_id: str | None) -> str:
    return build_key(EntityType.COURSE_HIERARCHY, tenant_id, organisation_id, course_id)


def course_hierarchy_pattern(course_id: str, tenant_id: str | None, organisation_id: str | None) -> str:
    return build_pattern(EntityType.COURSE_HIERARCHY, tenant_id, organisation_id, course_id)


def tracked_hierarchy_key(
    course_id: str,
    user_id: str,
    tenant_id: str | None,
    organisation_id: str | None,
    filter_type: str | None = None,
    module_id: str | None = None,
) -> str:
    # Lives under the hierarchy namespace so the course hierarchy pattern covers it
    key = ContentKey(EntityType.COURSE_HIERARCHY, tenant_id, organisation_id, course_id)
    view = encode_filters({"type": filter_type, "moduleId": module_id})
    return key.render(SEPARATOR.join([_segment(user_id), view]))


def tracked_hierarchy_user_pattern(
    course_id: str, user_id: str, tenant_id: str | None, organisation_id: str | None
) -> str:
    """Every filtered variant of one user's tracked view of a course."""
    key = ContentKey(EntityType.COURSE_HIERARCHY, tenant_id, organisation_id, course_id)
    return key.render(SEPARATOR.join([_segment(user_id), WILDCARD]))


def course_search_key(
    tenant_id: str | None, organisation_id: str | None, filters: Mapping[str, Any] | None
) -> str:
    return build_key(EntityType.COURSE_SEARCH, tenant_id, organisation_id, extra=dict(filters or {}))


def course_search_pattern(tenant_id: str | None, organisation_id: str | None) -> str:
    return build_pattern(EntityType.COURSE_SEARCH, tenant_id, organisation_id)


# Modules


def module_key(module_id: str, tenant_id: str | None, organisation_id: str | None) -> str:
    return build_key(EntityType.MODULE, tenant_id, organisation_id, module_id)


def course_modules_key(course_id: str, tenant_id: str | None, organisation_id: str | None) -> str:
    return build_key(EntityType.COURSE_MODULES, tenant_id, organisation_id, course_id)


def course_modules_pattern(course_id: str, tenant_id: str | None, organisation_id: str | None) -> str:
    return build_pattern(EntityType.COURSE_MODULES, tenant_id, organisation_id, course_id)


def module_children_key(parent_id: str, tenant_id: str | None, organisation_id: str | None) -> str:
    return build_key(EntityType.MODULE_CHILDREN, tenant_id, organisation_id, parent_id)


def module_children_pattern(parent_id: str, tenant_id: str | None, organisation_id: str | None) -> str:
    return build_pattern(EntityType.MODULE_CHILDREN, tenant_id, organisation_id, parent_id)


# Lessons


def lesson_key(lesson_id: str, tenant_id: str | None, organisation_id: str | None) -> str:
    return build_key(EntityType.LESSON, tenant_id, organisation_id, lesson_id)


def module_lessons_key(module_id: str, tenant_id: str | None, organisation_id: str | None) -> str:
    return build_key(EntityType.MODULE_LESSONS, tenant_id, organisation_id, module_id)


def module_lessons_pattern(module_id: str, tenant_id: str | None, organisation_id: str | None) -> str:
    return build_pattern(EntityType.MODULE_LESSONS, tenant_id, organisation_id, module_id)


# Enrollments and progress


def enrollment_key(enrollment_id: str, tenant_id: str | None, organisation_id: str | None) -> str:
    return build_key(EntityType.ENROLLMENT, tenant_id, organisation_id, enrollment_id)


def enrollment_list_key(
    tenant_id: str | None, organisation_id: str | None, filters: Mapping[str, Any] | None
) -> str:
    return build_key(EntityType.ENROLLMENT_LIST, tenant_id, organisation_id, extra=dict(filters or {}))


def enrollment_list_pattern(tenant_id: str | None, organisation_id: str | None) -> str:
    return build_pattern(EntityType.ENROLLMENT_LIST, tenant_id, organisation_id)


def user_progress_key(
    course_id: str, user_id: str, tenant_id: str | None, organisation_id: str | None
) -> str:
    return build_key(EntityType.USER_PROGRESS, tenant_id, organisation_id, course_id, user_id)
