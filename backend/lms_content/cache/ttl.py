"""Per-namespace TTLs (seconds)."""

from __future__ import annotations

from dataclasses import dataclass

from lms_content.cache.keys import EntityType
from lms_content.core.config import Settings, settings


@dataclass(frozen=True)
class TTLPolicy:
    course: int = 3600
    module: int = 1800
    lesson: int = 1800
    enrollment: int = 1800
    user_progress: int = 300
    user_view: int = 600
    default: int = 3600

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "TTLPolicy":
        return cls(
            course=config.CACHE_COURSE_TTL,
            module=config.CACHE_MODULE_TTL,
            lesson=config.CACHE_LESSON_TTL,
            enrollment=config.CACHE_ENROLLMENT_TTL,
            user_progress=config.CACHE_USER_PROGRESS_TTL,
            user_view=config.CACHE_USER_TTL,
            default=config.CACHE_DEFAULT_TTL,
        )

    def for_entity(self, entity_type: EntityType) -> int:
        """TTL for a namespace. Tracked hierarchy views use ``user_view`` explicitly."""
        mapping = {
            EntityType.COURSE: self.course,
            EntityType.COURSE_HIERARCHY: self.course,
            EntityType.COURSE_SEARCH: self.course,
            EntityType.MODULE: self.module,
            EntityType.COURSE_MODULES: self.module,
            EntityType.MODULE_CHILDREN: self.module,
            EntityType.LESSON: self.lesson,
            EntityType.MODULE_LESSONS: self.lesson,
            EntityType.ENROLLMENT: self.enrollment,
            EntityType.ENROLLMENT_LIST: self.enrollment,
            EntityType.USER_PROGRESS: self.user_progress,
        }
        return mapping.get(entity_type, self.default)
