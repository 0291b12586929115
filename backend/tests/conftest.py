"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections import Counter, defaultdict
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import inspect as sa_inspect

from lms_content.cache.redis import CacheService
from lms_content.cache.ttl import TTLPolicy
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
    new_id,
)
from lms_content.repositories.base import Repositories
from tests.helpers.seed import make_course, make_lesson, make_module

# ============================================================================
# Fake Redis backend
# ============================================================================


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis`` (decode_responses=True).

    ``now`` is a manual clock for expiry; ``down`` makes every call raise.
    """

    def __init__(self):
        self.store: dict[str, tuple[str, float | None]] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.now = 0.0
        self.down = False

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _check(self, *call: Any) -> None:
        self.calls.append(call)
        if self.down:
            raise RedisConnectionError("connection refused")

    def _alive(self, key: str) -> str | None:
        entry = self.store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self.now:
            del self.store[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        self._check("get", key)
        return self._alive(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check("set", key, ex)
        self.store[key] = (value, self.now + ex if ex else None)
        return True

    async def delete(self, *keys: str) -> int:
        self._check("delete", *keys)
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    async def scan_iter(self, match: str | None = None, count: int | None = None):
        self._check("scan", count)
        for key in list(self.store):
            if self._alive(key) is not None:
                yield key

    async def flushdb(self) -> bool:
        self._check("flushdb")
        self.store.clear()
        return True

    def keys_now(self) -> set[str]:
        return {key for key in list(self.store) if self._alive(key) is not None}


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis: FakeRedis) -> CacheService:
    return CacheService(fake_redis, default_ttl=3600)


@pytest.fixture
def ttl() -> TTLPolicy:
    return TTLPolicy()


# ============================================================================
# In-memory repositories
# ============================================================================


def _in_scope(row: Any, tenant_id: str | None, organisation_id: str | None) -> bool:
    if tenant_id and row.tenant_id != tenant_id:
        return False
    if organisation_id and row.organisation_id != organisation_id:
        return False
    return True


def _pk(entity: Any) -> str:
    return sa_inspect(type(entity)).primary_key[0].key


class MemoryStore:
    """Rows per model class plus a counter of finder calls."""

    def __init__(self):
        self.rows: dict[type, dict[str, Any]] = defaultdict(dict)
        self.calls: Counter = Counter()

    def all(self, model: type) -> list[Any]:
        return list(self.rows[model].values())

    def get(self, model: type, key: str | None) -> Any | None:
        return self.rows[model].get(key) if key else None

    def put(self, entity: Any) -> Any:
        pk = _pk(entity)
        if getattr(entity, pk) is None:
            setattr(entity, pk, new_id())
        self.rows[type(entity)][getattr(entity, pk)] = entity
        return entity


class _MemoryRepository:
    def __init__(self, store: MemoryStore):
        self.store = store

    def _hit(self, name: str) -> None:
        self.store.calls[f"{type(self).__name__}.{name}"] += 1

    async def save(self, entity: Any) -> Any:
        self._hit("save")
        return self.store.put(entity)


class MemoryCourseRepository(_MemoryRepository):
    async def find_by_id(self, course_id, tenant_id=None, organisation_id=None):
        self._hit("find_by_id")
        row = self.store.get(Course, course_id)
        return row if row is not None and _in_scope(row, tenant_id, organisation_id) else None

    async def find_and_count(self, tenant_id, organisation_id, filters, offset, limit):
        self._hit("find_and_count")
        rows = [
            row for row in self.store.all(Course)
            if _in_scope(row, tenant_id, organisation_id) and row.status != CourseStatus.ARCHIVED
        ]
        if filters.get("query"):
            rows = [row for row in rows if filters["query"].lower() in row.title.lower()]
        if filters.get("featured") is not None:
            rows = [row for row in rows if row.featured == filters["featured"]]
        rows.sort(key=lambda row: row.title)
        return rows[offset : offset + limit], len(rows)

    async def count_modules(self, course_ids, tenant_id):
        self._hit("count_modules")
        counts: Counter = Counter()
        for module in self.store.all(Module):
            if module.course_id in course_ids and module.status != ModuleStatus.ARCHIVED:
                counts[module.course_id] += 1
        return dict(counts)


class MemoryModuleRepository(_MemoryRepository):
    async def find_by_id(self, module_id, tenant_id=None, organisation_id=None):
        self._hit("find_by_id")
        row = self.store.get(Module, module_id)
        return row if row is not None and _in_scope(row, tenant_id, organisation_id) else None

    def _live(self, rows):
        return sorted((row for row in rows if row.status != ModuleStatus.ARCHIVED), key=lambda row: row.ordering)

    async def find_by_course(self, course_id, tenant_id, organisation_id):
        self._hit("find_by_course")
        return self._live(
            row for row in self.store.all(Module)
            if row.course_id == course_id and row.parent_id is None and _in_scope(row, tenant_id, organisation_id)
        )

    async def find_by_parent(self, parent_id, tenant_id, organisation_id):
        self._hit("find_by_parent")
        return self._live(
            row for row in self.store.all(Module)
            if row.parent_id == parent_id and _in_scope(row, tenant_id, organisation_id)
        )


class MemoryLessonRepository(_MemoryRepository):
    async def find_by_id(self, lesson_id, tenant_id=None, organisation_id=None):
        self._hit("find_by_id")
        row = self.store.get(Lesson, lesson_id)
        return row if row is not None and _in_scope(row, tenant_id, organisation_id) else None


class MemoryCourseLessonRepository(_MemoryRepository):
    def _placements(self, predicate):
        pairs = []
        for placement in self.store.all(CourseLesson):
            lesson = self.store.get(Lesson, placement.lesson_id)
            if lesson is None or not predicate(placement):
                continue
            if placement.status == LessonStatus.ARCHIVED or lesson.status == LessonStatus.ARCHIVED:
                continue
            pairs.append((placement, lesson))
        return sorted(pairs, key=lambda pair: pair[0].ordering)

    async def find_by_module(self, module_id, tenant_id, organisation_id):
        self._hit("find_by_module")
        return self._placements(
            lambda row: row.module_id == module_id and _in_scope(row, tenant_id, organisation_id)
        )

    async def find_by_course(self, course_id, tenant_id, organisation_id):
        self._hit("find_by_course")
        return self._placements(
            lambda row: row.course_id == course_id and _in_scope(row, tenant_id, organisation_id)
        )

    async def find_by_lesson(self, lesson_id, tenant_id, organisation_id):
        self._hit("find_by_lesson")
        return [
            row for row in self.store.all(CourseLesson)
            if row.lesson_id == lesson_id
            and row.status != LessonStatus.ARCHIVED
            and _in_scope(row, tenant_id, organisation_id)
        ]

    async def find_one(self, module_id, lesson_id):
        self._hit("find_one")
        for row in self.store.all(CourseLesson):
            if row.module_id == module_id and row.lesson_id == lesson_id:
                return row
        return None


class MemoryCourseTrackRepository(_MemoryRepository):
    async def find_by_user(self, course_id, user_id, tenant_id, organisation_id):
        self._hit("find_by_user")
        for row in self.store.all(CourseTrack):
            if row.course_id == course_id and row.user_id == user_id and _in_scope(row, tenant_id, organisation_id):
                return row
        return None


class MemoryLessonTrackRepository(_MemoryRepository):
    async def find_by_user_course(self, user_id, course_id, tenant_id, organisation_id):
        self._hit("find_by_user_course")
        rows = [
            row for row in self.store.all(LessonTrack)
            if row.user_id == user_id and row.course_id == course_id and _in_scope(row, tenant_id, organisation_id)
        ]
        return sorted(rows, key=lambda row: (row.updated_at, row.attempt), reverse=True)


class MemoryEnrollmentRepository(_MemoryRepository):
    async def find_by_id(self, enrollment_id, tenant_id, organisation_id):
        self._hit("find_by_id")
        row = self.store.get(UserEnrollment, enrollment_id)
        return row if row is not None and _in_scope(row, tenant_id, organisation_id) else None

    async def find_by_user_course(self, user_id, course_id, tenant_id, organisation_id):
        self._hit("find_by_user_course")
        for row in self.store.all(UserEnrollment):
            if row.user_id == user_id and row.course_id == course_id and _in_scope(row, tenant_id, organisation_id):
                return row
        return None

    async def find_and_count(self, tenant_id, organisation_id, filters, offset, limit):
        self._hit("find_and_count")
        rows = [row for row in self.store.all(UserEnrollment) if _in_scope(row, tenant_id, organisation_id)]
        for field in ("user_id", "course_id"):
            if filters.get(field):
                rows = [row for row in rows if getattr(row, field) == filters[field]]
        if filters.get("status"):
            rows = [row for row in rows if row.status == EnrollmentStatus(filters["status"])]
        return rows[offset : offset + limit], len(rows)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def repos(store: MemoryStore) -> Repositories:
    return Repositories(
        courses=MemoryCourseRepository(store),
        modules=MemoryModuleRepository(store),
        lessons=MemoryLessonRepository(store),
        course_lessons=MemoryCourseLessonRepository(store),
        course_tracks=MemoryCourseTrackRepository(store),
        lesson_tracks=MemoryLessonTrackRepository(store),
        enrollments=MemoryEnrollmentRepository(store),
    )


# ============================================================================
# Seed fixtures
# ============================================================================


@pytest.fixture
def seeded(store: MemoryStore) -> MemoryStore:
    """course-1: module m1 (l1, l2), module m2 with submodule s1 (l3), archived m3 (l4)."""
    make_course(store)
    m1 = make_module(store, "m1", ordering=1)
    m2 = make_module(store, "m2", ordering=2)  # noqa: F841
    s1 = make_module(store, "s1", parent_id="m2", ordering=1)
    m3 = make_module(store, "m3", ordering=0, status=ModuleStatus.ARCHIVED)
    make_lesson(store, "l1", m1, ordering=1)
    make_lesson(store, "l2", m1, ordering=2)
    make_lesson(store, "l3", s1, ordering=1)
    make_lesson(store, "l4", m3, ordering=1)
    return store
