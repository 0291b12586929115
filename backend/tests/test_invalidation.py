"""Tests for cascade invalidation rules."""

import pytest

from lms_content.cache import keys
from lms_content.cache.invalidation import (
    InvalidationPlan,
    LessonPlacement,
    Mutation,
    apply_invalidation,
    course_rules,
    enrollment_rules,
    lesson_association_rules,
    lesson_rules,
    module_rules,
    tracking_rules,
)
from lms_content.cache.redis import CacheService

T, O = "t1", "o1"


class TestLessonRules:
    @pytest.mark.parametrize("mutation", list(Mutation))
    def test_single_placement_purges_exactly_three_targets(self, mutation):
        plan = lesson_rules(mutation, "L", [LessonPlacement(course_id="C", module_id="M")], T, O)

        assert plan.targets == {
            keys.lesson_key("L", T, O),
            keys.module_lessons_pattern("M", T, O),
            keys.course_hierarchy_pattern("C", T, O),
        }

    def test_course_row_is_not_purged(self):
        plan = lesson_rules(Mutation.UPDATE, "L", [LessonPlacement("C", "M")], T, O)
        assert keys.course_key("C", T, O) not in plan.targets

    def test_one_pair_per_placement(self):
        plan = lesson_rules(
            Mutation.UPDATE, "L", [LessonPlacement("C", "M1"), LessonPlacement("C", "M2")], T, O
        )
        assert plan.keys == (keys.lesson_key("L", T, O),)
        assert plan.patterns == (
            keys.module_lessons_pattern("M1", T, O),
            keys.course_hierarchy_pattern("C", T, O),
            keys.module_lessons_pattern("M2", T, O),
        )

    def test_unplaced_lesson_purges_own_key_only(self):
        assert lesson_rules(Mutation.CREATE, "L", [], T, O).targets == {keys.lesson_key("L", T, O)}


class TestCourseRules:
    def test_create(self):
        plan = course_rules(Mutation.CREATE, "C", T, O)
        assert plan.targets == {keys.course_key("C", T, O), keys.course_search_pattern(T, O)}

    @pytest.mark.parametrize("mutation", [Mutation.UPDATE, Mutation.ARCHIVE])
    def test_update_walks_up_not_down(self, mutation):
        plan = course_rules(mutation, "C", T, O)
        assert plan.targets == {
            keys.course_key("C", T, O),
            keys.course_hierarchy_pattern("C", T, O),
            keys.course_search_pattern(T, O),
        }


class TestModuleRules:
    def test_top_level_module(self):
        plan = module_rules(Mutation.UPDATE, "M", "C", T, O)
        assert plan.keys == (keys.module_key("M", T, O),)
        assert set(plan.patterns) == {
            keys.module_lessons_pattern("M", T, O),
            keys.module_children_pattern("M", T, O),
            keys.course_modules_pattern("C", T, O),
            keys.course_hierarchy_pattern("C", T, O),
        }
        assert keys.course_key("C", T, O) not in plan.targets

    def test_submodule_also_purges_parent_children(self):
        plan = module_rules(Mutation.CREATE, "S", "C", T, O, parent_id="M")
        assert keys.module_children_pattern("M", T, O) in plan.patterns


def test_association_rules():
    plan = lesson_association_rules(LessonPlacement("C", "M"), T, O)
    assert plan.keys == ()
    assert set(plan.patterns) == {
        keys.module_lessons_pattern("M", T, O),
        keys.course_hierarchy_pattern("C", T, O),
    }


def test_tracking_rules():
    plan = tracking_rules("C", "U", T, O)
    assert plan.keys == (keys.user_progress_key("C", "U", T, O),)
    assert plan.patterns == (keys.tracked_hierarchy_user_pattern("C", "U", T, O),)


def test_enrollment_rules():
    plan = enrollment_rules(Mutation.ARCHIVE, "E", T, O)
    assert plan.targets == {keys.enrollment_key("E", T, O), keys.enrollment_list_pattern(T, O)}


def test_plan_dedupes_and_combines():
    first = InvalidationPlan(keys=("a", "a"), patterns=("p:*",))
    second = InvalidationPlan(keys=("b", "a"), patterns=("p:*", "q:*"))
    combined = first + second
    assert combined.keys == ("a", "b")
    assert combined.patterns == ("p:*", "q:*")
    assert not InvalidationPlan()


@pytest.mark.asyncio
async def test_apply_invalidation_purges_views(cache, fake_redis):
    placement = LessonPlacement("C", "M")
    survivors = {keys.course_key("C", T, O), keys.course_hierarchy_key("C", "t2", O)}
    purged = {
        keys.lesson_key("L", T, O),
        keys.module_lessons_key("M", T, O),
        keys.course_hierarchy_key("C", T, O),
        keys.tracked_hierarchy_key("C", "U", T, O),
    }
    for key in survivors | purged:
        await cache.set(key, {"x": 1}, 60)

    await apply_invalidation(cache, lesson_rules(Mutation.UPDATE, "L", [placement], T, O))

    assert fake_redis.keys_now() == survivors


@pytest.mark.asyncio
async def test_writes_purge_only_the_writers_scope(cache, fake_redis):
    # Wider-scope copies are left to expire on their TTL
    wider = {keys.course_key("C", T, None), keys.course_hierarchy_key("C", T, None)}
    for key in wider | {keys.course_key("C", T, O)}:
        await cache.set(key, {"x": 1}, 60)

    plan = course_rules(Mutation.UPDATE, "C", T, O)
    assert not wider & plan.targets

    await apply_invalidation(cache, plan)
    assert fake_redis.keys_now() == wider


@pytest.mark.asyncio
async def test_apply_invalidation_twice_is_harmless(cache, fake_redis):
    await cache.set(keys.enrollment_key("E", T, O), 1, 60)
    plan = enrollment_rules(Mutation.UPDATE, "E", T, O)
    await apply_invalidation(cache, plan)
    await apply_invalidation(cache, plan)
    assert fake_redis.keys_now() == set()


class _ExplodingCache(CacheService):
    async def delete(self, key):
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_apply_invalidation_never_raises(fake_redis):
    await apply_invalidation(_ExplodingCache(fake_redis), course_rules(Mutation.UPDATE, "C", T, O))


@pytest.mark.asyncio
async def test_apply_invalidation_with_backend_down(cache, fake_redis):
    fake_redis.down = True
    await apply_invalidation(cache, course_rules(Mutation.UPDATE, "C", T, O))
    assert cache.health.healthy is False
