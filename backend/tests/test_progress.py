"""Tests for progress aggregation."""

from datetime import timedelta

import pytest
from hypothesis import given, settings, strategies as st

from lms_content.core.app_exceptions import InvalidStateError
from lms_content.models import TrackingStatus
from lms_content.schemas.hierarchy import HierarchyNode, NodeKind
from lms_content.services.hierarchy import HierarchyAssembler
from lms_content.services.progress import (
    ProgressAggregator,
    lesson_progress,
    rollup_progress,
    rollup_status,
    round_half_up,
)
from tests.helpers.seed import (
    BASE_TIME,
    ORG,
    TENANT,
    USER,
    make_course,
    make_course_track,
    make_lesson,
    make_lesson_track,
    make_module,
)


class TestLessonProgress:
    def test_position_never_reaches_100_without_completion(self):
        assert lesson_progress(TrackingStatus.STARTED, 0.999) == 99
        assert lesson_progress(TrackingStatus.INCOMPLETE, 0.999) == 99
        assert lesson_progress(TrackingStatus.INCOMPLETE, 1.0) == 99

    def test_completed_is_100_regardless_of_position(self):
        assert lesson_progress(TrackingStatus.COMPLETED, 0.0) == 100
        assert lesson_progress(TrackingStatus.COMPLETED, 0.42) == 100

    def test_not_started_and_fresh_attempts(self):
        assert lesson_progress(None, 0.5) == 0
        assert lesson_progress(TrackingStatus.NOT_STARTED, 0.5) == 0
        assert lesson_progress(TrackingStatus.STARTED, 0.0) == 0

    def test_half_up_rounding(self):
        assert lesson_progress(TrackingStatus.INCOMPLETE, 0.125) == 13
        assert lesson_progress(TrackingStatus.INCOMPLETE, 0.5) == 50
        assert round_half_up(2.5) == 3
        assert round_half_up(0.49) == 0


@settings(max_examples=200, deadline=None)
@given(
    status=st.sampled_from([TrackingStatus.STARTED, TrackingStatus.INCOMPLETE]),
    position=st.floats(min_value=0.0, max_value=1.0, allow_nan=False),
)
def test_incomplete_lessons_stay_below_100(status, position):
    assert 0 <= lesson_progress(status, position) <= 99


class TestRollup:
    def test_zero_lessons_is_started_not_completed(self):
        progress = rollup_progress(0, 0)
        assert progress == 0
        assert rollup_status(progress) == TrackingStatus.STARTED

    def test_statuses(self):
        assert rollup_status(rollup_progress(1, 2)) == TrackingStatus.INCOMPLETE
        assert rollup_status(rollup_progress(2, 2)) == TrackingStatus.COMPLETED
        assert rollup_status(rollup_progress(0, 3)) == TrackingStatus.STARTED

    def test_rounding(self):
        assert rollup_progress(1, 3) == 33
        assert rollup_progress(2, 3) == 67
        assert rollup_progress(1, 8) == 13


async def _tree(repos, course_id="course-1") -> HierarchyNode:
    return await HierarchyAssembler(repos).assemble(course_id, TENANT, ORG)


@pytest.mark.asyncio
async def test_module_scenario(repos, store):
    """M1 has one completed and one untouched lesson; M2 has none."""
    make_course(store, "C")
    m1 = make_module(store, "M1", course_id="C", ordering=1)
    make_module(store, "M2", course_id="C", ordering=2)
    make_lesson(store, "A", m1, ordering=1)
    make_lesson(store, "B", m1, ordering=2)
    make_course_track(store, course_id="C", no_of_lessons=2, completed_lessons=1)
    make_lesson_track(store, "A", TrackingStatus.COMPLETED, position=1.0, course_id="C")

    tracked = await ProgressAggregator(repos).overlay_tracking(await _tree(repos, "C"), USER, TENANT, ORG)

    m1_view, m2_view = tracked.children
    assert (m1_view.tracking.progress, m1_view.tracking.status) == (50, TrackingStatus.INCOMPLETE)
    assert (m1_view.tracking.completed_lessons, m1_view.tracking.total_lessons) == (1, 2)
    assert (m2_view.tracking.progress, m2_view.tracking.status) == (0, TrackingStatus.STARTED)
    assert [lesson.tracking.status for lesson in m1_view.lessons] == [
        TrackingStatus.COMPLETED,
        TrackingStatus.NOT_STARTED,
    ]
    assert tracked.tracking.progress == 50


@pytest.mark.asyncio
async def test_without_course_track_everything_not_started(repos, seeded):
    tracked = await ProgressAggregator(repos).overlay_tracking(await _tree(repos), USER, TENANT, ORG)

    assert tracked.tracking.status == TrackingStatus.NOT_STARTED
    assert tracked.tracking.progress == 0
    assert tracked.tracking.total_lessons == 3
    assert tracked.last_accessed_lesson is None
    m2 = tracked.children[1]
    assert m2.tracking.status == TrackingStatus.NOT_STARTED
    assert m2.tracking.total_lessons == 1
    assert m2.children[0].lessons[0].tracking.status == TrackingStatus.NOT_STARTED
    assert seeded.calls["MemoryLessonTrackRepository.find_by_user_course"] == 0


@pytest.mark.asyncio
async def test_top_level_module_counts_submodule_lessons(repos, seeded):
    make_course_track(seeded, no_of_lessons=3, completed_lessons=1)
    make_lesson_track(seeded, "l3", TrackingStatus.COMPLETED, position=1.0, minutes_after=5)

    tracked = await ProgressAggregator(repos).overlay_tracking(await _tree(repos), USER, TENANT, ORG)

    m2 = tracked.children[1]
    assert m2.tracking.progress == 100
    assert m2.tracking.status == TrackingStatus.COMPLETED
    assert m2.children[0].tracking.progress == 100
    assert m2.tracking.last_accessed == BASE_TIME + timedelta(minutes=5)
    assert tracked.children[0].tracking.last_accessed is None


@pytest.mark.asyncio
async def test_latest_attempt_wins(repos, seeded):
    make_course_track(seeded, no_of_lessons=3)
    make_lesson_track(seeded, "l1", TrackingStatus.COMPLETED, position=1.0, attempt=1, minutes_after=1)
    make_lesson_track(seeded, "l1", TrackingStatus.INCOMPLETE, position=0.4, attempt=2, minutes_after=9)

    tracked = await ProgressAggregator(repos).overlay_tracking(await _tree(repos), USER, TENANT, ORG)

    lesson = tracked.children[0].lessons[0]
    assert lesson.tracking.status == TrackingStatus.INCOMPLETE
    assert lesson.tracking.progress == 40
    assert lesson.tracking.attempt.attempt_number == 2


@pytest.mark.asyncio
async def test_course_level_prefers_persisted_counters(repos, seeded):
    # Persisted total excludes a lesson not considered for passing
    make_course_track(seeded, no_of_lessons=2, completed_lessons=1, last_accessed_date=BASE_TIME)
    make_lesson_track(seeded, "l1", TrackingStatus.COMPLETED, position=1.0, time_spent=30, minutes_after=2)
    make_lesson_track(seeded, "l2", TrackingStatus.INCOMPLETE, position=0.3, time_spent=15, minutes_after=3)

    tracked = await ProgressAggregator(repos).overlay_tracking(await _tree(repos), USER, TENANT, ORG)

    course = tracked.tracking
    assert course.total_lessons == 2
    assert course.completed_lessons == 1
    assert course.progress == 50
    assert course.time_spent == 45
    assert course.last_accessed == BASE_TIME
    assert tracked.last_accessed_lesson.lesson_id == "l2"
    assert tracked.last_accessed_lesson.progress == 30


@pytest.mark.asyncio
async def test_course_progress_rounded_and_clamped(repos, seeded):
    make_course_track(seeded, no_of_lessons=3, completed_lessons=4, status=TrackingStatus.COMPLETED)

    tracked = await ProgressAggregator(repos).overlay_tracking(await _tree(repos), USER, TENANT, ORG)

    assert tracked.tracking.progress == 100
    assert tracked.tracking.status == TrackingStatus.COMPLETED
    assert tracked.last_accessed_lesson is None


@pytest.mark.asyncio
async def test_course_progress_half_up(repos, seeded):
    make_course_track(seeded, no_of_lessons=3, completed_lessons=2)
    tracked = await ProgressAggregator(repos).overlay_tracking(await _tree(repos), USER, TENANT, ORG)
    assert tracked.tracking.progress == 67


@pytest.mark.asyncio
async def test_missing_hierarchy_is_invalid_state(repos):
    aggregator = ProgressAggregator(repos)
    with pytest.raises(InvalidStateError):
        await aggregator.overlay_tracking(None, USER, TENANT, ORG)
    with pytest.raises(InvalidStateError):
        await aggregator.overlay_tracking(HierarchyNode(id="m1", kind=NodeKind.MODULE), USER, TENANT, ORG)
