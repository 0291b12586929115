"""Progress aggregation over a course hierarchy.

Lesson numbers come straight from the latest lesson track. Module numbers are
rolled up from lessons (a top-level module counts its submodules' lessons
too). Course numbers prefer the persisted counters on the course track.
Every level rounds half-up.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, Optional

from lms_content.core.app_exceptions import InvalidStateError
from lms_content.core.logging import get_logger
from lms_content.models import CourseTrack, LessonTrack, TrackingStatus
from lms_content.repositories.base import Repositories
from lms_content.schemas.hierarchy import (
    CourseProgress,
    HierarchyNode,
    LastAccessedLesson,
    LessonAttempt,
    LessonProgress,
    LessonRef,
    ModuleProgress,
    NodeKind,
    TrackedHierarchy,
    TrackedLesson,
    TrackedModule,
)

logger = get_logger(__name__)

# A lesson that is not COMPLETED never reports 100
INCOMPLETE_CAP = 99


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def lesson_progress(status: TrackingStatus | None, current_position: float | None) -> int:
    if status == TrackingStatus.COMPLETED:
        return 100
    if status is None or status == TrackingStatus.NOT_STARTED:
        return 0
    position = max(0.0, min(1.0, float(current_position or 0.0)))
    return min(round_half_up(position * 100), INCOMPLETE_CAP)


def rollup_progress(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return min(round_half_up(completed / total * 100), 100)


def rollup_status(progress: int) -> TrackingStatus:
    if progress >= 100:
        return TrackingStatus.COMPLETED
    if progress > 0:
        return TrackingStatus.INCOMPLETE
    # Zero progress (including empty modules) still counts as touched
    return TrackingStatus.STARTED


def _recency(track: LessonTrack) -> tuple:
    updated = track.updated_at
    return (updated is not None, updated or datetime.min, track.attempt or 0)


def latest_attempts(tracks: Iterable[LessonTrack]) -> dict[str, LessonTrack]:
    """Latest attempt per lesson id."""
    index: dict[str, LessonTrack] = {}
    for track in sorted(tracks, key=_recency, reverse=True):
        index.setdefault(track.lesson_id, track)
    return index


def _attempt(track: LessonTrack) -> LessonAttempt:
    return LessonAttempt(
        attempt_id=track.lesson_track_id,
        attempt_number=track.attempt or 1,
        start_datetime=track.start_datetime,
        end_datetime=track.end_datetime,
        current_position=track.current_position or 0.0,
    )


def _tracked_lesson(ref: LessonRef, track: Optional[LessonTrack]) -> TrackedLesson:
    if track is None:
        return TrackedLesson(**ref.model_dump())
    status = TrackingStatus(track.status)
    tracking = LessonProgress(
        status=status,
        progress=lesson_progress(status, track.current_position),
        last_accessed=track.updated_at,
        time_spent=track.time_spent or 0,
        score=track.score,
        attempt=_attempt(track),
    )
    return TrackedLesson(**ref.model_dump(), tracking=tracking)


def _all_lessons(module: TrackedModule) -> list[TrackedLesson]:
    lessons = list(module.lessons)
    for child in module.children:
        lessons.extend(_all_lessons(child))
    return lessons


def _tracked_module(node: HierarchyNode, index: dict[str, LessonTrack]) -> TrackedModule:
    children = [_tracked_module(child, index) for child in node.children]
    lessons = [_tracked_lesson(ref, index.get(ref.lesson_id)) for ref in node.lessons]
    module = TrackedModule(id=node.id, kind=node.kind, attributes=node.attributes, children=children, lessons=lessons)

    counted = _all_lessons(module)
    completed = sum(1 for lesson in counted if lesson.tracking.status == TrackingStatus.COMPLETED)
    progress = rollup_progress(completed, len(counted))
    accessed = [lesson.tracking.last_accessed for lesson in counted if lesson.tracking.last_accessed]
    module.tracking = ModuleProgress(
        status=rollup_status(progress),
        progress=progress,
        completed_lessons=completed,
        total_lessons=len(counted),
        last_accessed=max(accessed) if accessed else None,
    )
    return module


def _untracked_module(node: HierarchyNode) -> TrackedModule:
    return TrackedModule(
        id=node.id,
        kind=node.kind,
        attributes=node.attributes,
        children=[_untracked_module(child) for child in node.children],
        lessons=[TrackedLesson(**ref.model_dump()) for ref in node.lessons],
        tracking=ModuleProgress(total_lessons=node.lesson_count()),
    )


def _last_accessed_lesson(index: dict[str, LessonTrack]) -> Optional[LastAccessedLesson]:
    if not index:
        return None
    track = max(index.values(), key=_recency)
    status = TrackingStatus(track.status)
    return LastAccessedLesson(
        lesson_id=track.lesson_id,
        status=status,
        progress=lesson_progress(status, track.current_position),
        time_spent=track.time_spent or 0,
        score=track.score,
        last_accessed=track.updated_at,
        attempt=_attempt(track),
    )


def build_tracked_hierarchy(
    hierarchy: HierarchyNode,
    user_id: str,
    course_track: Optional[CourseTrack],
    lesson_tracks: Iterable[LessonTrack] = (),
) -> TrackedHierarchy:
    """Pure overlay of one user's tracks onto a hierarchy."""
    if course_track is None:
        return TrackedHierarchy(
            id=hierarchy.id,
            user_id=user_id,
            attributes=hierarchy.attributes,
            children=[_untracked_module(module) for module in hierarchy.children],
            tracking=CourseProgress(total_lessons=hierarchy.lesson_count()),
        )

    lesson_tracks = list(lesson_tracks)
    index = latest_attempts(lesson_tracks)
    children = [_tracked_module(module, index) for module in hierarchy.children]

    lesson_ids = {ref.lesson_id for ref in hierarchy.iter_lessons()}
    fresh_completed = sum(
        1 for lesson_id in lesson_ids
        if lesson_id in index and index[lesson_id].status == TrackingStatus.COMPLETED
    )
    total = course_track.no_of_lessons or len(lesson_ids)
    completed = course_track.completed_lessons if course_track.completed_lessons is not None else fresh_completed
    status = TrackingStatus(course_track.status)

    accessed = [track.updated_at for track in index.values() if track.updated_at]
    tracking = CourseProgress(
        status=status,
        progress=min(round_half_up(completed / max(total, 1) * 100), 100),
        completed_lessons=completed,
        total_lessons=total,
        last_accessed=course_track.last_accessed_date or (max(accessed) if accessed else None),
        time_spent=sum(track.time_spent or 0 for track in lesson_tracks),
        start_datetime=course_track.start_datetime,
        end_datetime=course_track.end_datetime,
    )
    return TrackedHierarchy(
        id=hierarchy.id,
        user_id=user_id,
        attributes=hierarchy.attributes,
        children=children,
        tracking=tracking,
        last_accessed_lesson=None if status == TrackingStatus.COMPLETED else _last_accessed_lesson(index),
    )


class ProgressAggregator:
    """Loads one user's tracks and overlays them on a course hierarchy."""

    def __init__(self, repositories: Repositories):
        self.repos = repositories

    async def overlay_tracking(
        self,
        hierarchy: HierarchyNode | None,
        user_id: str,
        tenant_id: str | None,
        organisation_id: str | None,
    ) -> TrackedHierarchy:
        if hierarchy is None or hierarchy.kind != NodeKind.COURSE:
            raise InvalidStateError(
                "A course hierarchy is required to aggregate tracking",
                {"user_id": user_id},
            )

        course_track = await self.repos.course_tracks.find_by_user(
            hierarchy.id, user_id, tenant_id, organisation_id
        )
        if course_track is None:
            return build_tracked_hierarchy(hierarchy, user_id, None)

        lesson_tracks = await self.repos.lesson_tracks.find_by_user_course(
            user_id, hierarchy.id, tenant_id, organisation_id
        )
        logger.debug(
            "tracking_overlaid",
            extra={
                "event": "tracking_overlaid",
                "course_id": hierarchy.id,
                "user_id": user_id,
                "lesson_tracks": len(lesson_tracks),
            },
        )
        return build_tracked_hierarchy(hierarchy, user_id, course_track, lesson_tracks)
