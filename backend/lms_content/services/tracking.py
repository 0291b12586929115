"""Per-user tracking writes and the cached course progress read.

Every write commits first and then purges the user's progress entry and all
of the user's tracked hierarchy views for the course.
"""

from __future__ import annotations

from datetime import datetime, timezone

from lms_content.cache import keys
from lms_content.cache.invalidation import apply_invalidation, tracking_rules
from lms_content.cache.redis import CacheService
from lms_content.cache.ttl import TTLPolicy
from lms_content.core.app_exceptions import lesson_not_found
from lms_content.core.logging import get_logger
from lms_content.models import CourseTrack, LessonTrack, TrackingStatus
from lms_content.repositories.base import Repositories
from lms_content.schemas.hierarchy import CourseProgress, HierarchyNode, LessonProgress, LessonProgressUpdate
from lms_content.services.hierarchy import HierarchyAssembler
from lms_content.services.progress import ProgressAggregator, latest_attempts, lesson_progress

logger = get_logger(__name__)

# Tracks only ever move up this ladder
STATUS_RANK = {
    TrackingStatus.NOT_STARTED: 0,
    TrackingStatus.STARTED: 1,
    TrackingStatus.INCOMPLETE: 2,
    TrackingStatus.COMPLETED: 3,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def passing_lesson_ids(hierarchy: HierarchyNode) -> set[str]:
    """Lessons that count towards course completion."""
    return {ref.lesson_id for ref in hierarchy.iter_lessons() if ref.consider_for_passing}


class TrackingService:
    def __init__(self, repositories: Repositories, cache: CacheService, ttl: TTLPolicy | None = None):
        self.repos = repositories
        self.cache = cache
        self.ttl = ttl or TTLPolicy.from_settings()
        self.assembler = HierarchyAssembler(repositories, cache, self.ttl)
        self.aggregator = ProgressAggregator(repositories)

    async def _invalidate(
        self, course_id: str, user_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> None:
        await apply_invalidation(self.cache, tracking_rules(course_id, user_id, tenant_id, organisation_id))

    async def start_course_tracking(
        self, course_id: str, user_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> CourseTrack:
        """Create the course track, or return the existing one."""
        existing = await self.repos.course_tracks.find_by_user(course_id, user_id, tenant_id, organisation_id)
        if existing is not None:
            return existing

        hierarchy = await self.assembler.get_hierarchy(course_id, tenant_id, organisation_id)
        now = _now()
        track = CourseTrack(
            tenant_id=tenant_id,
            organisation_id=organisation_id,
            course_id=course_id,
            user_id=user_id,
            start_datetime=now,
            last_accessed_date=now,
            no_of_lessons=len(passing_lesson_ids(hierarchy)),
            completed_lessons=0,
            status=TrackingStatus.INCOMPLETE,
        )
        saved = await self.repos.course_tracks.save(track)
        await self._invalidate(course_id, user_id, tenant_id, organisation_id)
        logger.info(
            "course_tracking_started",
            extra={"event": "course_tracking_started", "course_id": course_id, "user_id": user_id},
        )
        return saved

    async def record_lesson_progress(
        self,
        course_id: str,
        user_id: str,
        tenant_id: str | None,
        organisation_id: str | None,
        update: LessonProgressUpdate,
    ) -> LessonProgress:
        """Upsert one lesson attempt and refresh the course counters."""
        hierarchy = await self.assembler.get_hierarchy(course_id, tenant_id, organisation_id)
        if all(ref.lesson_id != update.lesson_id for ref in hierarchy.iter_lessons()):
            raise lesson_not_found(update.lesson_id)

        course_track = await self.start_course_tracking(course_id, user_id, tenant_id, organisation_id)
        tracks = await self.repos.lesson_tracks.find_by_user_course(user_id, course_id, tenant_id, organisation_id)
        own = [track for track in tracks if track.lesson_id == update.lesson_id]

        if update.attempt is not None:
            target = next((track for track in own if track.attempt == update.attempt), None)
            attempt = update.attempt
        else:
            target = latest_attempts(own).get(update.lesson_id)
            attempt = 1

        now = _now()
        if target is None:
            target = LessonTrack(
                tenant_id=tenant_id,
                organisation_id=organisation_id,
                lesson_id=update.lesson_id,
                course_id=course_id,
                user_id=user_id,
                attempt=attempt,
                start_datetime=now,
                status=TrackingStatus.STARTED,
                current_position=0.0,
                time_spent=0,
            )

        stored = STATUS_RANK[TrackingStatus(target.status)]
        reported = STATUS_RANK[TrackingStatus(update.status)]
        if reported > stored:
            target.status = update.status
            target.current_position = update.current_position
        elif reported == stored and target.status != TrackingStatus.COMPLETED:
            target.current_position = max(target.current_position or 0.0, update.current_position)
        # time_spent is the attempt total reported by the player
        target.time_spent = max(target.time_spent or 0, update.time_spent)
        if update.score is not None:
            target.score = update.score
        if target.status == TrackingStatus.COMPLETED and target.end_datetime is None:
            target.end_datetime = now
        target.updated_at = now

        saved = await self.repos.lesson_tracks.save(target)

        # A lesson stays completed once any of its attempts is, retakes included
        attempts = [t for t in tracks if t.lesson_track_id != saved.lesson_track_id] + [saved]
        done = {t.lesson_id for t in attempts if t.status == TrackingStatus.COMPLETED}
        completed = len(passing_lesson_ids(hierarchy) & done)

        course_track.completed_lessons = max(course_track.completed_lessons or 0, completed)
        completed = course_track.completed_lessons
        course_track.last_accessed_date = now
        if course_track.status != TrackingStatus.COMPLETED:
            if course_track.no_of_lessons and completed >= course_track.no_of_lessons:
                course_track.status = TrackingStatus.COMPLETED
                course_track.end_datetime = now
                logger.info(
                    "course_completed",
                    extra={"event": "course_completed", "course_id": course_id, "user_id": user_id},
                )
            else:
                course_track.status = TrackingStatus.INCOMPLETE
        await self.repos.course_tracks.save(course_track)

        await self._invalidate(course_id, user_id, tenant_id, organisation_id)

        status = TrackingStatus(saved.status)
        return LessonProgress(
            status=status,
            progress=lesson_progress(status, saved.current_position),
            last_accessed=saved.updated_at,
            time_spent=saved.time_spent or 0,
            score=saved.score,
        )

    async def get_course_progress(
        self, course_id: str, user_id: str, tenant_id: str | None, organisation_id: str | None
    ) -> CourseProgress:
        key = keys.user_progress_key(course_id, user_id, tenant_id, organisation_id)

        async def load() -> CourseProgress:
            hierarchy = await self.assembler.get_hierarchy(course_id, tenant_id, organisation_id)
            tracked = await self.aggregator.overlay_tracking(hierarchy, user_id, tenant_id, organisation_id)
            return tracked.tracking

        data = await self.cache.get_or_set(key, load, self.ttl.user_progress)
        return CourseProgress.model_validate(data)
