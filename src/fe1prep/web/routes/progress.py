"""Lesson and progress endpoints."""

from fastapi import APIRouter, Depends

from fe1prep.core import progress_rollup
from fe1prep.web.dependencies import get_user_id
from fe1prep.web.schemas import (
    LessonProgressResponse,
    ModuleProgressResponse,
    ProgressOverviewResponse,
    SubjectProgressDetailResponse,
    VideoProgressRequest,
    VideoProgressResponse,
)

lessons_router = APIRouter(prefix="/api/lessons", tags=["progress"])
router = APIRouter(prefix="/api/progress", tags=["progress"])


@lessons_router.post("/{lesson_id}/access", response_model=LessonProgressResponse)
async def record_lesson_access(
    lesson_id: str,
    user_id: str = Depends(get_user_id),
) -> LessonProgressResponse:
    """Register that the user opened a lesson."""
    snapshot = progress_rollup.record_lesson_access(user_id, lesson_id)
    return LessonProgressResponse(**snapshot.to_dict())


@lessons_router.post("/{lesson_id}/video-progress", response_model=VideoProgressResponse)
async def record_video_progress(
    lesson_id: str,
    body: VideoProgressRequest,
    user_id: str = Depends(get_user_id),
) -> VideoProgressResponse:
    """Record the current video position of a lesson."""
    result = progress_rollup.record_video_progress(
        user_id,
        lesson_id,
        current_time_seconds=body.current_time_seconds,
        time_spent_seconds=body.time_spent_seconds,
    )
    return VideoProgressResponse(**result.to_dict())


@router.get("/overview", response_model=ProgressOverviewResponse)
async def get_progress_overview(user_id: str = Depends(get_user_id)) -> ProgressOverviewResponse:
    """Totals across every subject the user has opened."""
    overview = progress_rollup.get_progress_overview(user_id)
    return ProgressOverviewResponse(**overview.to_dict())


@router.get("/modules/{module_id}", response_model=ModuleProgressResponse)
async def get_module_progress(
    module_id: str,
    user_id: str = Depends(get_user_id),
) -> ModuleProgressResponse:
    """Progress of one module."""
    snapshot = progress_rollup.get_module_progress(user_id, module_id)
    return ModuleProgressResponse(**snapshot.to_dict())


@router.get("/subjects/{subject_id}", response_model=SubjectProgressDetailResponse)
async def get_subject_progress(
    subject_id: str,
    user_id: str = Depends(get_user_id),
) -> SubjectProgressDetailResponse:
    """Progress of one subject with its modules."""
    detail = progress_rollup.get_subject_progress_detail(user_id, subject_id)
    return SubjectProgressDetailResponse(**detail.to_dict())
