"""Video generation: submit, history, leave/return to the generation screen."""

from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status

from app.core.exceptions import AvatarError, to_http_exception
from app.dependencies import CurrentAccount, Session
from app.schemas.account import GeneratedVideo, SessionState
from app.schemas.generation import GenerationAccepted, VideoDuration, VideoFormat

router = APIRouter(prefix="/generations", tags=["generations"])

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/heic", "image/webp"}


@router.post("", response_model=GenerationAccepted, status_code=status.HTTP_202_ACCEPTED)
async def submit_generation(
    session: Session,
    account: CurrentAccount,
    image: UploadFile = File(...),
    prompt: str = Form(..., min_length=1),
    video_format: VideoFormat = Form(VideoFormat.PORTRAIT, alias="format"),
    duration: int = Form(VideoDuration.SHORT.value),
):
    """
    Start a generation job from a product photo and a prompt. Credits are
    reserved now and charged only when the video comes back.
    """
    if image.content_type and image.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported image type: {image.content_type}",
        )
    try:
        video_duration = VideoDuration(duration)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported duration: {duration}s",
        )
    data = await image.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty image")
    coordinator = session.coordinator
    try:
        job = await coordinator.submit(data, prompt.strip(), video_format, video_duration)
    except AvatarError as e:
        raise to_http_exception(e)
    return GenerationAccepted(
        job_id=job.job_id,
        state=coordinator.state,
        reserved_cost=job.reserved_cost,
        started_at=job.started_at,
    )


@router.get("", response_model=list[GeneratedVideo])
def list_generations(session: Session, account: CurrentAccount):
    """Generated videos for this session, newest first."""
    return session.ledger.history()


@router.post("/suspend", response_model=SessionState)
def suspend_polling(session: Session):
    """Leaving the generation screen: stop polling, keep the job resumable."""
    session.coordinator.suspend()
    return session.ledger.snapshot()


@router.post("/resume", response_model=SessionState)
async def resume_polling(session: Session, account: CurrentAccount):
    await session.coordinator.resume()
    return session.ledger.snapshot()
