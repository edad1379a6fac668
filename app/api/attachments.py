import logging
from fastapi import APIRouter, Depends, UploadFile, File, Request

from app.api.auth import get_current_actor
from app.errors import WorkflowValidationError
from app.schemas import Actor, AttachmentUploaded
from app.services.media import upload_attachment
from app.utils.rate_limiter import limiter, RateLimits

logger = logging.getLogger(__name__)

router = APIRouter()

ATTACHMENT_FOLDERS = ("issues", "progress", "tenders")


@router.post("", response_model=AttachmentUploaded, status_code=201)
@limiter.limit(RateLimits.UPLOAD)
async def upload(
    request: Request,
    file: UploadFile = File(...),
    folder: str = "issues",
    actor: Actor = Depends(get_current_actor)
):
    """
    Upload a photo or document before referencing it from an issue,
    progress report or tender. Returns the URL to store.
    """
    if folder not in ATTACHMENT_FOLDERS:
        raise WorkflowValidationError(
            f"Folder must be one of: {', '.join(ATTACHMENT_FOLDERS)}", code="attachment.invalid_folder"
        )

    content = await file.read()
    url = upload_attachment(content, file.filename or "upload", file.content_type, folder=folder)
    logger.info(f"User {actor.id} uploaded {file.filename} -> {url}")
    return {"url": url, "content_type": file.content_type}
