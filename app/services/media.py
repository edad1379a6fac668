"""
Attachment storage for issue photos, work progress photos and tender documents.

Images are downsized and recompressed before upload. Files go to S3 and fall
back to the local uploads directory when S3 is not configured or fails. The
workflow engine only ever sees the returned URL.
"""
import io
import logging
import os
import uuid

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from app.config import settings
from app.errors import DependencyFailure, WorkflowValidationError

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_TYPES = ["image/jpeg", "image/png", "image/webp"]
SUPPORTED_DOCUMENT_TYPES = ["application/pdf"]
MAX_ATTACHMENT_BYTES = 15 * 1024 * 1024
MAX_IMAGE_SIZE = (1920, 1920)


def get_s3_client():
    return boto3.client(
        's3',
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
        region_name=settings.aws_region
    )


def compress_image(content: bytes) -> bytes:
    """Resize to at most 1920x1920 and re-encode as JPEG."""
    try:
        with Image.open(io.BytesIO(content)) as img:
            if img.mode in ("RGBA", "P"):
                img = img.convert("RGB")
            img.thumbnail(MAX_IMAGE_SIZE, Image.Resampling.LANCZOS)
            out = io.BytesIO()
            img.save(out, "JPEG", quality=85, optimize=True)
            return out.getvalue()
    except UnidentifiedImageError:
        raise WorkflowValidationError("Attachment is not a readable image", code="attachment.invalid_image")


def _save_local(content: bytes, filename: str) -> str:
    os.makedirs(settings.upload_dir, exist_ok=True)
    path = os.path.join(settings.upload_dir, filename)
    with open(path, "wb") as f:
        f.write(content)
    return f"/uploads/{filename}"


def upload_attachment(content: bytes, filename: str, content_type: str, folder: str = "attachments") -> str:
    """
    Store an attachment and return its URL.

    Raises:
        WorkflowValidationError: unsupported type, empty or oversized file
        DependencyFailure: neither S3 nor local storage accepted the file
    """
    if content_type not in SUPPORTED_IMAGE_TYPES + SUPPORTED_DOCUMENT_TYPES:
        raise WorkflowValidationError(
            f"Unsupported attachment type. Supported types: {', '.join(SUPPORTED_IMAGE_TYPES + SUPPORTED_DOCUMENT_TYPES)}",
            code="attachment.unsupported_type"
        )
    if not content:
        raise WorkflowValidationError("Attachment is empty", code="attachment.empty")
    if len(content) > MAX_ATTACHMENT_BYTES:
        raise WorkflowValidationError("Attachment exceeds 15 MB", code="attachment.too_large")

    if content_type in SUPPORTED_IMAGE_TYPES:
        content = compress_image(content)
        unique_filename = f"{uuid.uuid4()}.jpg"
        stored_type = "image/jpeg"
    else:
        extension = filename.rsplit(".", 1)[-1] if "." in filename else "pdf"
        unique_filename = f"{uuid.uuid4()}.{extension}"
        stored_type = content_type

    if settings.aws_access_key_id:
        s3_key = f"{folder}/{unique_filename}"
        try:
            get_s3_client().put_object(
                Bucket=settings.s3_bucket,
                Key=s3_key,
                Body=content,
                ContentType=stored_type
            )
            return f"https://{settings.s3_bucket}.s3.{settings.aws_region}.amazonaws.com/{s3_key}"
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"S3 upload failed, using local storage: {e}")

    try:
        return _save_local(content, unique_filename)
    except OSError as e:
        logger.error(f"Local attachment storage failed: {e}")
        raise DependencyFailure("Attachment storage is unavailable", code="attachment.storage_failed", retryable=True)
