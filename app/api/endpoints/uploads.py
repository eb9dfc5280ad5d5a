"""Image upload endpoint."""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, File, UploadFile
from starlette.concurrency import run_in_threadpool

from app.api.deps import CurrentUser, Extractor, Storage
from app.core.config import settings
from app.core.exceptions import (
    PayloadTooLargeException,
    UnsupportedMediaTypeException,
    ValidationException,
)
from app.imaging.preview import PreviewError
from app.imaging.validation import ImageAsset, ImageValidationError, ensure_valid_image
from app.schemas.upload import UploadLocation, UploadResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload", tags=["Uploads"])


@router.post(
    "/image",
    response_model=UploadResponse,
    summary="Upload a tree photo",
    description=(
        "Stores a resized JPEG copy of the photo and returns its URL, "
        "together with the GPS position read from the original file."
    ),
)
async def upload_image(
    storage: Storage,
    extractor: Extractor,
    current_user: CurrentUser,
    image: Annotated[Optional[UploadFile], File(description="Image file")] = None,
) -> UploadResponse:
    if image is None:
        raise ValidationException("No image file provided", details={"field": "image"})

    content_type = (image.content_type or "").lower()
    if content_type not in settings.allowed_image_types:
        raise UnsupportedMediaTypeException(
            f"Unsupported file type: {image.content_type or 'unknown'}",
            details={"allowed": settings.allowed_image_types},
        )

    max_bytes = settings.MAX_UPLOAD_SIZE_BYTES
    data = await image.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise PayloadTooLargeException(
            f"File too large (max: {max_bytes} bytes)",
            details={"max_bytes": max_bytes},
        )

    try:
        asset = ensure_valid_image(
            ImageAsset(data=data, content_type=content_type, filename=image.filename),
            max_size_bytes=max_bytes,
            allowed_types=settings.allowed_image_types,
        )
    except ImageValidationError as e:
        raise ValidationException(str(e), details={"field": "image"})

    extraction = await run_in_threadpool(extractor.extract, asset)
    try:
        stored = await run_in_threadpool(storage.save_upload, data)
    except PreviewError as e:
        raise ValidationException(str(e), details={"field": "image"})

    location = None
    if extraction.gps is not None:
        gps = extraction.gps
        location = UploadLocation(
            latitude=gps.latitude,
            longitude=gps.longitude,
            altitude=gps.altitude,
            timestamp=gps.captured_at,
        )

    logger.info(
        f"User {current_user.id} uploaded {stored.filename} "
        f"({'with' if location else 'without'} GPS)"
    )
    return UploadResponse(image_url=stored.url, filename=stored.filename, location=location)
