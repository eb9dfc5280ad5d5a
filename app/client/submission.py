"""Upload submission flow.

Drives one tree submission from file selection to a stored record:

1. ``select_file`` validates the image, renders a preview and extracts
   its GPS position (preview and extraction run in worker threads).
2. ``set_manual_location`` lets the user drop a pin by hand; a manual
   pin wins over the position read from the photo.
3. ``submit`` checks the form, uploads the image, then creates the
   record. Each stage fails with its own exception type.

With a ``Geocoder`` attached, a blank address is filled in from the
position before the record is created.

Example:
    ```python
    async with PinATreeClient("http://localhost:8000") as client:
        await client.login("ada@example.com", "secret123")
        flow = UploadSubmissionFlow(client, settings.pipeline_config())

        await flow.select_file(ImageAsset.from_path("oak.jpg"))
        if flow.location is None:
            flow.set_manual_location(51.5074, -0.1278)

        tree = await flow.submit(TreeForm(name="Old oak", species="Quercus robur"))
    ```
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from app.client.api_client import PinATreeClient
from app.client.errors import (
    APIError,
    GeocodingError,
    RecordCreationFailure,
    SubmissionError,
    UploadFailure,
    ValidationError,
)
from app.client.geocoding import Geocoder
from app.imaging.coordinates import CoordinateError, validate_coordinates
from app.imaging.extractor import MetadataExtractor
from app.imaging.preview import PreviewError, PreviewHandle, PreviewRegistry
from app.imaging.results import ExtractionResult
from app.imaging.validation import (
    DEFAULT_ALLOWED_TYPES,
    DEFAULT_MAX_SIZE_BYTES,
    ImageAsset,
    validate_image,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineConfig:
    """Explicit configuration for validation, previews and extraction.

    Attributes:
        max_upload_bytes: Largest file accepted.
        allowed_types: Accepted MIME types.
        preview_max_width: Preview bounding box width.
        preview_max_height: Preview bounding box height.
        preview_quality: JPEG quality of previews.
        use_mock_extraction: Replace EXIF parsing with the mock strategy.
        mock_gps_probability: Share of images the mock gives a fix.
    """

    max_upload_bytes: int = DEFAULT_MAX_SIZE_BYTES
    allowed_types: Tuple[str, ...] = DEFAULT_ALLOWED_TYPES
    preview_max_width: int = 400
    preview_max_height: int = 400
    preview_quality: int = 80
    use_mock_extraction: bool = False
    mock_gps_probability: float = 0.5


@dataclass
class TreeForm:
    """User-entered tree details. Owned by the caller; never cleared here."""

    name: str = ""
    species: str = ""
    description: Optional[str] = None
    date_planted: Optional[date] = None
    address: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    def to_payload(
        self,
        latitude: float,
        longitude: float,
        image_url: str,
        address: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Build the create-tree body. ``address`` fills in a blank form field."""
        payload: Dict[str, Any] = {
            "name": self.name.strip(),
            "species": self.species.strip(),
            "latitude": latitude,
            "longitude": longitude,
            "imageUrl": image_url,
            "tags": list(dict.fromkeys(tag.strip() for tag in self.tags if tag.strip())),
        }
        if self.description:
            payload["description"] = self.description
        if self.date_planted:
            payload["datePlanted"] = self.date_planted.isoformat()
        address = self.address or address
        if address:
            payload["address"] = address
        return payload


@dataclass(frozen=True)
class Selection:
    """A validated image with its preview and extraction result."""

    asset: ImageAsset
    preview: PreviewHandle
    extraction: ExtractionResult


class UploadSubmissionFlow:
    """Stateful pipeline for submitting one tree at a time.

    Attributes:
        client: API client used for upload and record creation.
        config: Validation/preview/extraction settings.
        extractor: Metadata extractor (built from ``config`` by default).
        previews: Registry holding the live preview.
        trees: Shared list that successful submissions are appended to.
        geocoder: Optional reverse geocoder; when set, a blank address is
            filled in from the tree's position.
    """

    def __init__(
        self,
        client: PinATreeClient,
        config: Optional[PipelineConfig] = None,
        extractor: Optional[MetadataExtractor] = None,
        previews: Optional[PreviewRegistry] = None,
        trees: Optional[List[Dict[str, Any]]] = None,
        geocoder: Optional[Geocoder] = None,
    ) -> None:
        self.client = client
        self.config = config or PipelineConfig()
        self.extractor = extractor or MetadataExtractor.from_config(self.config)
        self.previews = previews if previews is not None else PreviewRegistry()
        self.trees = trees if trees is not None else []
        self.geocoder = geocoder

        self.selection: Optional[Selection] = None
        self.manual_location: Optional[Tuple[float, float]] = None
        self.image_url: Optional[str] = None
        self._task: Optional["asyncio.Task[Dict[str, Any]]"] = None

    @property
    def location(self) -> Optional[Tuple[float, float]]:
        """The position the record will be created at, if any."""
        if self.manual_location is not None:
            return self.manual_location
        if self.selection is not None and self.selection.extraction.gps is not None:
            gps = self.selection.extraction.gps
            return gps.latitude, gps.longitude
        return None

    @property
    def is_submitting(self) -> bool:
        return self._task is not None and not self._task.done()

    async def select_file(self, asset: Optional[ImageAsset]) -> Selection:
        """Replace the current selection with ``asset``.

        The previous selection (preview, manual pin, uploaded image URL)
        is released first, even if the new file is rejected.

        Raises:
            ValidationError: If the file fails validation or cannot be
                decoded. No extraction or network activity happens.
        """
        self.reset()

        result = validate_image(
            asset,
            max_size_bytes=self.config.max_upload_bytes,
            allowed_types=self.config.allowed_types,
        )
        if not result.valid:
            raise ValidationError(result.error, field="image")

        try:
            preview = await asyncio.to_thread(
                self.previews.create,
                asset,
                self.config.preview_max_width,
                self.config.preview_max_height,
                self.config.preview_quality,
            )
        except PreviewError as e:
            raise ValidationError(str(e), field="image") from e

        try:
            extraction = await asyncio.to_thread(self.extractor.extract, asset)
        except BaseException:
            self.previews.release(preview.key)
            raise

        self.selection = Selection(asset=asset, preview=preview, extraction=extraction)
        if extraction.has_gps:
            logger.info(
                f"Location read from {asset.filename or 'image'}: "
                f"{extraction.gps.latitude:.5f}, {extraction.gps.longitude:.5f}"
            )
        return self.selection

    def set_manual_location(self, latitude: float, longitude: float) -> Tuple[float, float]:
        """Pin the tree by hand. Overrides any location read from the photo.

        Raises:
            ValidationError: If the coordinates are out of range.
        """
        try:
            self.manual_location = validate_coordinates(latitude, longitude)
        except CoordinateError as e:
            raise ValidationError(str(e), field="location") from e
        return self.manual_location

    def clear_manual_location(self) -> None:
        self.manual_location = None

    async def lookup_address(self) -> Optional[str]:
        """Reverse-geocode the current location.

        Returns:
            The formatted address, or None when there is nothing to look
            up. Lookup failures are logged, never raised.
        """
        location = self.location
        if self.geocoder is None or location is None:
            return None
        try:
            place = await self.geocoder.reverse(*location)
        except GeocodingError as e:
            logger.warning(f"Address lookup failed: {e.message}")
            return None
        return place.formatted_address if place else None

    async def submit(self, form: TreeForm) -> Dict[str, Any]:
        """Upload the selected image and create the tree record.

        Returns:
            The created tree, as returned by the API.

        Raises:
            ValidationError: The form or selection is incomplete.
            UploadFailure: The image upload failed.
            RecordCreationFailure: The image is stored but the record was
                rejected; ``image_url`` is kept for a retry.
            asyncio.CancelledError: ``cancel()`` was called meanwhile.
        """
        if self.is_submitting:
            raise SubmissionError("A submission is already in progress")

        self._task = asyncio.ensure_future(self._submit(form))
        try:
            return await self._task
        finally:
            self._task = None

    def _check_ready(self, form: TreeForm) -> Tuple[float, float]:
        if self.selection is None:
            raise ValidationError("Please select an image", field="image")
        if not form.name or not form.name.strip():
            raise ValidationError("Tree name is required", field="name")
        if not form.species or not form.species.strip():
            raise ValidationError("Species is required", field="species")
        location = self.location
        if location is None:
            raise ValidationError(
                "Location is required. Pick it on the map or use a photo with GPS data",
                field="location",
            )
        return location

    async def _submit(self, form: TreeForm) -> Dict[str, Any]:
        latitude, longitude = self._check_ready(form)
        selection = self.selection
        address = form.address or await self.lookup_address()

        if self.image_url is None:
            try:
                upload = await self.client.upload_image(selection.asset)
            except APIError as e:
                logger.warning(f"Image upload failed: {e.message}")
                raise UploadFailure(e.message, status_code=e.status_code) from e
            image_url = upload.get("imageUrl") if isinstance(upload, dict) else None
            if not image_url:
                logger.warning(f"Upload response has no image URL: {upload!r}")
                raise UploadFailure("Upload response did not include an image URL")
            self.image_url = image_url
        else:
            logger.debug(f"Reusing uploaded image {self.image_url}")

        payload = form.to_payload(latitude, longitude, self.image_url, address=address)
        try:
            tree = await self.client.create_tree(payload)
        except APIError as e:
            logger.warning(f"Tree creation failed: {e.message}")
            raise RecordCreationFailure(
                e.message,
                status_code=e.status_code,
                details=e.details,
                image_url=self.image_url,
            ) from e

        self.trees.append(tree)
        logger.info(f"Tree created: {tree.get('id')}")
        # The image now belongs to the record
        self.image_url = None
        self.reset()
        return tree

    async def cancel(self) -> Optional[str]:
        """Abort an in-flight submission and clear the selection.

        Returns:
            The URL of an image that was uploaded but never attached to a
            record, or None. The server keeps that file.
        """
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        return self.reset()

    def reset(self) -> Optional[str]:
        """Release the preview and forget the selection.

        The caller's ``TreeForm`` is left untouched.

        Returns:
            The dropped ``image_url`` if an uploaded image had no record yet.
        """
        orphaned = self.image_url
        if orphaned is not None:
            logger.warning(f"Discarding uploaded image without a tree record: {orphaned}")
        if self.selection is not None:
            self.previews.release(self.selection.preview.key)
        self.selection = None
        self.manual_location = None
        self.image_url = None
        return orphaned
