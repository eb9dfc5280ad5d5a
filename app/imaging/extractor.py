"""Extraction orchestrator.

Runs a chain of strategies over one image and reports the first GPS fix
found. The orchestrator is stateless: no caching, no retries.
"""

import logging
from typing import TYPE_CHECKING, Iterable, List, Optional, Union

from app.imaging.results import ExtractionResult, Failed, Found, ImageMetadata, NotFound
from app.imaging.strategies import (
    ExtractionStrategy,
    MockStrategy,
    SegmentScanStrategy,
    StructuredParseStrategy,
)
from app.imaging.validation import ImageAsset

if TYPE_CHECKING:
    from app.client.submission import PipelineConfig

logger = logging.getLogger(__name__)


def default_strategies() -> List[ExtractionStrategy]:
    """Pillow first, then the manual JPEG segment scan."""
    return [StructuredParseStrategy(), SegmentScanStrategy()]


class MetadataExtractor:
    """Try each strategy in order until one yields a GPS fix.

    Attributes:
        strategies: The strategy chain, in priority order.

    Example:
        ```python
        extractor = MetadataExtractor()
        result = extractor.extract(photo_bytes)
        if result.has_gps:
            print(result.gps.latitude, result.gps.longitude)
        ```
    """

    def __init__(self, strategies: Optional[Iterable[ExtractionStrategy]] = None) -> None:
        self.strategies = list(strategies) if strategies is not None else default_strategies()

    @classmethod
    def from_config(cls, config: "PipelineConfig") -> "MetadataExtractor":
        """Build the chain described by a pipeline configuration.

        With ``use_mock_extraction`` the chain is the mock alone; real
        photos are never parsed.
        """
        if config.use_mock_extraction:
            return cls([MockStrategy(gps_probability=config.mock_gps_probability)])
        return cls(default_strategies())

    def extract(self, image: Union[bytes, ImageAsset]) -> ExtractionResult:
        """Extract GPS and camera metadata from an image.

        Never raises. When no strategy finds GPS, the result carries the
        richest camera metadata any strategy managed to read.

        Args:
            image: Raw bytes or an ImageAsset.

        Returns:
            ExtractionResult with ``has_gps`` set when a fix was found.
        """
        data = image.data if isinstance(image, ImageAsset) else image
        best = ImageMetadata()

        for strategy in self.strategies:
            try:
                outcome = strategy.extract(data)
            except Exception as e:
                logger.warning(f"Strategy {strategy.name} raised unexpectedly: {e}")
                continue

            if isinstance(outcome, Found):
                logger.debug(f"GPS found by {outcome.strategy}")
                return ExtractionResult(
                    exif=outcome.metadata,
                    gps=outcome.location,
                    strategy=outcome.strategy,
                )
            if isinstance(outcome, NotFound):
                if outcome.metadata.field_count > best.field_count:
                    best = outcome.metadata
            elif isinstance(outcome, Failed):
                logger.debug(f"Strategy {outcome.strategy} failed: {outcome.reason}")

        return ExtractionResult(exif=best, gps=None, strategy=None)
