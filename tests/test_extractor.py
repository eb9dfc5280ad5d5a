"""Tests for the extraction orchestrator."""

import pytest

from app.client.submission import PipelineConfig
from app.imaging.extractor import MetadataExtractor
from app.imaging.results import ExtractionResult, Failed, ImageMetadata, NotFound
from app.imaging.strategies import (
    ExtractionStrategy,
    MockStrategy,
    SegmentScanStrategy,
    StructuredParseStrategy,
)
from app.imaging.validation import ImageAsset


class StubStrategy(ExtractionStrategy):

    def __init__(self, name, outcome):
        self.name = name
        self.outcome = outcome
        self.calls = 0

    def _extract(self, data):
        self.calls += 1
        return self.outcome


class ExplodingStrategy(ExtractionStrategy):
    """Raises past its own boundary, which real strategies never do."""

    name = "exploding"

    def extract(self, data):
        raise RuntimeError("boom")

    def _extract(self, data):
        raise NotImplementedError


class TestMetadataExtractor:

    def test_default_chain(self):
        extractor = MetadataExtractor()
        assert [type(s) for s in extractor.strategies] == [
            StructuredParseStrategy,
            SegmentScanStrategy,
        ]

    def test_finds_gps(self, gps_jpeg):
        result = MetadataExtractor().extract(gps_jpeg)

        assert result.has_gps
        assert result.strategy == "structured"
        assert result.gps.latitude == pytest.approx(40.7128, abs=1e-6)
        assert result.gps.longitude == pytest.approx(-74.006, abs=1e-6)
        assert result.exif.make == "TestCamera"

    def test_accepts_image_asset(self, gps_asset):
        assert MetadataExtractor().extract(gps_asset).has_gps

    def test_falls_back_to_next_strategy(self, gps_jpeg):
        failing = StubStrategy("first", Failed(reason="unreadable", strategy="first"))
        extractor = MetadataExtractor([failing, SegmentScanStrategy()])

        result = extractor.extract(gps_jpeg)

        assert failing.calls == 1
        assert result.has_gps
        assert result.strategy == "segment-scan"

    def test_stops_at_first_fix(self, gps_jpeg):
        later = StubStrategy("later", NotFound(strategy="later"))
        extractor = MetadataExtractor([StructuredParseStrategy(), later])

        assert extractor.extract(gps_jpeg).has_gps
        assert later.calls == 0

    def test_no_gps(self, plain_jpeg):
        result = MetadataExtractor().extract(plain_jpeg)

        assert not result.has_gps
        assert result.gps is None
        assert result.exif.make == "TestCamera"

    def test_keeps_richest_metadata(self):
        sparse = StubStrategy("a", NotFound(ImageMetadata(make="A"), "a"))
        rich = StubStrategy("b", NotFound(ImageMetadata(make="B", model="M"), "b"))

        result = MetadataExtractor([sparse, rich]).extract(b"data")

        assert result.exif == ImageMetadata(make="B", model="M")

    def test_garbage_never_raises(self):
        result = MetadataExtractor().extract(b"\x00\x01 not an image")

        assert result == ExtractionResult()
        assert result.to_dict() == {
            "exif": {"make": None, "model": None, "software": None, "dateTime": None},
            "gps": None,
            "hasGps": False,
        }

    def test_unexpected_strategy_error_degrades(self, gps_jpeg):
        result = MetadataExtractor([ExplodingStrategy()]).extract(gps_jpeg)
        assert not result.has_gps

    def test_serializes_fix(self, gps_jpeg):
        body = MetadataExtractor().extract(gps_jpeg).to_dict()

        assert body["hasGps"] is True
        assert body["gps"]["latitude"] == pytest.approx(40.7128, abs=1e-6)
        assert body["gps"]["altitude"] == pytest.approx(10.5)
        assert body["gps"]["timestamp"] == "2024-05-01T10:30:00"
        assert body["exif"]["model"] == "TestModel"


class TestFromConfig:

    def test_real_strategies_by_default(self):
        extractor = MetadataExtractor.from_config(PipelineConfig())
        assert [s.name for s in extractor.strategies] == ["structured", "segment-scan"]

    def test_mock_only_when_enabled(self, gps_jpeg):
        config = PipelineConfig(use_mock_extraction=True, mock_gps_probability=0.0)
        extractor = MetadataExtractor.from_config(config)

        assert [type(s) for s in extractor.strategies] == [MockStrategy]
        # The real GPS block is ignored in mock mode
        assert not extractor.extract(gps_jpeg).has_gps

    def test_mock_is_deterministic(self):
        extractor = MetadataExtractor.from_config(PipelineConfig(use_mock_extraction=True))
        asset = ImageAsset(data=b"same bytes", content_type="image/jpeg")
        assert extractor.extract(asset) == extractor.extract(asset)
