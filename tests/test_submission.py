"""Tests for the upload submission flow."""

import asyncio
import json
from datetime import date

import httpx
import pytest
import respx
from PIL import Image

from app.client.api_client import PinATreeClient
from app.client.errors import (
    GeocodingError,
    RecordCreationFailure,
    SubmissionError,
    UploadFailure,
    ValidationError,
)
from app.client.geocoding import AddressComponents, GeocodeResult
from app.client.submission import PipelineConfig, TreeForm, UploadSubmissionFlow
from app.imaging.validation import ImageAsset

BASE_URL = "http://pin-a-tree.test"

UPLOADED = {"imageUrl": "/uploads/2024/05/tree-1.jpg", "filename": "tree-1.jpg", "location": None}


def created_tree(**overrides):
    tree = {"id": "tree-1", "name": "Old oak", "species": "Quercus robur"}
    tree.update(overrides)
    return tree


@pytest.fixture
def api_client():
    return PinATreeClient(BASE_URL, token="tok")


@pytest.fixture
def flow(api_client):
    return UploadSubmissionFlow(api_client)


@pytest.fixture
def form():
    return TreeForm(name="Old oak", species="Quercus robur", tags=["old", "old", " shade "])


class BlockingClient:
    """Client whose upload waits until the test lets it go."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def upload_image(self, asset):
        self.started.set()
        await self.release.wait()
        return UPLOADED

    async def create_tree(self, payload):
        return created_tree()


class BlockingRecordClient:
    """Client whose upload succeeds and whose record creation waits."""

    def __init__(self):
        self.creating = asyncio.Event()

    async def upload_image(self, asset):
        return UPLOADED

    async def create_tree(self, payload):
        self.creating.set()
        await asyncio.Event().wait()


class StubGeocoder:

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def reverse(self, latitude, longitude):
        self.calls.append((latitude, longitude))
        if self.error is not None:
            raise self.error
        return self.result


class TestSelectFile:

    @pytest.mark.asyncio
    async def test_reads_location_from_photo(self, flow, gps_asset):
        selection = await flow.select_file(gps_asset)

        assert selection.extraction.has_gps
        assert selection.preview.data_uri.startswith("data:image/jpeg;base64,")
        assert flow.location == pytest.approx((40.7128, -74.006), abs=1e-6)

    @pytest.mark.asyncio
    async def test_photo_without_gps(self, flow, plain_asset):
        await flow.select_file(plain_asset)
        assert flow.location is None

    @pytest.mark.asyncio
    async def test_rejects_invalid_file(self, flow, png_bytes):
        with pytest.raises(ValidationError) as exc_info:
            await flow.select_file(ImageAsset(png_bytes, "image/jpeg"))

        assert exc_info.value.field == "image"
        assert flow.selection is None
        assert len(flow.previews) == 0

    @pytest.mark.asyncio
    async def test_rejects_oversized_file(self, api_client, gps_asset):
        flow = UploadSubmissionFlow(api_client, PipelineConfig(max_upload_bytes=100))

        with pytest.raises(ValidationError, match="too large"):
            await flow.select_file(gps_asset)

    @pytest.mark.asyncio
    async def test_undecodable_file(self, flow):
        with pytest.raises(ValidationError) as exc_info:
            await flow.select_file(ImageAsset(b"\xFF\xD8\xFF\xE0 broken", "image/jpeg"))
        assert exc_info.value.field == "image"

    @pytest.mark.asyncio
    async def test_oversized_dimensions(self, flow, png_bytes, monkeypatch):
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)

        with pytest.raises(ValidationError) as exc_info:
            await flow.select_file(ImageAsset(png_bytes, "image/png"))

        assert exc_info.value.field == "image"
        assert len(flow.previews) == 0

    @pytest.mark.asyncio
    async def test_new_selection_releases_previous(self, flow, gps_asset, plain_asset):
        first = await flow.select_file(gps_asset)
        flow.set_manual_location(1.0, 2.0)

        await flow.select_file(plain_asset)

        assert first.preview.key not in flow.previews
        assert len(flow.previews) == 1
        assert flow.manual_location is None

    @pytest.mark.asyncio
    async def test_rejected_file_still_clears_previous(self, flow, gps_asset):
        await flow.select_file(gps_asset)

        with pytest.raises(ValidationError):
            await flow.select_file(None)

        assert flow.selection is None
        assert len(flow.previews) == 0

    @pytest.mark.asyncio
    async def test_mock_extraction(self, api_client, plain_asset):
        config = PipelineConfig(use_mock_extraction=True, mock_gps_probability=1.0)
        flow = UploadSubmissionFlow(api_client, config)

        selection = await flow.select_file(plain_asset)

        assert selection.extraction.strategy == "mock"
        assert flow.location is not None


class TestManualLocation:

    @pytest.mark.asyncio
    async def test_overrides_photo_location(self, flow, gps_asset):
        await flow.select_file(gps_asset)

        flow.set_manual_location(51.5074, -0.1278)
        assert flow.location == (51.5074, -0.1278)

        flow.clear_manual_location()
        assert flow.location == pytest.approx((40.7128, -74.006), abs=1e-6)

    def test_rejects_out_of_range(self, flow):
        with pytest.raises(ValidationError) as exc_info:
            flow.set_manual_location(91, 0)

        assert exc_info.value.field == "location"
        assert flow.manual_location is None


class TestSubmit:

    @pytest.mark.asyncio
    async def test_upload_then_create(self, flow, form, gps_asset):
        await flow.select_file(gps_asset)

        with respx.mock(base_url=BASE_URL) as router:
            upload = router.post("/api/upload/image").mock(
                return_value=httpx.Response(200, json=UPLOADED)
            )
            create = router.post("/api/trees").mock(
                return_value=httpx.Response(201, json=created_tree())
            )

            tree = await flow.submit(form)

        payload = json.loads(create.calls.last.request.content)
        assert upload.call_count == 1
        assert payload["imageUrl"] == UPLOADED["imageUrl"]
        assert payload["latitude"] == pytest.approx(40.7128, abs=1e-6)
        assert payload["longitude"] == pytest.approx(-74.006, abs=1e-6)
        assert payload["tags"] == ["old", "shade"]
        assert tree["id"] == "tree-1"
        assert flow.trees == [tree]
        # Selection is cleared, the form is left alone
        assert flow.selection is None
        assert len(flow.previews) == 0
        assert form.name == "Old oak"

    @pytest.mark.asyncio
    async def test_manual_pin_used_in_payload(self, flow, form, plain_asset):
        await flow.select_file(plain_asset)
        flow.set_manual_location(-33.8688, 151.2093)
        form.date_planted = date(2020, 3, 1)

        with respx.mock(base_url=BASE_URL) as router:
            router.post("/api/upload/image").mock(return_value=httpx.Response(200, json=UPLOADED))
            create = router.post("/api/trees").mock(
                return_value=httpx.Response(201, json=created_tree())
            )

            await flow.submit(form)

        payload = json.loads(create.calls.last.request.content)
        assert (payload["latitude"], payload["longitude"]) == (-33.8688, 151.2093)
        assert payload["datePlanted"] == "2020-03-01"

    @pytest.mark.asyncio
    async def test_shared_tree_list(self, api_client, form, gps_asset):
        trees = [{"id": "existing"}]
        flow = UploadSubmissionFlow(api_client, trees=trees)
        await flow.select_file(gps_asset)

        with respx.mock(base_url=BASE_URL) as router:
            router.post("/api/upload/image").mock(return_value=httpx.Response(200, json=UPLOADED))
            router.post("/api/trees").mock(return_value=httpx.Response(201, json=created_tree()))

            await flow.submit(form)

        assert [t["id"] for t in trees] == ["existing", "tree-1"]

    @pytest.mark.asyncio
    async def test_requires_image(self, flow, form):
        with pytest.raises(ValidationError) as exc_info:
            await flow.submit(form)
        assert exc_info.value.field == "image"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name, species, field", [
        ("", "Quercus robur", "name"),
        ("   ", "Quercus robur", "name"),
        ("Old oak", "", "species"),
    ])
    async def test_requires_name_and_species(self, flow, gps_asset, name, species, field):
        await flow.select_file(gps_asset)

        with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
            upload = router.post("/api/upload/image")

            with pytest.raises(ValidationError) as exc_info:
                await flow.submit(TreeForm(name=name, species=species))

            assert not upload.called

        assert exc_info.value.field == field
        assert flow.selection is not None

    @pytest.mark.asyncio
    async def test_requires_location(self, flow, form, plain_asset):
        await flow.select_file(plain_asset)

        with pytest.raises(ValidationError) as exc_info:
            await flow.submit(form)

        assert exc_info.value.field == "location"

    @pytest.mark.asyncio
    async def test_upload_rejected(self, flow, form, gps_asset):
        await flow.select_file(gps_asset)

        with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
            router.post("/api/upload/image").mock(
                return_value=httpx.Response(413, json={"error": "File too large", "details": {}})
            )
            create = router.post("/api/trees")

            with pytest.raises(UploadFailure) as exc_info:
                await flow.submit(form)

            assert not create.called

        assert exc_info.value.status_code == 413
        assert not exc_info.value.retryable
        assert flow.selection is not None
        assert flow.trees == []

    @pytest.mark.asyncio
    async def test_upload_network_error_is_retryable(self, flow, form, gps_asset):
        await flow.select_file(gps_asset)

        with respx.mock(base_url=BASE_URL) as router:
            router.post("/api/upload/image").mock(side_effect=httpx.ConnectError)

            with pytest.raises(UploadFailure) as exc_info:
                await flow.submit(form)

        assert exc_info.value.status_code is None
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_record_failure_keeps_image_for_retry(self, flow, form, gps_asset):
        await flow.select_file(gps_asset)

        with respx.mock(base_url=BASE_URL) as router:
            upload = router.post("/api/upload/image").mock(
                return_value=httpx.Response(200, json=UPLOADED)
            )
            router.post("/api/trees").mock(
                side_effect=[
                    httpx.Response(
                        400,
                        json={"error": "Validation error", "details": {"fields": ["name"]}},
                    ),
                    httpx.Response(201, json=created_tree()),
                ]
            )

            with pytest.raises(RecordCreationFailure) as exc_info:
                await flow.submit(form)

            assert exc_info.value.image_url == UPLOADED["imageUrl"]
            assert exc_info.value.details == {"fields": ["name"]}
            assert flow.image_url == UPLOADED["imageUrl"]

            tree = await flow.submit(form)

        assert upload.call_count == 1
        assert tree["id"] == "tree-1"
        assert flow.image_url is None


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_second_submit_rejected(self, form, gps_asset):
        client = BlockingClient()
        flow = UploadSubmissionFlow(client)
        await flow.select_file(gps_asset)

        first = asyncio.ensure_future(flow.submit(form))
        await client.started.wait()

        assert flow.is_submitting
        with pytest.raises(SubmissionError, match="already in progress"):
            await flow.submit(form)

        client.release.set()
        tree = await first
        assert tree["id"] == "tree-1"
        assert not flow.is_submitting

    @pytest.mark.asyncio
    async def test_cancel_aborts_and_resets(self, form, gps_asset):
        client = BlockingClient()
        flow = UploadSubmissionFlow(client)
        await flow.select_file(gps_asset)

        pending = asyncio.ensure_future(flow.submit(form))
        await client.started.wait()

        await flow.cancel()

        with pytest.raises(asyncio.CancelledError):
            await pending
        assert flow.selection is None
        assert len(flow.previews) == 0
        assert flow.trees == []

    @pytest.mark.asyncio
    async def test_cancel_when_idle_only_resets(self, flow, gps_asset):
        await flow.select_file(gps_asset)
        await flow.cancel()
        assert flow.selection is None

    @pytest.mark.asyncio
    async def test_cancel_after_upload_reports_image(self, form, gps_asset):
        client = BlockingRecordClient()
        flow = UploadSubmissionFlow(client)
        await flow.select_file(gps_asset)

        pending = asyncio.ensure_future(flow.submit(form))
        await client.creating.wait()

        orphaned = await flow.cancel()

        assert orphaned == UPLOADED["imageUrl"]
        assert flow.image_url is None
        with pytest.raises(asyncio.CancelledError):
            await pending

    @pytest.mark.asyncio
    async def test_cancel_before_upload_reports_nothing(self, form, gps_asset):
        client = BlockingClient()
        flow = UploadSubmissionFlow(client)
        await flow.select_file(gps_asset)

        pending = asyncio.ensure_future(flow.submit(form))
        await client.started.wait()

        assert await flow.cancel() is None
        with pytest.raises(asyncio.CancelledError):
            await pending


class TestUploadResponse:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(200, json={"filename": "tree-1.jpg"}),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, text="<html>ok</html>"),
        httpx.Response(200),
    ])
    async def test_unusable_success_response(self, flow, form, gps_asset, response):
        await flow.select_file(gps_asset)

        with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
            router.post("/api/upload/image").mock(return_value=response)
            create = router.post("/api/trees")

            with pytest.raises(UploadFailure) as exc_info:
                await flow.submit(form)

            assert not create.called

        assert exc_info.value.retryable
        assert flow.image_url is None
        assert flow.selection is not None


class TestAddressLookup:

    PLACE = GeocodeResult(
        latitude=40.7128,
        longitude=-74.006,
        formatted_address="City Hall Park, New York, United States",
        components=AddressComponents(locality="New York", country="United States"),
    )

    async def submit_and_capture(self, flow, form):
        with respx.mock(base_url=BASE_URL) as router:
            router.post("/api/upload/image").mock(return_value=httpx.Response(200, json=UPLOADED))
            create = router.post("/api/trees").mock(
                return_value=httpx.Response(201, json=created_tree())
            )

            await flow.submit(form)

        return json.loads(create.calls.last.request.content)

    @pytest.mark.asyncio
    async def test_fills_blank_address(self, api_client, form, gps_asset):
        geocoder = StubGeocoder(result=self.PLACE)
        flow = UploadSubmissionFlow(api_client, geocoder=geocoder)
        await flow.select_file(gps_asset)

        payload = await self.submit_and_capture(flow, form)

        assert payload["address"] == self.PLACE.formatted_address
        assert geocoder.calls == [pytest.approx((40.7128, -74.006), abs=1e-6)]
        assert form.address is None

    @pytest.mark.asyncio
    async def test_uses_manual_pin(self, api_client, plain_asset):
        geocoder = StubGeocoder(result=self.PLACE)
        flow = UploadSubmissionFlow(api_client, geocoder=geocoder)
        await flow.select_file(plain_asset)
        flow.set_manual_location(48.8584, 2.2945)

        assert await flow.lookup_address() == self.PLACE.formatted_address
        assert geocoder.calls == [(48.8584, 2.2945)]

    @pytest.mark.asyncio
    async def test_typed_address_wins(self, api_client, form, gps_asset):
        geocoder = StubGeocoder(result=self.PLACE)
        flow = UploadSubmissionFlow(api_client, geocoder=geocoder)
        await flow.select_file(gps_asset)
        form.address = "12 Oak Lane"

        payload = await self.submit_and_capture(flow, form)

        assert payload["address"] == "12 Oak Lane"
        assert geocoder.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("geocoder", [
        StubGeocoder(error=GeocodingError("Geocoder returned HTTP 503", status_code=503)),
        StubGeocoder(result=None),
    ])
    async def test_no_address_does_not_block(self, api_client, form, gps_asset, geocoder):
        flow = UploadSubmissionFlow(api_client, geocoder=geocoder)
        await flow.select_file(gps_asset)

        payload = await self.submit_and_capture(flow, form)

        assert "address" not in payload

    @pytest.mark.asyncio
    async def test_without_geocoder(self, flow, gps_asset):
        await flow.select_file(gps_asset)
        assert await flow.lookup_address() is None
