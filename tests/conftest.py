"""Shared fixtures.

Environment variables are set before anything under ``app`` is
imported, because settings are read once at import time.
"""

import asyncio
import io
import os
import tempfile
from typing import Any, Callable, Dict, Generator, Optional

_TEST_ROOT = tempfile.mkdtemp(prefix="pin-a-tree-tests-")
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_ROOT, 'app.db')}"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["UPLOAD_DIR"] = os.path.join(_TEST_ROOT, "uploads")
os.environ["USE_MOCK_EXTRACTION"] = "false"

import piexif  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from PIL import Image  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from app.api.deps import get_storage  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.imaging.validation import ImageAsset  # noqa: E402
from app.main import app  # noqa: E402
from app.services.database import (  # noqa: E402
    build_engine,
    build_session_factory,
    create_tables,
    get_db,
)
from app.services.storage import StorageManager  # noqa: E402

# 40° 42' 46.08" N, 74° 0' 21.6" W  ->  40.7128, -74.006
NYC_GPS = {
    piexif.GPSIFD.GPSLatitudeRef: "N",
    piexif.GPSIFD.GPSLatitude: ((40, 1), (42, 1), (4608, 100)),
    piexif.GPSIFD.GPSLongitudeRef: "W",
    piexif.GPSIFD.GPSLongitude: ((74, 1), (0, 1), (216, 10)),
    piexif.GPSIFD.GPSAltitudeRef: 0,
    piexif.GPSIFD.GPSAltitude: (105, 10),
}


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


def build_exif(
    gps: Optional[Dict[int, Any]] = None,
    make: Optional[str] = "TestCamera",
    model: Optional[str] = "TestModel",
    taken_at: Optional[str] = "2024:05:01 10:30:00",
    orientation: Optional[int] = None,
) -> bytes:
    zeroth: Dict[int, Any] = {}
    if make:
        zeroth[piexif.ImageIFD.Make] = make
    if model:
        zeroth[piexif.ImageIFD.Model] = model
    if orientation:
        zeroth[piexif.ImageIFD.Orientation] = orientation
    exif_ifd: Dict[int, Any] = {}
    if taken_at:
        exif_ifd[piexif.ExifIFD.DateTimeOriginal] = taken_at
    return piexif.dump(
        {"0th": zeroth, "Exif": exif_ifd, "GPS": gps or {}, "1st": {}, "thumbnail": None}
    )


def make_jpeg(
    size=(64, 48),
    color="green",
    exif: Optional[bytes] = None,
) -> bytes:
    buffer = io.BytesIO()
    image = Image.new("RGB", size, color=color)
    if exif is not None:
        image.save(buffer, format="JPEG", exif=exif)
    else:
        image.save(buffer, format="JPEG")
    return buffer.getvalue()


def make_png(size=(32, 32), mode="RGBA") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color=(10, 120, 30, 128) if mode == "RGBA" else "green").save(
        buffer, format="PNG"
    )
    return buffer.getvalue()


# =============================================================================
# IMAGE FIXTURES
# =============================================================================

@pytest.fixture
def exif_factory() -> Callable[..., bytes]:
    return build_exif


@pytest.fixture
def jpeg_factory() -> Callable[..., bytes]:
    return make_jpeg


@pytest.fixture
def gps_exif() -> bytes:
    return build_exif(gps=NYC_GPS)


@pytest.fixture
def gps_jpeg(gps_exif) -> bytes:
    """JPEG carrying camera metadata and a GPS block for lower Manhattan."""
    return make_jpeg(exif=gps_exif)


@pytest.fixture
def plain_jpeg() -> bytes:
    """JPEG with camera metadata but no GPS block."""
    return make_jpeg(exif=build_exif())


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def gps_asset(gps_jpeg) -> ImageAsset:
    return ImageAsset(data=gps_jpeg, content_type="image/jpeg", filename="oak.jpg")


@pytest.fixture
def plain_asset(plain_jpeg) -> ImageAsset:
    return ImageAsset(data=plain_jpeg, content_type="image/jpeg", filename="elm.jpg")


# =============================================================================
# API FIXTURES
# =============================================================================

@pytest.fixture
def storage(tmp_path) -> StorageManager:
    return StorageManager(
        base_path=os.path.join(settings.UPLOAD_DIR, tmp_path.name),
        url_prefix=f"{settings.UPLOAD_URL_PREFIX}/{tmp_path.name}",
    )


@pytest.fixture
def client(tmp_path, storage) -> Generator[TestClient, None, None]:
    """TestClient backed by a fresh SQLite database and upload directory."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    asyncio.run(create_tables(engine))
    session_factory = build_session_factory(engine)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    asyncio.run(engine.dispose())


@pytest.fixture
def register_user(client) -> Callable[..., Dict[str, Any]]:
    """Register a user and return ``{"user", "token", "headers"}``."""

    def _register(username: str = "ada", password: str = "secret123") -> Dict[str, Any]:
        response = client.post(
            "/api/auth/register",
            json={
                "email": f"{username}@example.com",
                "username": username,
                "password": password,
                "firstName": username.title(),
            },
        )
        assert response.status_code == 201, response.text
        body = response.json()
        body["headers"] = {"Authorization": f"Bearer {body['token']}"}
        return body

    return _register


@pytest.fixture
def auth_headers(register_user) -> Dict[str, str]:
    return register_user()["headers"]


@pytest.fixture
def uploaded_image_url(client, auth_headers, gps_jpeg) -> str:
    response = client.post(
        "/api/upload/image",
        files={"image": ("oak.jpg", gps_jpeg, "image/jpeg")},
        headers=auth_headers,
    )
    assert response.status_code == 200, response.text
    return response.json()["imageUrl"]
