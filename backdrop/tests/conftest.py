"""
Pytest configuration and shared fixtures.
"""

from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from backdrop.config import Settings
from backdrop.event_log import EventLog
from backdrop.main import create_app

PASSWORD = "correct-horse"


def make_image_bytes(
    width: int = 60,
    height: int = 90,
    fmt: str = "JPEG",
    color=(200, 30, 30),
) -> bytes:
    """Create a valid solid-color image for testing."""
    mode = "RGBA" if fmt == "PNG" else "RGB"
    if mode == "RGBA" and len(color) == 3:
        color = (*color, 255)
    im = Image.new(mode, (width, height), color=color)
    out = BytesIO()
    im.save(out, format=fmt)
    return out.getvalue()


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings(tmp_path):
    """Small canvases keep composition fast; DEV_MODE allows cookies over http."""
    return Settings(
        UPLOAD_PASSWORD=PASSWORD,
        SESSION_SECRET="test-secret",
        DEV_MODE=True,
        OUTPUT_PATH=str(tmp_path / "output"),
        LOG_PATH=str(tmp_path / "logs"),
        FULL_WIDTH=384,
        FULL_HEIGHT=216,
        PREVIEW_WIDTH=96,
        PREVIEW_HEIGHT=54,
        TEMP_STORAGE_MAX_MB=1,
        COMPOSE_WORKERS=1,
    )


@pytest.fixture
def events(settings):
    log = EventLog(settings.LOG_PATH, settings.LOG_RETENTION_DAYS, console=False)
    yield log
    log.close()


@pytest.fixture
def app(settings, events):
    return create_app(settings, events=events)


@pytest.fixture
def client(app):
    """Test client with startup/shutdown events run."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_client(client):
    """Test client holding an authenticated session."""
    response = client.post("/login", json={"password": PASSWORD})
    assert response.status_code == 200
    return client
