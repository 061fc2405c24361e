"""Shared test fixtures.

Provides:
- Isolated upload/output/fonts directories with dummy assets
- A fake prober (no ffprobe needed)
- FastAPI TestClient wired to the isolated storage
"""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from ffmux.exceptions import ProbeDegraded
from ffmux.video.probe import ProbeResult


ASSETS = ("clip.mp4", "clip2.mp4", "still.png", "music.mp3", "silent.mp4")


class FakeProber:
    """Answers probes from a table keyed by file name; records every call."""

    def __init__(self, results: dict[str, ProbeResult] | None = None,
                 failing: tuple[str, ...] = ()):
        self.results = {
            "clip.mp4": ProbeResult(duration=10.0, has_audio=True, has_video=True, width=1920, height=1080),
            "clip2.mp4": ProbeResult(duration=4.0, has_audio=True, has_video=True, width=1280, height=720),
            "silent.mp4": ProbeResult(duration=6.0, has_audio=False, has_video=True, width=640, height=480),
            "music.mp3": ProbeResult(duration=30.0, has_audio=True),
        }
        self.results.update(results or {})
        self.failing = set(failing)
        self.calls: list[Path] = []

    def probe(self, path: Path) -> ProbeResult:
        self.calls.append(path)
        if path.name in self.failing:
            raise ProbeDegraded(f"cannot probe {path.name}")
        return self.results.get(path.name, ProbeResult())


# ── Storage isolation ────────────────────────────────────────────────────────

@pytest.fixture
def storage_root(tmp_path):
    """Create isolated storage directories with dummy assets."""
    for d in ("uploads", "outputs", "fonts", "logs"):
        (tmp_path / d).mkdir()
    for name in ASSETS:
        (tmp_path / "uploads" / name).write_bytes(b"\x00" * 16)
    return tmp_path


@pytest.fixture
def store(storage_root):
    from ffmux.api.storage import AssetStore
    return AssetStore(storage_root / "uploads", storage_root / "outputs")


@pytest.fixture
def fake_prober():
    return FakeProber()


@pytest.fixture
def resolver(store, fake_prober):
    from ffmux.video.probe import CachingProber
    from ffmux.video.timeline import TimelineResolver
    return TimelineResolver(store.resolve, CachingProber(fake_prober, parallelism=1))


# ── TestClient ───────────────────────────────────────────────────────────────

@pytest.fixture
def client(storage_root, fake_prober, monkeypatch):
    """FastAPI TestClient with isolated storage and a fake prober."""
    monkeypatch.setenv("FFMUX_UPLOAD_DIR", str(storage_root / "uploads"))
    monkeypatch.setenv("FFMUX_OUTPUT_DIR", str(storage_root / "outputs"))
    monkeypatch.setenv("FFMUX_FONTS_DIR", str(storage_root / "fonts"))
    monkeypatch.delenv("FFMUX_CONFIG", raising=False)
    monkeypatch.setattr("ffmux.utils.logging.LOG_DIR", storage_root / "logs")

    from main import app
    with TestClient(app, raise_server_exceptions=False) as c:
        app.state.prober = fake_prober
        yield c


@pytest.fixture
def make_prober():
    """Build a FakeProber with extra results or failing file names."""
    return FakeProber
