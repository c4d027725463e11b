"""
pytest configuration and shared fixtures

Usage:
    def test_something(sample_plan, png_factory, fake_client):
        client = fake_client(fail={GenerationKey(DeviceFamily.PHONE, 1)})
"""

import io
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Generator, Iterable, List, Optional, Tuple

import pytest
from PIL import Image

from appshots.config import Settings
from appshots.errors import GeneratorError
from appshots.models import GenerationKey, ImagePrompt, ScreenPlan, plan_from_dict


def make_png(size: Tuple[int, int] = (90, 195), color: Tuple[int, int, int] = (40, 120, 200)) -> bytes:
    """Small PNG with real pixel variation (a radial gradient in the red channel)."""
    gradient = Image.radial_gradient("L").resize(size)
    image = Image.merge(
        "RGB",
        (gradient, Image.new("L", size, color[1]), Image.new("L", size, color[2])),
    )
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class FakeClient:
    """
    Stand-in for the background generation client.

    Fails for every key in `fail` (or for everything with `fail_all`), sleeps
    `delay` seconds per call and records calls and peak concurrency.
    """

    def __init__(
        self,
        fail: Iterable[GenerationKey] = (),
        fail_all: bool = False,
        delay: float = 0.0,
        on_call: Optional[Callable[[ImagePrompt], None]] = None,
    ) -> None:
        self.fail = set(fail)
        self.fail_all = fail_all
        self.delay = delay
        self.on_call = on_call
        self.calls: List[Tuple[GenerationKey, Optional[bytes]]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def generate(self, prompt, reference=None, cancel_event=None) -> bytes:
        with self._lock:
            self.calls.append((prompt.key, reference))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.on_call is not None:
                self.on_call(prompt)
            if self.fail_all or prompt.key in self.fail:
                raise GeneratorError(f"boom {prompt.family.value} {prompt.screen_index}")
            shade = (prompt.screen_index * 40) % 256
            return make_png((64, 128), (shade, 200 if prompt.family.value == "tablet" else 60, 90))
        finally:
            with self._lock:
                self.in_flight -= 1

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)


# ============================================================================
# Images
# ============================================================================

@pytest.fixture
def png_factory() -> Callable[..., bytes]:
    return make_png


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def screenshots() -> List[bytes]:
    """Three distinguishable app screenshots."""
    return [
        make_png((90, 195), (0, 30, 60)),
        make_png((90, 195), (0, 130, 60)),
        make_png((90, 195), (0, 230, 160)),
    ]


# ============================================================================
# Plan
# ============================================================================

@pytest.fixture
def plan_data() -> dict:
    return {
        "app_name": "My App!!",
        "tagline": "Plan less, do more",
        "tone": "bold",
        "colors": {"primary": "#101820", "accent": "#3b82f6"},
        "screens": [
            {
                "index": 1,
                "screenshot_match": 1,
                "heading": "Stay on track",
                "subheading": "Daily goals at a glance",
                "position": "left",
                "tilt": True,
                "visual_direction": "Soft diagonal light beams",
            },
            {
                "index": 0,
                "screenshot_match": 0,
                "heading": "Your day, organised",
                "subheading": "Everything in one place",
                "visual_direction": "Deep navy gradient with a warm glow",
                "ipad": {"layout_type": "frameless", "heading": "Organise on the big screen"},
            },
            {
                "index": 2,
                "screenshot_match": 2,
                "heading": "Share with friends",
                "layout": "full_bleed",
            },
        ],
    }


@pytest.fixture
def sample_plan(plan_data: dict) -> ScreenPlan:
    return plan_from_dict(plan_data)


# ============================================================================
# Generation
# ============================================================================

@pytest.fixture
def fake_client() -> Callable[..., FakeClient]:
    return FakeClient


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with no waiting between retries."""
    return Settings(max_concurrency=2, retry_delay=0.0, auto_advance_delay=0.05)


# ============================================================================
# Files
# ============================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Temporary directory (cleaned up automatically)"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
