from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, ImageDraw

from .models import DeviceFamily


IMAGE_EXTENSIONS = {".png", ".webp"}

FAMILY_ALIASES = {
    DeviceFamily.PHONE: ("phone", "iphone"),
    DeviceFamily.TABLET: ("tablet", "ipad"),
}

CLAY_COLOR = (38, 38, 38, 255)
CAMERA_COLOR = (20, 20, 20, 255)


def find_frame_asset(family: DeviceFamily, frames_dir: Optional[Path]) -> Optional[Path]:
    """
    Try to locate a device frame image for a device family.

    Search heuristics (in order):
    - `frame_<family>.png` (e.g. frame_phone.png, frame_iphone.png)
    - any image whose file name contains one of the family aliases
    """
    if frames_dir is None or not frames_dir.exists():
        return None

    aliases = FAMILY_ALIASES[family]
    for alias in aliases:
        for ext in IMAGE_EXTENSIONS:
            candidate = frames_dir / f"frame_{alias}{ext}"
            if candidate.exists():
                return candidate

    for path in sorted(frames_dir.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in IMAGE_EXTENSIONS:
            continue
        name = path.stem.lower()
        if any(alias in name for alias in aliases):
            return path
    return None


def load_frame(
    family: DeviceFamily,
    size: Tuple[int, int],
    screen_box: Tuple[int, int, int, int],
    frames_dir: Optional[Path] = None,
) -> Image.Image:
    """
    Device chrome sized to `size`, with a transparent screen area.

    Uses a frame asset from `frames_dir` when one exists, otherwise draws a
    clay-style frame.
    """
    asset = find_frame_asset(family, frames_dir)
    if asset is not None:
        return _load_asset(asset, size).copy()
    return clay_frame(family, size, screen_box).copy()


@lru_cache(maxsize=16)
def _load_asset(path: Path, size: Tuple[int, int]) -> Image.Image:
    with Image.open(path) as img:
        frame = img.convert("RGBA")
    if frame.size != size:
        frame = frame.resize(size, Image.Resampling.LANCZOS)
    return frame


@lru_cache(maxsize=16)
def clay_frame(
    family: DeviceFamily,
    size: Tuple[int, int],
    screen_box: Tuple[int, int, int, int],
) -> Image.Image:
    """
    Solid-color device silhouette with the screen cut out, plus a notch
    (phone) or a camera dot (tablet).
    """
    width, height = size
    radius = width * (0.04 if family is DeviceFamily.TABLET else 0.08)

    frame = Image.new("RGBA", size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(frame)
    draw.rounded_rectangle([0, 0, width - 1, height - 1], radius=round(radius), fill=CLAY_COLOR)

    sx0, sy0, sx1, sy1 = screen_box
    screen_radius = max(round(radius - sx0), 0)
    draw.rounded_rectangle([sx0, sy0, sx1 - 1, sy1 - 1], radius=screen_radius, fill=(0, 0, 0, 0))

    if family is DeviceFamily.PHONE:
        notch_w = width * 0.30
        notch_h = height * 0.015
        nx = (width - notch_w) / 2
        draw.rounded_rectangle(
            [round(nx), sy0, round(nx + notch_w), round(sy0 + notch_h)],
            radius=round(notch_h / 2),
            fill=CLAY_COLOR,
        )
    else:
        r = width * 0.008
        cx, cy = width / 2, sy0 / 2
        draw.ellipse([round(cx - r), round(cy - r), round(cx + r), round(cy + r)], fill=CAMERA_COLOR)

    # Subtle edge highlight.
    draw.rounded_rectangle(
        [0, 0, width - 1, height - 1], radius=round(radius), outline=(64, 64, 64, 128), width=1
    )
    return frame
