from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Tuple

from PIL import ImageDraw, ImageFont

from .layout import Rect


Color = Tuple[int, int, int]

BOLD_FONTS = [
    # macOS
    "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
    "/Library/Fonts/Arial Bold.ttf",
    # Linux
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    # Windows
    "C:/Windows/Fonts/arialbd.ttf",
]

REGULAR_FONTS = [
    "/System/Library/Fonts/Supplemental/Arial.ttf",
    "/Library/Fonts/Arial.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "C:/Windows/Fonts/arial.ttf",
]


def parse_color(color_str: str, default: Color = (59, 130, 246)) -> Color:
    """
    Parse hex color strings like '#FF0000', 'FF0000' or '#F00' into an RGB tuple.
    Falls back to `default` if parsing fails.
    """
    s = (color_str or "").strip().lstrip("#")
    if len(s) == 3:
        s = "".join(ch * 2 for ch in s)
    if len(s) == 8:
        s = s[:6]
    if len(s) == 6:
        try:
            return (int(s[0:2], 16), int(s[2:4], 16), int(s[4:6], 16))
        except ValueError:
            pass
    return default


@lru_cache(maxsize=256)
def load_font(size: int, bold: bool = False, fonts_dir: Optional[str] = None) -> ImageFont.ImageFont:
    """
    Load a TrueType font with fallbacks to avoid pixelated bitmap fonts.

    Fonts in `fonts_dir` win (bold variants are picked by file name), then
    common system fonts, then Pillow's default font.
    """
    size = max(int(size), 1)
    candidates: List[str] = []

    if fonts_dir:
        folder = Path(fonts_dir)
        if folder.exists():
            files = sorted(folder.glob("*.ttf")) + sorted(folder.glob("*.otf"))
            preferred = [f for f in files if ("bold" in f.stem.lower()) == bold]
            candidates.extend(str(f) for f in preferred + files)

    candidates.extend(BOLD_FONTS if bold else REGULAR_FONTS)
    candidates.extend(REGULAR_FONTS)

    for font_file in candidates:
        try:
            return ImageFont.truetype(font_file, size=size)
        except OSError:
            continue

    try:
        return ImageFont.load_default(size=size)
    except TypeError:
        # Pillow < 10.1 has no sized default font.
        return ImageFont.load_default()


def wrap_text(
    draw: ImageDraw.ImageDraw, text: str, font: ImageFont.ImageFont, max_width: float
) -> List[str]:
    words = text.split()
    lines: List[str] = []
    current = ""
    for word in words:
        test = f"{current} {word}".strip()
        if draw.textlength(test, font=font) <= max_width or not current:
            current = test
        else:
            lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines


def _line_height(font: ImageFont.ImageFont, spacing: float) -> float:
    ascent, descent = _metrics(font)
    return (ascent + descent) * spacing


def _metrics(font: ImageFont.ImageFont) -> Tuple[int, int]:
    try:
        return font.getmetrics()
    except AttributeError:
        bbox = font.getbbox("Ag")
        return bbox[3], 0


def fit_font(
    draw: ImageDraw.ImageDraw,
    text: str,
    rect: Rect,
    max_size: float,
    bold: bool,
    spacing: float,
    fonts_dir: Optional[str] = None,
) -> Tuple[ImageFont.ImageFont, List[str]]:
    """
    Largest font size (stepping down by 2px, never below half of `max_size`)
    at which the wrapped text fits inside `rect`.
    """
    size = int(round(max_size))
    min_size = max(int(max_size * 0.5), 1)

    while size > min_size:
        font = load_font(size, bold, fonts_dir)
        lines = wrap_text(draw, text, font, rect.width)
        widest = max((draw.textlength(line, font=font) for line in lines), default=0)
        height = _line_height(font, spacing) * len(lines)
        if height <= rect.height and widest <= rect.width:
            return font, lines
        size -= 2

    font = load_font(min_size, bold, fonts_dir)
    return font, wrap_text(draw, text, font, rect.width)


def draw_text_block(
    draw: ImageDraw.ImageDraw,
    text: str,
    rect: Rect,
    color: Color,
    max_size: float,
    bold: bool = False,
    align: str = "center",
    spacing: float = 1.1,
    fonts_dir: Optional[str] = None,
) -> None:
    """Draw `text` wrapped and vertically centered inside `rect`."""
    if not text.strip() or rect.height <= 0 or rect.width <= 0:
        return

    font, lines = fit_font(draw, text, rect, max_size, bold, spacing, fonts_dir)
    line_height = _line_height(font, spacing)
    y = rect.y + (rect.height - line_height * len(lines)) / 2

    for line in lines:
        line_width = draw.textlength(line, font=font)
        if align == "left":
            x = rect.x
        elif align == "right":
            x = rect.right - line_width
        else:
            x = rect.x + (rect.width - line_width) / 2
        draw.text((round(x), round(y)), line, font=font, fill=color)
        y += line_height
